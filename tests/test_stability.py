"""
Tests for Stability Buffer
==========================
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.types import Verdict
from modules.recognition.stability_buffer import (
    MIN_COOLDOWN_MS, StabilityBuffer, StabilityConfig,
)


def feed(buffer, names, start=0.0, step=50.0, confidence=0.9):
    """Push one verdict per name, ``step`` ms apart; return emissions."""
    emitted = []
    for i, name in enumerate(names):
        result = buffer.update(Verdict(name, confidence), now=start + i * step)
        if result is not None:
            emitted.append(result)
    return emitted


class TestStabilityEmission:
    """Majority-vote emission."""

    @pytest.fixture
    def buffer(self):
        return StabilityBuffer(StabilityConfig())

    def test_fifteen_consistent_verdicts_emit_once(self, buffer):
        assert feed(buffer, ["hello"] * 15) == ["hello"]
        assert len(buffer) == 0

    def test_not_enough_samples(self, buffer):
        assert feed(buffer, ["hello"] * 14) == []

    def test_split_vote_does_not_emit(self, buffer):
        """8 hello / 7 world is 53%, below the 80% threshold."""
        names = ["hello", "world"] * 7 + ["hello"]
        assert feed(buffer, names) == []

    def test_mostly_consistent_emits(self, buffer):
        names = ["hello"] * 12 + ["world"] * 3
        assert feed(buffer, names) == ["hello"]

    def test_listeners_notified(self, buffer):
        seen = []
        buffer.on_emit(seen.append)
        feed(buffer, ["hello"] * 15)
        assert seen == ["hello"]

    def test_failing_listener_does_not_block_emission(self, buffer):
        def broken(name):
            raise RuntimeError("speech engine down")
        seen = []
        buffer.on_emit(broken)
        buffer.on_emit(seen.append)
        assert feed(buffer, ["hello"] * 15) == ["hello"]
        assert seen == ["hello"]


class TestGating:
    """Verdicts that never enter the window."""

    @pytest.fixture
    def buffer(self):
        return StabilityBuffer(StabilityConfig())

    def test_sentinels_ignored(self, buffer):
        for i in range(20):
            buffer.update(Verdict.uncertain(12.0), now=i * 10)
            buffer.update(Verdict.no_model(), now=i * 10)
            buffer.update(Verdict.error(), now=i * 10)
        assert len(buffer) == 0

    def test_low_confidence_ignored(self, buffer):
        assert feed(buffer, ["hello"] * 20, confidence=0.5) == []
        assert len(buffer) == 0


class TestWindow:
    """Time-based pruning."""

    def test_old_entries_pruned(self):
        buffer = StabilityBuffer(StabilityConfig(window_ms=1000))
        buffer.update(Verdict("hello", 0.9), now=0)
        buffer.update(Verdict("hello", 0.9), now=999)
        assert len(buffer) == 2
        buffer.update(Verdict("hello", 0.9), now=1000)
        assert len(buffer) == 2

    def test_slow_stream_never_fills_window(self):
        buffer = StabilityBuffer(StabilityConfig())
        assert feed(buffer, ["hello"] * 40, step=100) == []
        assert len(buffer) == 10


class TestCooldown:
    """Minimum spacing between emissions."""

    @pytest.fixture
    def buffer(self):
        return StabilityBuffer(StabilityConfig(cooldown_ms=4000))

    def test_second_emission_blocked_within_cooldown(self, buffer):
        assert feed(buffer, ["hello"] * 15, start=0) == ["hello"]
        assert feed(buffer, ["hello"] * 15, start=1000) == []
        assert buffer.cooldown_remaining(now=1000) == pytest.approx(4000 - (1000 - 700))

    def test_second_emission_after_cooldown(self, buffer):
        assert feed(buffer, ["hello"] * 15, start=0) == ["hello"]
        assert feed(buffer, ["hello"] * 15, start=5000) == ["hello"]
        assert buffer.last_emitted == "hello"

    def test_reset_keeps_cooldown(self, buffer):
        feed(buffer, ["hello"] * 15)
        buffer.reset()
        assert feed(buffer, ["world"] * 15, start=1000) == []

    def test_full_reset_forgets_cooldown(self, buffer):
        feed(buffer, ["hello"] * 15)
        buffer.reset(full=True)
        assert feed(buffer, ["world"] * 15, start=1000) == ["world"]

    def test_cooldown_clamped(self):
        config = StabilityConfig(cooldown_ms=10)
        buffer = StabilityBuffer(config)
        assert buffer.config.cooldown_ms == MIN_COOLDOWN_MS
        assert config.cooldown_ms == 10


class TestTieBreak:
    """Equal counts go to the name seen first."""

    def test_first_seen_wins(self):
        buffer = StabilityBuffer(StabilityConfig(min_samples=4, stability_threshold=0.5))
        assert feed(buffer, ["world", "hello", "hello", "world"]) == ["world"]


class TestConfig:
    def test_from_dict(self):
        config = StabilityConfig.from_dict({"window_ms": 500, "min_samples": 5})
        assert config.window_ms == 500
        assert config.min_samples == 5
        assert config.stability_threshold == 0.8


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
