"""
Sliding-window majority vote with cooldown for gesture emission.

Per-frame verdicts are noisy; a gesture is emitted only when it holds
a large share of a short time window and enough time has passed since
the previous emission:

    1. push (name, confidence, now)
    2. drop entries with now - t >= window_ms
    3. if len >= min_samples and mode share >= stability_threshold
       and now - last_emission > cooldown_ms: emit, clear window

Ties between equally frequent names go to the one seen first in the window.
"""

import logging
from collections import deque, Counter
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

from core.types import StabilityEntry, now_ms

logger = logging.getLogger(__name__)

MIN_COOLDOWN_MS = 1000


@dataclass
class StabilityConfig:
    """Stability buffer configuration."""
    window_ms: float = 1000
    min_samples: int = 15
    stability_threshold: float = 0.8
    cooldown_ms: float = 4000
    min_confidence: float = 0.5

    @classmethod
    def from_dict(cls, config: dict) -> "StabilityConfig":
        """Create config from dictionary."""
        return cls(
            window_ms=config.get("window_ms", 1000),
            min_samples=config.get("min_samples", 15),
            stability_threshold=config.get("stability_threshold", 0.8),
            cooldown_ms=config.get("cooldown_ms", 4000),
            min_confidence=config.get("min_confidence", 0.5),
        )


class StabilityBuffer:
    """Time-bounded FIFO of recent recognitions that emits stable gestures.

    Example:
        >>> buffer = StabilityBuffer(StabilityConfig())
        >>> buffer.on_emit(text.append)
        >>> for verdict in verdicts:
        ...     emitted = buffer.update(verdict)
    """

    def __init__(self, config: Optional[StabilityConfig] = None):
        self.config = config or StabilityConfig()
        if self.config.cooldown_ms < MIN_COOLDOWN_MS:
            logger.warning("cooldown_ms %s below %d ms, clamping",
                           self.config.cooldown_ms, MIN_COOLDOWN_MS)
            self.config = replace(self.config, cooldown_ms=MIN_COOLDOWN_MS)

        self._buffer = deque()
        self._last_emission_ms: Optional[float] = None
        self._last_emitted: Optional[str] = None
        self._listeners: List[Callable[[str], None]] = []

    def on_emit(self, callback: Callable[[str], None]):
        """Register ``callback(name)`` to run on every emission."""
        self._listeners.append(callback)

    def accepts(self, verdict) -> bool:
        """Whether a verdict is eligible for the window at all."""
        return (not verdict.is_sentinel
                and verdict.confidence > self.config.min_confidence)

    def update(self, verdict, now: Optional[float] = None) -> Optional[str]:
        """Feed one verdict; return the emitted gesture name, if any.

        Args:
            verdict: Verdict from the RecognitionEngine
            now: timestamp in ms (defaults to a monotonic clock)
        """
        if not self.accepts(verdict):
            return None
        if now is None:
            now = now_ms()

        self._buffer.append(StabilityEntry(verdict.name, verdict.confidence, now))
        self._prune(now)

        if len(self._buffer) < self.config.min_samples:
            return None

        name, share = self._mode()
        if share < self.config.stability_threshold:
            return None
        if not self._cooldown_elapsed(now):
            return None

        self._last_emission_ms = now
        self._last_emitted = name
        self._buffer.clear()
        logger.info("Stable gesture: %s (%.0f%% of window)", name, share * 100)

        for callback in list(self._listeners):
            try:
                callback(name)
            except Exception as e:
                logger.error("Emission listener failed for %s: %s", name, e)
        return name

    def _prune(self, now):
        while self._buffer and now - self._buffer[0].timestamp_ms >= self.config.window_ms:
            self._buffer.popleft()

    def _mode(self):
        """(most frequent name, its share); first-seen wins ties."""
        counts = Counter(entry.name for entry in self._buffer)
        # Counter preserves first-insertion order among equal counts
        name, count = counts.most_common(1)[0]
        return name, count / len(self._buffer)

    def _cooldown_elapsed(self, now) -> bool:
        if self._last_emission_ms is None:
            return True
        return now - self._last_emission_ms > self.config.cooldown_ms

    def reset(self, full: bool = False):
        """Empty the window; ``full`` also forgets the last emission time."""
        self._buffer.clear()
        if full:
            self._last_emission_ms = None
            self._last_emitted = None

    @property
    def contents(self) -> List[str]:
        """Gesture names currently in the window, oldest first."""
        return [entry.name for entry in self._buffer]

    @property
    def last_emitted(self) -> Optional[str]:
        return self._last_emitted

    def cooldown_remaining(self, now: Optional[float] = None) -> float:
        """Milliseconds until another emission is allowed (0 if none pending)."""
        if self._last_emission_ms is None:
            return 0.0
        if now is None:
            now = now_ms()
        return max(0.0, self.config.cooldown_ms - (now - self._last_emission_ms))

    def __len__(self):
        return len(self._buffer)
