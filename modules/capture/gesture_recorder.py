"""
Gesture recording session: collect poses for one named gesture, then
commit them to the dataset.

A session finishes on its own when either
    - ``max_samples`` poses were captured, or
    - ``auto_save_delay_s`` elapsed and at least ``min_samples_auto``
      poses were captured.
"""

import time
import logging
from dataclasses import dataclass
from typing import Optional

from core.errors import InsufficientData, InvalidInput
from core.events import Events
from core.types import now_ms
from models.feature_extractor import normalize

logger = logging.getLogger(__name__)


@dataclass
class RecordingConfig:
    """Recording session configuration."""
    auto_save_delay_s: float = 5.0
    min_samples_auto: int = 50
    max_samples: int = 100

    @classmethod
    def from_dict(cls, config: dict) -> "RecordingConfig":
        """Create config from dictionary."""
        return cls(
            auto_save_delay_s=config.get("auto_save_delay_s", 5.0),
            min_samples_auto=config.get("min_samples_auto", 50),
            max_samples=config.get("max_samples", 100),
        )


class GestureRecorder:
    """Collects normalized poses for a gesture and adds them to a GestureDataset."""

    def __init__(self, dataset, config: Optional[RecordingConfig] = None, event_bus=None):
        self._dataset = dataset
        self.config = config or RecordingConfig()
        self._bus = event_bus

        self._name = None
        self._features = []
        self._start_ms = None
        self._session_id = None
        self._last_added = 0

    @property
    def is_recording(self) -> bool:
        return self._name is not None

    @property
    def gesture_name(self) -> Optional[str]:
        return self._name

    @property
    def sample_count(self) -> int:
        return len(self._features)

    @property
    def last_added(self) -> int:
        """Samples committed by the most recent finish()."""
        return self._last_added

    def start(self, name: str, overwrite: bool = False, now: Optional[float] = None):
        """Begin recording ``name``.

        Raises:
            ValueError: empty name, already recording, or the gesture exists
                and ``overwrite`` is False.
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("Please enter a gesture name first")
        if self.is_recording:
            raise ValueError("Already recording %r" % self._name)
        if name in self._dataset:
            if not overwrite:
                raise ValueError("Gesture %r already exists" % name)
            self._dataset.remove(name)

        self._name = name
        self._features = []
        self._start_ms = now if now is not None else now_ms()
        self._session_id = f"session_{int(time.time())}"
        logger.info("Started recording gesture: %s (%s)", name, self._session_id)
        self._publish(Events.RECORDING_STARTED, name=name)

    def record(self, pose, now: Optional[float] = None) -> bool:
        """Capture one pose. Invalid poses are skipped.

        Returns:
            True if this pose completed the session (it was auto-finished).
        """
        if not self.is_recording:
            return False
        try:
            self._features.append(normalize(pose))
        except InvalidInput as e:
            logger.debug("Skipping invalid pose while recording: %s", e)
            return False

        if len(self._features) % 10 == 0:
            logger.debug("Recorded %d landmark samples", len(self._features))

        if now is None:
            now = now_ms()
        if self._should_finish(now):
            logger.info("Auto-saving gesture %s (%d samples)", self._name, len(self._features))
            self.finish()
            return True
        return False

    def _should_finish(self, now) -> bool:
        count = len(self._features)
        if count >= self.config.max_samples:
            return True
        elapsed_s = (now - self._start_ms) / 1000.0
        return elapsed_s >= self.config.auto_save_delay_s and count >= self.config.min_samples_auto

    def finish(self) -> int:
        """Commit recorded samples to the dataset and end the session.

        Returns:
            Number of samples added.

        Raises:
            InsufficientData: nothing was recorded (the session stays open).
        """
        if not self.is_recording:
            raise ValueError("Not recording")
        if not self._features:
            raise InsufficientData("No gesture data recorded for %r" % self._name,
                                   code="empty_recording")

        name = self._name
        added = sum(1 for features in self._features if self._dataset.add_features(name, features))
        self._end()
        self._last_added = added
        logger.info("Gesture %r saved: %d samples added to dataset", name, added)
        self._publish(Events.RECORDING_FINISHED, name=name, samples=added)
        return added

    def cancel(self):
        """Discard the current session without touching the dataset."""
        if self.is_recording:
            logger.info("Recording of %r cancelled (%d samples discarded)",
                        self._name, len(self._features))
        self._end()

    def _end(self):
        self._name = None
        self._features = []
        self._start_ms = None
        self._session_id = None

    def status(self, now: Optional[float] = None) -> dict:
        """Progress of the current session."""
        elapsed = 0.0
        if self._start_ms is not None:
            elapsed = ((now if now is not None else now_ms()) - self._start_ms) / 1000.0
        return {
            "recording": self.is_recording,
            "gesture": self._name,
            "session_id": self._session_id,
            "samples": len(self._features),
            "elapsed_s": round(elapsed, 1),
        }

    def _publish(self, event_name, **kwargs):
        if self._bus is not None:
            self._bus.emit(event_name, **kwargs)
