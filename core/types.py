"""
Shared domain types for the gesture-to-text recognition core.

Centralizes constants, enums and data containers used across modules
to eliminate circular imports and ensure type consistency.
"""

import time
from enum import Enum
from typing import Optional, Dict


# =============================================================================
# Pose geometry
# =============================================================================

NUM_LANDMARKS = 21
COORDS_PER_LANDMARK = 3
FEATURE_DIM = NUM_LANDMARKS * COORDS_PER_LANDMARK  # 63

WRIST = 0
FINGER_TIPS = (4, 8, 12, 16, 20)


# =============================================================================
# Verdict sentinels
# =============================================================================

UNCERTAIN = "uncertain"
NO_MODEL_TRAINED = "no_model_trained"
PREDICTION_ERROR = "prediction_error"

SENTINEL_NAMES = frozenset((UNCERTAIN, NO_MODEL_TRAINED, PREDICTION_ERROR))


class ClassifierState(Enum):
    """Lifecycle of a classifier instance."""
    UNTRAINED = "untrained"
    TRAINING = "training"
    TRAINED = "trained"


# =============================================================================
# Data Containers
# =============================================================================

class Landmark:
    """A single 3-D hand landmark. ``z`` defaults to 0."""

    __slots__ = ("x", "y", "z")

    def __init__(self, x: float, y: float, z: float = 0.0):
        self.x = x
        self.y = y
        self.z = z

    def __iter__(self):
        yield self.x
        yield self.y
        yield self.z

    def __eq__(self, other):
        if not isinstance(other, Landmark):
            return NotImplemented
        return (self.x, self.y, self.z) == (other.x, other.y, other.z)

    def __repr__(self):
        return f"Landmark({self.x:.3f}, {self.y:.3f}, {self.z:.3f})"


class Verdict:
    """Per-frame recognition result.

    ``name`` is either a gesture name or one of the sentinels
    (``uncertain``, ``no_model_trained``, ``prediction_error``).
    """

    __slots__ = ("name", "confidence", "distance", "scores", "timestamp")

    def __init__(self, name: str, confidence: float,
                 distance: Optional[float] = None,
                 scores: Optional[Dict[str, float]] = None):
        self.name = name
        self.confidence = confidence
        self.distance = distance
        self.scores = scores or {}
        self.timestamp = time.time()

    @classmethod
    def no_model(cls) -> "Verdict":
        return cls(NO_MODEL_TRAINED, 0.0)

    @classmethod
    def uncertain(cls, distance: float) -> "Verdict":
        return cls(UNCERTAIN, 0.0, distance=distance)

    @classmethod
    def error(cls) -> "Verdict":
        return cls(PREDICTION_ERROR, 0.0)

    @property
    def is_sentinel(self) -> bool:
        return self.name in SENTINEL_NAMES

    def __repr__(self):
        if self.distance is not None:
            return f"Verdict({self.name}, conf={self.confidence:.2f}, dist={self.distance:.2f})"
        return f"Verdict({self.name}, conf={self.confidence:.2f})"


class StabilityEntry:
    """One recognition held in the stability window."""

    __slots__ = ("name", "confidence", "timestamp_ms")

    def __init__(self, name: str, confidence: float, timestamp_ms: float):
        self.name = name
        self.confidence = confidence
        self.timestamp_ms = timestamp_ms

    def __repr__(self):
        return f"StabilityEntry({self.name}, {self.confidence:.2f}, t={self.timestamp_ms:.0f})"


def now_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.monotonic() * 1000.0
