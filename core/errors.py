"""
Error taxonomy for the recognition core.

InvalidInput and PredictionError are absorbed by the recognition loop and
turned into sentinel verdicts. InsufficientData and TrainingError abort a
training call. ParseError aborts a dataset import. PersistenceError is
reported but never fatal.
"""

from typing import Optional


class GestureError(Exception):
    """Base class for all recognition-core errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class InvalidInput(GestureError, ValueError):
    """Malformed pose (not 21 landmarks, missing or non-numeric points)."""


class TrainingError(GestureError):
    """A training run failed; no model was installed."""


class InsufficientData(TrainingError):
    """Training attempted with fewer than two non-empty classes."""


class TrainingCancelled(TrainingError):
    """A background training run was cancelled before completion."""


class ParseError(GestureError):
    """Malformed dataset import payload."""


class PersistenceError(GestureError):
    """Saving or loading the trained model failed."""


class PredictionError(GestureError):
    """Inference failed for a single frame."""
