"""
Landmark normalization: 21-point hand pose → 63-dim feature vector.

Feature layout (63 dimensions):
    [3i + 0]  x_i - x_wrist
    [3i + 1]  y_i - y_wrist
    [3i + 2]  z_i            (already relative in MediaPipe coordinates)

Accepted pose inputs:
    - sequence of 21 objects with ``x``/``y`` and optional ``z`` attributes
      (MediaPipe ``NormalizedLandmark`` or :class:`core.types.Landmark`)
    - sequence of 21 mappings with ``"x"``, ``"y"`` and optional ``"z"``
    - sequence of 21 (x, y) or (x, y, z) sequences
    - np.ndarray of shape (21, 2) or (21, 3)
"""

import math
from collections.abc import Mapping

import numpy as np

from core.errors import InvalidInput
from core.types import NUM_LANDMARKS, FEATURE_DIM, WRIST


def _coords(point, index):
    """Return (x, y, z) floats for a single landmark-like value."""
    if point is None:
        raise InvalidInput("Landmark %d is missing" % index)

    if isinstance(point, Mapping):
        if "x" not in point or "y" not in point:
            raise InvalidInput("Landmark %d lacks x/y" % index)
        raw = (point["x"], point["y"], point.get("z"))
    elif hasattr(point, "x") and hasattr(point, "y"):
        raw = (point.x, point.y, getattr(point, "z", None))
    else:
        try:
            values = list(point)
        except TypeError:
            raise InvalidInput("Landmark %d is not a point: %r" % (index, point))
        if len(values) not in (2, 3):
            raise InvalidInput("Landmark %d has %d coordinates" % (index, len(values)))
        raw = (values[0], values[1], values[2] if len(values) == 3 else None)

    x, y, z = raw
    if z is None:
        z = 0.0
    try:
        coords = (float(x), float(y), float(z))
    except (TypeError, ValueError):
        raise InvalidInput("Landmark %d has non-numeric coordinates" % index)
    if not all(math.isfinite(c) for c in coords):
        raise InvalidInput("Landmark %d has non-finite coordinates" % index)
    return coords


def normalize(pose):
    """Convert a 21-point pose to a wrist-centred (63,) float32 vector.

    Raises:
        InvalidInput: pose is not exactly 21 valid landmarks.
    """
    if pose is None:
        raise InvalidInput("No pose given")

    if isinstance(pose, np.ndarray):
        if pose.ndim != 2 or pose.shape[0] != NUM_LANDMARKS or pose.shape[1] not in (2, 3):
            raise InvalidInput("Expected (21, 3) landmarks, got %s" % str(pose.shape))
        try:
            points = pose.astype(np.float64)
        except (TypeError, ValueError):
            raise InvalidInput("Pose has non-numeric coordinates")
        if points.shape[1] == 2:
            points = np.hstack([points, np.zeros((NUM_LANDMARKS, 1))])
        if not np.all(np.isfinite(points)):
            raise InvalidInput("Pose has non-finite coordinates")
    else:
        try:
            count = len(pose)
        except TypeError:
            raise InvalidInput("Pose is not a sequence: %r" % type(pose).__name__)
        if count != NUM_LANDMARKS:
            raise InvalidInput("Expected %d landmarks, got %d" % (NUM_LANDMARKS, count))
        points = np.array([_coords(p, i) for i, p in enumerate(pose)], dtype=np.float64)

    wrist = points[WRIST].copy()
    points[:, 0] -= wrist[0]
    points[:, 1] -= wrist[1]

    return points.reshape(FEATURE_DIM).astype(np.float32)


def as_feature_vector(values):
    """Validate an already-normalized vector and return it as (63,) float32."""
    try:
        vector = np.asarray(values, dtype=np.float32)
    except (TypeError, ValueError):
        raise InvalidInput("Feature vector is not numeric")
    if vector.shape != (FEATURE_DIM,):
        raise InvalidInput("Expected %d features, got shape %s" % (FEATURE_DIM, str(vector.shape)))
    if not np.all(np.isfinite(vector)):
        raise InvalidInput("Feature vector has non-finite values")
    return vector


class LandmarkNormalizer:
    """Stateless wrapper around :func:`normalize` for injection into components."""

    @property
    def feature_dim(self):
        return FEATURE_DIM

    def extract(self, pose):
        """Pose → (63,) feature vector. Raises InvalidInput."""
        return normalize(pose)

    def extract_batch(self, poses):
        """Normalize a batch of poses.

        Args:
            poses: iterable of poses, or np.ndarray of shape (N, 21, 3)

        Returns:
            np.ndarray of shape (N, 63)
        """
        rows = [normalize(p) for p in poses]
        if not rows:
            return np.zeros((0, FEATURE_DIM), dtype=np.float32)
        return np.stack(rows)
