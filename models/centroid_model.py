"""
Per-class centroid model for geometric outlier rejection.

Each gesture's centroid is the arithmetic mean of its feature vectors at
the time of the last training run. A query that the classifier assigns to
a class but that lies far from that class's centroid is reported as
``uncertain`` by the RecognitionEngine.
"""

import logging

import numpy as np

from core.types import FEATURE_DIM

logger = logging.getLogger(__name__)


class CentroidModel:
    """Mapping gesture name → mean (63,) feature vector."""

    def __init__(self, centroids=None):
        self._centroids = {}
        for name, vector in (centroids or {}).items():
            arr = np.asarray(vector, dtype=np.float32)
            if arr.shape != (FEATURE_DIM,):
                raise ValueError("Centroid for %r has shape %s" % (name, str(arr.shape)))
            self._centroids[name] = arr

    @classmethod
    def fit(cls, samples_by_class):
        """Compute centroids from ``{name: [vector, ...]}``; empty classes are skipped."""
        centroids = {}
        for name, samples in samples_by_class.items():
            if len(samples) == 0:
                continue
            centroids[name] = np.mean(np.stack(samples).astype(np.float64), axis=0).astype(np.float32)
        logger.info("Centroids calculated for: %s", sorted(centroids))
        return cls(centroids)

    def get(self, name):
        return self._centroids.get(name)

    def distance(self, vector, name):
        """Euclidean distance from ``vector`` to the centroid of ``name``.

        Returns ``inf`` when the class has no centroid or the shapes differ.
        """
        centroid = self._centroids.get(name)
        if centroid is None:
            return float("inf")
        vector = np.asarray(vector, dtype=np.float32)
        if vector.shape != centroid.shape:
            return float("inf")
        return float(np.linalg.norm(vector.astype(np.float64) - centroid.astype(np.float64)))

    def clear(self):
        self._centroids.clear()

    @property
    def names(self):
        return sorted(self._centroids)

    def to_dict(self):
        """JSON-friendly ``{name: [63 floats]}``."""
        return {name: [float(v) for v in vec] for name, vec in sorted(self._centroids.items())}

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ValueError("Centroids must be a mapping, got %s" % type(data).__name__)
        return cls(data)

    def __contains__(self, name):
        return name in self._centroids

    def __len__(self):
        return len(self._centroids)

    def __repr__(self):
        return "CentroidModel(%s)" % self.names
