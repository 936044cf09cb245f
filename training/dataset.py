"""
In-memory gesture dataset and its PyTorch view.

GestureDataset maps gesture name → ordered list of (63,) feature vectors.
The LabelSet (sorted class names) defines classifier output ordering.

Interchange format (``export()`` / ``import_data()``)::

    {
      "labels":  ["fist", "open"],
      "dataset": {
        "fist": [[63 floats], ...],
        "open": [[63 floats], ...]
      }
    }
"""

import json
import logging
import threading
from collections import OrderedDict

import numpy as np
import torch
from torch.utils.data import Dataset

from core.errors import InvalidInput, ParseError
from core.types import FEATURE_DIM
from models.feature_extractor import normalize, as_feature_vector

logger = logging.getLogger(__name__)


def _clean_name(name):
    if not isinstance(name, str):
        return None
    name = name.strip()
    return name or None


class GestureDataset:
    """Mutable mapping of gesture name → feature vectors.

    Every successful mutation bumps :attr:`version` and notifies change
    listeners, which the GestureContext uses to invalidate trained models.
    """

    def __init__(self):
        self._data = OrderedDict()  # name -> [np.ndarray(63,)]
        self._lock = threading.RLock()
        self._version = 0
        self._listeners = []

    # ------------------------------------------------------------------
    # Change tracking
    # ------------------------------------------------------------------

    def on_change(self, callback):
        """Register ``callback(dataset)`` to run after every mutation."""
        self._listeners.append(callback)

    def _changed(self):
        self._version += 1
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception as e:
                logger.error("Dataset change listener failed: %s", e)

    @property
    def version(self):
        return self._version

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, name, pose):
        """Normalize ``pose`` and append it to class ``name``.

        Returns:
            False (and leaves the dataset untouched) if the name is empty
            or the pose is invalid.
        """
        try:
            features = normalize(pose)
        except InvalidInput as e:
            logger.warning("Invalid landmarks for gesture data: %s", e)
            return False
        return self._append(name, features)

    def add_features(self, name, features):
        """Append an already-normalized (63,) vector to class ``name``."""
        try:
            vector = as_feature_vector(features)
        except InvalidInput as e:
            logger.warning("Invalid feature vector for %r: %s", name, e)
            return False
        return self._append(name, vector)

    def _append(self, name, vector):
        name = _clean_name(name)
        if name is None:
            logger.warning("Rejected sample with empty gesture name")
            return False
        with self._lock:
            self._data.setdefault(name, []).append(vector)
            count = len(self._data[name])
            self._changed()
        logger.debug("Added sample to %s (total: %d)", name, count)
        return True

    def remove(self, name):
        """Delete a class. Returns True if it existed."""
        with self._lock:
            if name not in self._data:
                return False
            del self._data[name]
            self._changed()
        logger.info("Removed gesture: %s", name)
        return True

    def clear(self):
        with self._lock:
            self._data.clear()
            self._changed()
        logger.info("All gestures cleared")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_names(self):
        with self._lock:
            return sorted(self._data)

    @property
    def labels(self):
        """LabelSet: sorted names of classes with at least one sample."""
        with self._lock:
            return sorted(name for name, samples in self._data.items() if samples)

    def stats(self):
        with self._lock:
            return {name: len(samples) for name, samples in self._data.items()}

    def samples(self, name):
        with self._lock:
            return [v.copy() for v in self._data.get(name, [])]

    @property
    def non_empty_classes(self):
        return len(self.labels)

    @property
    def total_samples(self):
        with self._lock:
            return sum(len(samples) for samples in self._data.values())

    def snapshot(self):
        """Deep copy ``{name: [vector, ...]}`` safe to read while the dataset mutates."""
        with self._lock:
            return OrderedDict(
                (name, [v.copy() for v in samples])
                for name, samples in self._data.items() if samples
            )

    def __len__(self):
        return self.total_samples

    def __contains__(self, name):
        with self._lock:
            return name in self._data

    def __repr__(self):
        return "GestureDataset(%s)" % self.stats()

    # ------------------------------------------------------------------
    # Interchange
    # ------------------------------------------------------------------

    def to_dict(self):
        with self._lock:
            labels = self.labels
            return {
                "labels": labels,
                "dataset": {
                    name: [[float(x) for x in v] for v in self._data[name]]
                    for name in labels
                },
            }

    def export(self):
        """Serialize to the JSON interchange format."""
        return json.dumps(self.to_dict(), indent=2)

    def import_data(self, payload):
        """Replace the dataset with ``payload`` (JSON text/bytes or decoded dict).

        Raises:
            ParseError: payload is malformed; the current dataset is kept.
        """
        parsed = self._parse(payload)
        with self._lock:
            self._data = parsed
            self._changed()
        logger.info("Dataset imported successfully (%d classes, %d samples)",
                    len(parsed), self.total_samples)

    @staticmethod
    def _parse(payload):
        if isinstance(payload, (bytes, bytearray)):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ParseError("Dataset payload is not UTF-8: %s" % e) from e
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise ParseError("Dataset payload is not valid JSON: %s" % e) from e

        if not isinstance(payload, dict):
            raise ParseError("Dataset payload must be an object, got %s" % type(payload).__name__)
        dataset = payload.get("dataset")
        if not isinstance(dataset, dict):
            raise ParseError("Dataset payload has no 'dataset' mapping")
        labels = payload.get("labels", [])
        if not isinstance(labels, list):
            raise ParseError("'labels' must be a list")

        parsed = OrderedDict()
        for raw_name, samples in dataset.items():
            name = _clean_name(raw_name)
            if name is None:
                raise ParseError("Invalid gesture name %r" % (raw_name,))
            if name in parsed:
                raise ParseError("Duplicate gesture name %r" % name)
            if not isinstance(samples, list):
                raise ParseError("Samples for %r must be a list" % name)
            if not samples:
                logger.warning("Dropping empty gesture class %r from import", name)
                continue
            vectors = []
            for i, sample in enumerate(samples):
                if not isinstance(sample, list) or not all(
                        isinstance(x, (int, float)) and not isinstance(x, bool) for x in sample):
                    raise ParseError("Sample %d of %r is not a list of numbers" % (i, name))
                try:
                    vectors.append(as_feature_vector(sample))
                except InvalidInput as e:
                    raise ParseError("Sample %d of %r: %s" % (i, name, e)) from e
            parsed[name] = vectors

        if labels and sorted(labels) != sorted(parsed):
            logger.warning("Imported labels %s do not match dataset classes %s; recomputing",
                           labels, sorted(parsed))
        return parsed


class LandmarkTensorDataset(Dataset):
    """PyTorch Dataset over ``(features, label_index)`` pairs.

    Each sample is a pair where:
        - features: FloatTensor of shape (63,)
        - label: LongTensor scalar (index into ``labels``)
    """

    def __init__(self, features, targets):
        if len(features) != len(targets):
            raise ValueError("features/targets length mismatch")
        if len(features):
            self._features = torch.from_numpy(np.stack(features).astype(np.float32))
        else:
            self._features = torch.zeros((0, FEATURE_DIM), dtype=torch.float32)
        self._targets = torch.as_tensor(list(targets), dtype=torch.long)

    @classmethod
    def from_pairs(cls, pairs):
        """Build from a list of ``(vector, label_index)``."""
        return cls([p[0] for p in pairs], [p[1] for p in pairs])

    def __len__(self):
        return len(self._targets)

    def __getitem__(self, idx):
        return self._features[idx], self._targets[idx]

    @property
    def targets(self):
        return self._targets
