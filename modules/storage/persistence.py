"""
Persistence of the trained classifier, centroids and labels.

The core never touches storage directly: it talks to a PersistenceAdapter,
which writes three opaque blobs into a key-value BlobStore:

    gesture-model.pth        torch checkpoint (weights + hyperparameters + labels
                             + centroids), written last
    gesture_centroids.json   {name: [63 floats]}
    gesture_labels.json      [name, ...] in classifier output order

Stores:
    MemoryBlobStore      dict-backed, process lifetime only
    DirectoryBlobStore   one file per key, atomic replace on write
"""

import io
import os
import json
import logging
import tempfile
from abc import ABC, abstractmethod
from collections import namedtuple

import torch

from core.errors import PersistenceError
from models.centroid_model import CentroidModel
from models.classifier import GestureClassifier

logger = logging.getLogger(__name__)

MODEL_KEY = "gesture-model.pth"
CENTROIDS_KEY = "gesture_centroids.json"
LABELS_KEY = "gesture_labels.json"

LoadedModel = namedtuple("LoadedModel", ["classifier", "centroids", "labels"])


# =============================================================================
# Blob stores
# =============================================================================

class BlobStore(ABC):
    """Opaque key → bytes storage."""

    @abstractmethod
    def get(self, key):
        """Return the stored bytes or None."""

    @abstractmethod
    def put(self, key, data):
        """Store bytes under key, replacing any previous value."""

    @abstractmethod
    def delete(self, key):
        """Remove key if present."""


class MemoryBlobStore(BlobStore):
    def __init__(self):
        self._blobs = {}

    def get(self, key):
        return self._blobs.get(key)

    def put(self, key, data):
        self._blobs[key] = bytes(data)

    def delete(self, key):
        self._blobs.pop(key, None)

    def keys(self):
        return sorted(self._blobs)


class DirectoryBlobStore(BlobStore):
    """Stores each key as a file in ``root``."""

    def __init__(self, root):
        self._root = root

    @property
    def root(self):
        return self._root

    def _path(self, key):
        if os.sep in key or (os.altsep and os.altsep in key) or key in ("", ".", ".."):
            raise ValueError("Invalid blob key %r" % key)
        return os.path.join(self._root, key)

    def get(self, key):
        try:
            with open(self._path(key), "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def put(self, key, data):
        os.makedirs(self._root, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._root, prefix=".%s." % key)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, self._path(key))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def delete(self, key):
        try:
            os.unlink(self._path(key))
        except FileNotFoundError:
            pass


# =============================================================================
# Adapters
# =============================================================================

class PersistenceAdapter(ABC):
    """save/load of {classifier, centroids, labels}."""

    @abstractmethod
    def save(self, classifier, centroids, labels):
        """Persist a trained model. Raises PersistenceError."""

    @abstractmethod
    def load(self):
        """Return LoadedModel, or None when nothing was saved. Raises PersistenceError."""

    def clear(self):
        """Forget any saved model."""


class BlobPersistenceAdapter(PersistenceAdapter):
    """PersistenceAdapter over a BlobStore."""

    def __init__(self, store, device="cpu"):
        self._store = store
        self._device = device

    @property
    def store(self):
        return self._store

    def save(self, classifier, centroids, labels):
        """Write the JSON side files first and the checkpoint last.

        The checkpoint carries its own copy of the centroids, so a save that
        fails part way leaves the previously saved checkpoint loadable.
        """
        labels = list(labels)
        if classifier is None or not classifier.is_trained:
            raise PersistenceError("Only a trained classifier can be saved", code="untrained")
        if labels != classifier.labels:
            raise PersistenceError("Labels %s do not match classifier labels %s"
                                   % (labels, classifier.labels), code="label_mismatch")
        try:
            centroid_dict = centroids.to_dict() if centroids is not None else {}
            checkpoint = classifier.to_checkpoint()
            checkpoint["centroids"] = centroid_dict
            buffer = io.BytesIO()
            torch.save(checkpoint, buffer)

            self._store.put(CENTROIDS_KEY, json.dumps(centroid_dict).encode("utf-8"))
            self._store.put(LABELS_KEY, json.dumps(labels).encode("utf-8"))
            self._store.put(MODEL_KEY, buffer.getvalue())
        except (OSError, RuntimeError, TypeError, ValueError) as e:
            raise PersistenceError("Failed to save model: %s" % e, code="save_failed") from e
        logger.info("Model and centroids saved (%d labels)", len(labels))

    def load(self):
        try:
            model_blob = self._store.get(MODEL_KEY)
            centroid_blob = self._store.get(CENTROIDS_KEY)
            label_blob = self._store.get(LABELS_KEY)
        except OSError as e:
            raise PersistenceError("Failed to read saved model: %s" % e, code="load_failed") from e

        if model_blob is None:
            logger.info("No saved model found, starting fresh")
            return None

        try:
            checkpoint = torch.load(io.BytesIO(model_blob), map_location=self._device,
                                    weights_only=True)
            classifier = GestureClassifier.from_checkpoint(checkpoint, device=self._device)
            labels = classifier.labels

            if "centroids" in checkpoint:
                centroids = CentroidModel.from_dict(checkpoint["centroids"])
                if label_blob is not None and json.loads(label_blob.decode("utf-8")) != labels:
                    logger.warning("Stale %s ignored, using checkpoint labels", LABELS_KEY)
            else:
                # Checkpoint without embedded centroids: the side files must agree with it.
                if label_blob is not None:
                    saved = json.loads(label_blob.decode("utf-8"))
                    if saved != labels:
                        raise ValueError("saved labels %s do not match checkpoint labels %s"
                                         % (saved, labels))
                else:
                    logger.warning("Saved labels missing, using checkpoint labels")

                if centroid_blob is not None:
                    centroids = CentroidModel.from_dict(json.loads(centroid_blob.decode("utf-8")))
                else:
                    centroids = CentroidModel()
        except Exception as e:
            raise PersistenceError("Saved model is unreadable: %s" % e, code="corrupt") from e

        logger.info("Model, centroids, and labels loaded (%s)", ", ".join(labels))
        return LoadedModel(classifier, centroids, labels)

    def clear(self):
        for key in (MODEL_KEY, CENTROIDS_KEY, LABELS_KEY):
            self._store.delete(key)


def create_adapter(persistence_config, device="cpu"):
    """Build the adapter selected by the ``persistence`` config section."""
    backend = persistence_config.get("backend", "directory")
    if backend == "memory":
        return BlobPersistenceAdapter(MemoryBlobStore(), device=device)
    if backend == "directory":
        return BlobPersistenceAdapter(
            DirectoryBlobStore(persistence_config.get("model_dir", "models/weights")),
            device=device,
        )
    raise ValueError("Unknown persistence backend %r" % backend)
