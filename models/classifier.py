"""
GestureClassifier: owns a trained GestureNet and the LabelSet it was trained on.

The classifier is the unit that is produced by a training run, installed
into the GestureContext, persisted and replaced wholesale on retraining.
Output index ``i`` of the network always corresponds to ``labels[i]`` of
the same instance.

State machine::

    UNTRAINED --begin_training()--> TRAINING --mark_trained()--> TRAINED
"""

import logging
from contextlib import contextmanager

import numpy as np
import torch

from core.errors import PredictionError
from core.types import ClassifierState, FEATURE_DIM
from models.gesture_net import GestureNet

logger = logging.getLogger(__name__)


def resolve_device(name="auto"):
    """Map a config device string to a torch device name."""
    if name == "auto":
        return "cuda" if torch.cuda.is_available() else "cpu"
    return name


class GestureClassifier:
    """Trainable multi-class model over normalized feature vectors.

    Usage::

        clf = GestureClassifier(["fist", "open"])
        model = clf.begin_training()
        ...  # fit ``model``
        clf.mark_trained()
        probs = clf.predict_proba(features)
    """

    def __init__(self, labels, device="cpu", hyperparameters=None):
        self._labels = list(labels)
        self._device = device
        self._hyperparameters = dict(hyperparameters or {})
        self._model = None
        self._state = ClassifierState.UNTRAINED

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def begin_training(self):
        """Create a fresh network and enter the TRAINING state.

        Returns:
            The GestureNet to be fitted by the caller.
        """
        if self._state is not ClassifierState.UNTRAINED:
            raise RuntimeError("Classifier already %s" % self._state.value)
        self._model = GestureNet(num_classes=len(self._labels), **self._hyperparameters)
        self._model.to(self._device)
        self._state = ClassifierState.TRAINING
        return self._model

    def mark_trained(self):
        if self._state is not ClassifierState.TRAINING:
            raise RuntimeError("Classifier is not training (state=%s)" % self._state.value)
        self._model.eval()
        self._state = ClassifierState.TRAINED
        logger.debug("Classifier trained for labels %s", self._labels)

    def destroy(self):
        """Release the network and return to UNTRAINED."""
        self._model = None
        self._state = ClassifierState.UNTRAINED
        if self._device.startswith("cuda"):
            torch.cuda.empty_cache()

    @property
    def state(self):
        return self._state

    @property
    def is_trained(self):
        return self._state is ClassifierState.TRAINED

    @property
    def labels(self):
        return list(self._labels)

    @property
    def device(self):
        return self._device

    @property
    def model(self):
        return self._model

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    @contextmanager
    def _inference_scope(self):
        """Eval mode + no autograd; the input tensor never outlives the call."""
        self._model.eval()
        with torch.no_grad():
            try:
                yield
            finally:
                if self._device.startswith("cuda"):
                    torch.cuda.synchronize()

    def predict_proba(self, features):
        """Probability distribution over ``labels`` for one feature vector.

        Args:
            features: array-like of shape (63,)

        Returns:
            np.ndarray of shape (len(labels),)

        Raises:
            PredictionError: not trained, or inference failed.
        """
        if not self.is_trained:
            raise PredictionError("Classifier is not trained", code="untrained")

        vector = np.asarray(features, dtype=np.float32)
        if vector.shape != (FEATURE_DIM,):
            raise PredictionError("Expected %d features, got %s" % (FEATURE_DIM, str(vector.shape)))

        with self._inference_scope():
            tensor = torch.from_numpy(vector).unsqueeze(0).to(self._device)
            try:
                logits = self._model(tensor)
                probs = torch.softmax(logits, dim=1).cpu().numpy().squeeze(0)
            finally:
                del tensor

        if probs.shape != (len(self._labels),) or not np.all(np.isfinite(probs)):
            raise PredictionError("Classifier produced invalid output %s" % str(probs.shape))
        return probs

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def to_checkpoint(self):
        """Serializable dict (for ``torch.save``)."""
        if not self.is_trained:
            raise RuntimeError("Only a trained classifier can be checkpointed")
        return {
            "model_state_dict": {k: v.detach().cpu() for k, v in self._model.state_dict().items()},
            "hyperparameters": self._model.hyperparameters,
            "labels": list(self._labels),
            "input_dim": FEATURE_DIM,
        }

    @classmethod
    def from_checkpoint(cls, checkpoint, device="cpu"):
        """Rebuild a TRAINED classifier from :meth:`to_checkpoint` output."""
        labels = checkpoint.get("labels")
        if not labels:
            raise ValueError("Checkpoint has no labels")
        model = GestureNet.from_checkpoint(checkpoint, device=device)
        if model.num_classes != len(labels):
            raise ValueError("Checkpoint has %d outputs for %d labels"
                             % (model.num_classes, len(labels)))
        clf = cls(labels, device=device)
        clf._model = model
        clf._state = ClassifierState.TRAINED
        return clf

    def __repr__(self):
        return "GestureClassifier(%s, labels=%s)" % (self._state.value, self._labels)
