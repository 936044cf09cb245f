"""
Per-frame gesture recognition with centroid-based outlier rejection.

Pipeline for one pose:
    normalize → classifier softmax → argmax → centroid distance check → Verdict

The centroid check catches poses the softmax confidently misclassifies
(common near decision boundaries with few training samples). Failures of
any kind are turned into sentinel verdicts; recognize() never raises.
"""

import logging
from dataclasses import dataclass

import numpy as np

from core.errors import InvalidInput
from core.types import Verdict
from models.feature_extractor import normalize

logger = logging.getLogger(__name__)


@dataclass
class RecognitionConfig:
    """Recognition engine configuration."""
    max_distance_threshold: float = 10.0

    @classmethod
    def from_dict(cls, config: dict) -> "RecognitionConfig":
        """Create config from dictionary."""
        return cls(
            max_distance_threshold=float(config.get("max_distance_threshold", 10.0)),
        )


class RecognitionEngine:
    """Turns poses into verdicts using the model installed in a GestureContext.

    The engine holds no model of its own: it reads ``context.model``
    (classifier and centroids together) on every call, so a retrain is picked up on
    the next frame.

    Usage::

        engine = RecognitionEngine(context, RecognitionConfig())
        verdict = engine.recognize(landmarks)
    """

    def __init__(self, context, config: RecognitionConfig = None):
        self._context = context
        self.config = config or RecognitionConfig()

        self._calls = 0
        self._uncertain = 0
        self._errors = 0

    @property
    def distance_threshold(self) -> float:
        return self.config.max_distance_threshold

    @distance_threshold.setter
    def distance_threshold(self, value: float):
        self.config.max_distance_threshold = float(value)

    def recognize(self, pose) -> Verdict:
        """Classify one pose.

        Returns:
            Verdict with a gesture name, or one of the sentinels
            ``no_model_trained`` (untrained / invalid pose),
            ``uncertain`` (too far from the class centroid) or
            ``prediction_error`` (inference failed).
        """
        self._calls += 1
        classifier, centroids = self._context.model
        if classifier is None or not classifier.is_trained:
            return Verdict.no_model()

        try:
            features = normalize(pose)
        except InvalidInput as e:
            logger.debug("Rejected pose: %s", e)
            return Verdict.no_model()

        try:
            probs = classifier.predict_proba(features)
            labels = classifier.labels
            index = int(np.argmax(probs))
            name = labels[index]
            confidence = float(probs[index])
            scores = {label: float(p) for label, p in zip(labels, probs)}

            distance = None
            if centroids is not None and name in centroids:
                distance = centroids.distance(features, name)
                if distance > self.config.max_distance_threshold:
                    self._uncertain += 1
                    logger.debug("Outlier: distance %.2f to %s > %.2f",
                                 distance, name, self.config.max_distance_threshold)
                    return Verdict.uncertain(distance)

            return Verdict(name, confidence, distance=distance, scores=scores)

        except Exception as e:
            self._errors += 1
            logger.warning("Prediction error: %s", e)
            return Verdict.error()

    @property
    def stats(self) -> dict:
        """Inference statistics."""
        return {
            "calls": self._calls,
            "uncertain": self._uncertain,
            "errors": self._errors,
            "uncertain_ratio": self._uncertain / max(self._calls, 1),
        }
