"""
Application-owned recognition state.

GestureContext ties together the dataset, the installed classifier and
centroid model, the persistence adapter and the event bus. Components
that need the current model (RecognitionEngine) read it from here on
every call, so installing a new model is a single swap.
"""

import logging
import threading
from typing import Optional

from core.errors import PersistenceError
from core.events import EventBus, Events
from training.dataset import GestureDataset
from training.train import TrainingConfig, TrainingPipeline

logger = logging.getLogger(__name__)


class GestureContext:
    """Owns the dataset and the trained model for one application instance.

    Usage::

        ctx = GestureContext(GestureDataset(), persistence=adapter, event_bus=bus)
        ctx.load_model()
        ...
        ctx.train(on_progress=report)
    """

    def __init__(self, dataset: Optional[GestureDataset] = None,
                 training_config: Optional[TrainingConfig] = None,
                 persistence=None, event_bus: Optional[EventBus] = None):
        self.dataset = dataset if dataset is not None else GestureDataset()
        self.persistence = persistence
        self.bus = event_bus
        self.trainer = TrainingPipeline(training_config, event_bus=event_bus)

        self._lock = threading.Lock()
        self._model = (None, None)  # (classifier, centroids), swapped as one

        self.dataset.on_change(self._on_dataset_changed)

    # ------------------------------------------------------------------
    # Installed model
    # ------------------------------------------------------------------

    @property
    def model(self):
        """``(classifier, centroids)`` as installed together."""
        with self._lock:
            return self._model

    @property
    def classifier(self):
        return self.model[0]

    @property
    def centroids(self):
        return self.model[1]

    @property
    def is_trained(self) -> bool:
        classifier = self.classifier
        return classifier is not None and classifier.is_trained

    @property
    def labels(self) -> list:
        """LabelSet of the installed model (empty when untrained)."""
        classifier = self.classifier
        return classifier.labels if classifier is not None else []

    def install(self, result):
        """Install a TrainingResult (or anything with classifier/centroids)."""
        with self._lock:
            self._model = (result.classifier, result.centroids)

        version = getattr(result, "dataset_version", None)
        if version is not None and version != self.dataset.version:
            logger.warning("Dataset changed during training; installed model covers %s",
                           result.classifier.labels)
        logger.info("Model installed for gestures: %s", ", ".join(result.classifier.labels))

    def invalidate(self):
        """Drop the installed model."""
        with self._lock:
            had_model = self._model[0] is not None
            self._model = (None, None)
        if had_model:
            logger.info("Gesture data changed, trained model invalidated")

    def _on_dataset_changed(self, dataset):
        self.invalidate()
        self._publish(Events.DATASET_CHANGED, version=dataset.version,
                      names=dataset.list_names())

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train(self, on_progress=None):
        """Train on the current dataset, install the result and save it.

        Raises:
            InsufficientData, TrainingError: from the training pipeline; the
                previously installed model is left untouched.
        """
        result = self.trainer.train(self.dataset, on_progress=on_progress)
        self._complete(result)
        return result

    def start_training(self, on_progress=None):
        """Train on a background thread; returns a TrainingTask."""
        return self.trainer.start(self.dataset, on_progress=on_progress,
                                  on_complete=self._complete)

    def _complete(self, result):
        self.install(result)
        self._publish(Events.TRAINING_COMPLETE, labels=result.labels,
                      train_acc=result.final_train_acc, val_acc=result.final_val_acc)
        self.save_model()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_model(self) -> bool:
        """Persist the installed model. Failures are logged and published."""
        if self.persistence is None:
            return False
        classifier, centroids = self.model
        try:
            self.persistence.save(classifier, centroids, self.labels)
        except PersistenceError as e:
            logger.error("Error saving model: %s", e)
            self._publish(Events.PERSISTENCE_ERROR, operation="save", error=str(e), code=e.code)
            return False
        self._publish(Events.MODEL_SAVED, labels=self.labels)
        return True

    def load_model(self) -> bool:
        """Install a previously saved model.

        Returns:
            True if a model was loaded; False when nothing was saved or the
            saved model could not be read.
        """
        if self.persistence is None:
            return False
        try:
            loaded = self.persistence.load()
        except PersistenceError as e:
            logger.error("Error loading saved model: %s", e)
            self._publish(Events.PERSISTENCE_ERROR, operation="load", error=str(e), code=e.code)
            return False
        if loaded is None:
            return False

        with self._lock:
            self._model = (loaded.classifier, loaded.centroids)
        if len(loaded.centroids) == 0:
            logger.warning("Model loaded but centroids missing. Retraining recommended.")

        known = self.dataset.labels
        if known and known != loaded.labels:
            logger.warning("Saved model labels %s differ from dataset labels %s",
                           loaded.labels, known)
        self._publish(Events.MODEL_LOADED, labels=loaded.labels)
        return True

    def close(self):
        """Release the installed model."""
        classifier = self.classifier
        self.invalidate()
        if classifier is not None:
            classifier.destroy()

    def _publish(self, event_name, **kwargs):
        if self.bus is not None:
            self.bus.emit(event_name, **kwargs)
