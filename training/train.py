#!/usr/bin/env python3
"""
Training pipeline for the gesture classifier.

Library use::

    pipeline = TrainingPipeline(TrainingConfig())
    result = pipeline.train(dataset, on_progress=print)
    result.classifier   # TRAINED GestureClassifier
    result.centroids    # CentroidModel over the full dataset

Background use::

    task = pipeline.start(dataset, on_progress=report)
    ...
    result = task.result()          # re-raises TrainingError on failure
    task.cancel()                   # honoured at the next epoch boundary

Standalone::

    # Train from an exported dataset and save to a model directory
    python -m training.train --dataset gestures.json --output-dir models/weights

    # With custom options
    python -m training.train --dataset gestures.json --epochs 80 --lr 0.0005
"""

import sys
import time
import logging
import argparse
import threading
from collections import OrderedDict
from dataclasses import dataclass, field, fields
from typing import Callable, Dict, List, Optional

import numpy as np
import torch
import torch.nn as nn
import torch.optim as optim
from torch.utils.data import DataLoader

from core.errors import InsufficientData, TrainingCancelled, TrainingError
from core.events import Events
from models.centroid_model import CentroidModel
from models.classifier import GestureClassifier, resolve_device
from modules.utils.logger import log_timing
from training.dataset import LandmarkTensorDataset

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, float, float], None]


@dataclass
class TrainingConfig:
    """Hyperparameters and preconditions for a training run."""
    epochs: int = 50
    batch_size: int = 32
    learning_rate: float = 0.001
    train_split: float = 0.8
    hidden1: int = 128
    hidden2: int = 64
    dropout: float = 0.2
    seed: int = 42
    device: str = "auto"
    min_total_samples: int = 0

    @classmethod
    def from_dict(cls, config: dict) -> "TrainingConfig":
        """Create config from dictionary; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (config or {}).items() if k in known})

    @property
    def hyperparameters(self) -> dict:
        return {"hidden1": self.hidden1, "hidden2": self.hidden2, "dropout": self.dropout}


@dataclass
class TrainingResult:
    """Everything produced by one successful run."""
    classifier: GestureClassifier
    centroids: CentroidModel
    labels: List[str]
    history: Dict[str, List[float]] = field(default_factory=dict)
    confusion_matrix: Optional[np.ndarray] = None
    train_samples: int = 0
    val_samples: int = 0
    elapsed_sec: float = 0.0
    dataset_version: Optional[int] = None

    @property
    def final_train_acc(self) -> float:
        acc = self.history.get("train_acc") or [0.0]
        return acc[-1]

    @property
    def final_val_acc(self) -> float:
        acc = self.history.get("val_acc") or [0.0]
        return acc[-1]


# =============================================================================
# Data preparation
# =============================================================================

def stratified_split(snapshot, labels, train_split, rng):
    """Split ``{name: [vector]}`` into train/validation pairs per class.

    Each class is shuffled independently, then ``max(1, floor(n * split))``
    of its samples go to training and the rest to validation, so every
    class is represented in training and, once it has enough samples,
    in validation too.

    Returns:
        (train_pairs, val_pairs), lists of (vector, label_index)
    """
    train_pairs, val_pairs = [], []
    for label_index, name in enumerate(labels):
        samples = snapshot[name]
        order = rng.permutation(len(samples))
        n_train = max(1, int(len(samples) * train_split))
        for rank, i in enumerate(order):
            pair = (samples[i], label_index)
            if rank < n_train:
                train_pairs.append(pair)
            else:
                val_pairs.append(pair)
    return train_pairs, val_pairs


# =============================================================================
# Epoch loops
# =============================================================================

def train_one_epoch(model, loader, criterion, optimizer, device):
    """Train for one epoch, return (avg_loss, accuracy)."""
    model.train()
    running_loss = 0.0
    correct = 0
    total = 0

    for features, labels in loader:
        features = features.to(device)
        labels = labels.to(device)

        optimizer.zero_grad()
        outputs = model(features)
        loss = criterion(outputs, labels)
        if not torch.isfinite(loss):
            raise FloatingPointError("Non-finite training loss: %s" % loss.item())
        loss.backward()
        optimizer.step()

        running_loss += loss.item() * features.size(0)
        _, predicted = outputs.max(1)
        total += labels.size(0)
        correct += predicted.eq(labels).sum().item()

    return running_loss / max(total, 1), correct / max(total, 1)


def validate(model, loader, criterion, device):
    """Validate, return (avg_loss, accuracy). An empty loader scores 0."""
    model.eval()
    running_loss = 0.0
    correct = 0
    total = 0

    with torch.no_grad():
        for features, labels in loader:
            features = features.to(device)
            labels = labels.to(device)

            outputs = model(features)
            loss = criterion(outputs, labels)

            running_loss += loss.item() * features.size(0)
            _, predicted = outputs.max(1)
            total += labels.size(0)
            correct += predicted.eq(labels).sum().item()

    return running_loss / max(total, 1), correct / max(total, 1)


def compute_confusion_matrix(model, loader, device, num_classes):
    """Compute confusion matrix for detailed analysis."""
    model.eval()
    matrix = np.zeros((num_classes, num_classes), dtype=np.int64)

    with torch.no_grad():
        for features, labels in loader:
            features = features.to(device)
            outputs = model(features)
            _, predicted = outputs.max(1)

            for true_label, pred_label in zip(labels.numpy(), predicted.cpu().numpy()):
                matrix[true_label][pred_label] += 1

    return matrix


def print_confusion_matrix(matrix, class_names):
    """Log the confusion matrix with per-class recall and precision."""
    num_classes = len(class_names)

    header = "%-14s" % "True \\ Pred"
    for name in class_names:
        header += " %6s" % name[:6]
    header += "  Recall"
    logger.info(header)
    logger.info("-" * len(header))

    for i in range(num_classes):
        row = "%-14s" % class_names[i][:14]
        row_total = matrix[i].sum()
        for j in range(num_classes):
            row += " %6d" % matrix[i][j]
        recall = matrix[i][i] / max(row_total, 1)
        row += "  %.3f" % recall
        logger.info(row)

    logger.info("-" * len(header))
    prec_row = "%-14s" % "Precision"
    for j in range(num_classes):
        col_total = matrix[:, j].sum()
        prec = matrix[j][j] / max(col_total, 1)
        prec_row += " %6.3f" % prec
    logger.info(prec_row)


# =============================================================================
# Pipeline
# =============================================================================

class TrainingPipeline:
    """Exclusive, non-reentrant trainer producing classifier + centroids.

    Only one run may be active per pipeline; a second call while a run is
    in flight fails immediately with ``TrainingError``.
    """

    def __init__(self, config: Optional[TrainingConfig] = None, event_bus=None):
        self.config = config or TrainingConfig()
        self._bus = event_bus
        self._lock = threading.Lock()
        self._active = False

    @property
    def is_training(self) -> bool:
        return self._active

    def _acquire(self):
        with self._lock:
            if self._active:
                raise TrainingError("training already in progress", code="busy")
            self._active = True

    def _release(self):
        with self._lock:
            self._active = False

    def start(self, dataset, on_progress: Optional[ProgressCallback] = None,
              on_complete: Optional[Callable[[TrainingResult], None]] = None) -> "TrainingTask":
        """Run :meth:`train` on a background thread.

        The guard is taken synchronously so a concurrent start fails here
        rather than inside the worker. ``on_complete(result)`` runs on the
        worker before the task resolves.
        """
        self._acquire()
        task = TrainingTask()

        def _run():
            try:
                result = self._train_guarded(dataset, on_progress, task._cancel_event)
                if on_complete is not None:
                    on_complete(result)
                task._set_result(result)
            except BaseException as e:
                task._set_error(e)

        task._thread = threading.Thread(target=_run, name="gesture-training", daemon=True)
        task._thread.start()
        return task

    def train(self, dataset, on_progress: Optional[ProgressCallback] = None,
              cancel_event: Optional[threading.Event] = None) -> TrainingResult:
        """Train a new classifier and centroid model from ``dataset``.

        Args:
            dataset: GestureDataset (snapshotted here) or ``{name: [vector]}``
            on_progress: ``(epoch, total_epochs, train_acc, val_acc)``, called
                synchronously after every epoch
            cancel_event: set to abort at the next epoch boundary

        Raises:
            InsufficientData: fewer than two non-empty classes
            TrainingError: already training, or the run failed
        """
        self._acquire()
        return self._train_guarded(dataset, on_progress, cancel_event)

    def _train_guarded(self, dataset, on_progress, cancel_event):
        try:
            return self._train(dataset, on_progress, cancel_event)
        finally:
            self._release()

    @log_timing
    def _train(self, dataset, on_progress, cancel_event):
        cfg = self.config
        if hasattr(dataset, "snapshot"):
            snapshot = dataset.snapshot()
            dataset_version = getattr(dataset, "version", None)
        else:
            snapshot = OrderedDict((k, list(v)) for k, v in dataset.items() if len(v))
            dataset_version = None

        labels = sorted(snapshot)
        total_samples = sum(len(v) for v in snapshot.values())
        if len(labels) < 2:
            raise InsufficientData(
                "insufficient classes: need at least 2 gestures with samples, got %d" % len(labels),
                code="insufficient_classes",
            )
        if total_samples < cfg.min_total_samples:
            raise InsufficientData(
                "insufficient samples: need at least %d, got %d" % (cfg.min_total_samples, total_samples),
                code="insufficient_samples",
            )

        self._publish(Events.TRAINING_STARTED, labels=labels, samples=total_samples)

        device = resolve_device(cfg.device)
        torch.manual_seed(cfg.seed)
        rng = np.random.RandomState(cfg.seed)

        classifier = GestureClassifier(labels, device=device, hyperparameters=cfg.hyperparameters)
        train_loader = val_loader = full_loader = None
        succeeded = False
        try:
            logger.info("Building training data...")
            train_pairs, val_pairs = stratified_split(snapshot, labels, cfg.train_split, rng)
            train_ds = LandmarkTensorDataset.from_pairs(train_pairs)
            val_ds = LandmarkTensorDataset.from_pairs(val_pairs)
            logger.info("Training on %d samples, validating on %d samples",
                        len(train_ds), len(val_ds))

            generator = torch.Generator().manual_seed(cfg.seed)
            train_loader = DataLoader(train_ds, batch_size=cfg.batch_size, shuffle=True,
                                      num_workers=0, generator=generator)
            val_loader = DataLoader(val_ds, batch_size=cfg.batch_size, shuffle=False,
                                    num_workers=0)

            model = classifier.begin_training()
            criterion = nn.CrossEntropyLoss()
            optimizer = optim.Adam(model.parameters(), lr=cfg.learning_rate)

            history = {"train_loss": [], "val_loss": [], "train_acc": [], "val_acc": []}
            start_time = time.time()

            for epoch in range(1, cfg.epochs + 1):
                if cancel_event is not None and cancel_event.is_set():
                    raise TrainingCancelled("training cancelled at epoch %d" % epoch, code="cancelled")

                train_loss, train_acc = train_one_epoch(model, train_loader, criterion, optimizer, device)
                val_loss, val_acc = validate(model, val_loader, criterion, device)

                history["train_loss"].append(train_loss)
                history["val_loss"].append(val_loss)
                history["train_acc"].append(train_acc)
                history["val_acc"].append(val_acc)

                logger.debug("Epoch %3d/%d | Train: loss=%.4f acc=%.3f | Val: loss=%.4f acc=%.3f",
                             epoch, cfg.epochs, train_loss, train_acc, val_loss, val_acc)
                if on_progress is not None:
                    on_progress(epoch, cfg.epochs, train_acc, val_acc)
                self._publish(Events.TRAINING_PROGRESS, epoch=epoch, total=cfg.epochs,
                              train_acc=train_acc, val_acc=val_acc)

            classifier.mark_trained()
            elapsed = time.time() - start_time

            centroids = CentroidModel.fit(snapshot)

            all_pairs = [(v, i) for i, name in enumerate(labels) for v in snapshot[name]]
            full_loader = DataLoader(LandmarkTensorDataset.from_pairs(all_pairs),
                                     batch_size=cfg.batch_size, shuffle=False)
            matrix = compute_confusion_matrix(model, full_loader, device, len(labels))

            logger.info("Model trained in %.1fs: acc=%.3f val_acc=%.3f (%d classes)",
                        elapsed, history["train_acc"][-1], history["val_acc"][-1], len(labels))
            print_confusion_matrix(matrix, labels)

            succeeded = True
            return TrainingResult(
                classifier=classifier,
                centroids=centroids,
                labels=labels,
                history=history,
                confusion_matrix=matrix,
                train_samples=len(train_ds),
                val_samples=len(val_ds),
                elapsed_sec=elapsed,
                dataset_version=dataset_version,
            )

        except TrainingError as e:
            self._publish(Events.TRAINING_FAILED, error=str(e))
            raise
        except Exception as e:
            logger.error("Training failed: %s", e)
            self._publish(Events.TRAINING_FAILED, error=str(e))
            raise TrainingError("training failed: %s" % e, code="failed") from e
        finally:
            del train_loader, val_loader, full_loader
            if not succeeded:
                classifier.destroy()
            elif device.startswith("cuda"):
                torch.cuda.empty_cache()

    def _publish(self, event_name, **kwargs):
        if self._bus is not None:
            self._bus.emit(event_name, **kwargs)


class TrainingTask:
    """Handle for a background training run."""

    def __init__(self):
        self._cancel_event = threading.Event()
        self._done = threading.Event()
        self._thread = None
        self._result = None
        self._error = None

    def _set_result(self, result):
        self._result = result
        self._done.set()

    def _set_error(self, error):
        self._error = error
        self._done.set()

    def cancel(self):
        """Request cancellation; takes effect at the next epoch boundary."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def done(self) -> bool:
        return self._done.is_set()

    def result(self, timeout: Optional[float] = None) -> TrainingResult:
        """Wait for the run and return its result or re-raise its error."""
        if not self._done.wait(timeout):
            raise TimeoutError("training did not finish within %.1fs" % timeout)
        if self._error is not None:
            raise self._error
        return self._result


# =============================================================================
# CLI
# =============================================================================

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Train the gesture classifier")
    parser.add_argument("--dataset", required=True,
                        help="Exported dataset JSON (labels + dataset)")
    parser.add_argument("--output-dir", default="models/weights",
                        help="Directory to save the trained model")
    parser.add_argument("--config", default=None,
                        help="Path to config.yaml")
    parser.add_argument("--epochs", type=int, default=None,
                        help="Number of training epochs")
    parser.add_argument("--batch-size", type=int, default=None,
                        help="Training batch size")
    parser.add_argument("--lr", type=float, default=None,
                        help="Learning rate")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed for reproducibility")
    return parser.parse_args(argv)


def main(argv=None):
    from core.errors import GestureError
    from modules.storage.persistence import BlobPersistenceAdapter, DirectoryBlobStore
    from modules.utils.config import Config
    from modules.utils.logger import setup_logging
    from training.dataset import GestureDataset

    args = parse_args(argv)
    config = Config().load(args.config)
    setup_logging(level=config.get("logging.level", "INFO"))

    train_cfg = dict(config.training)
    overrides = {"epochs": args.epochs, "batch_size": args.batch_size,
                 "learning_rate": args.lr, "seed": args.seed}
    train_cfg.update({k: v for k, v in overrides.items() if v is not None})

    dataset = GestureDataset()
    try:
        with open(args.dataset, "r") as f:
            dataset.import_data(f.read())
    except (OSError, GestureError) as e:
        logger.error("Could not load dataset %s: %s", args.dataset, e)
        return 1

    for name, count in sorted(dataset.stats().items()):
        logger.info("  %-15s %d samples", name, count)

    def report(epoch, total, acc, val_acc):
        if epoch % 5 == 0 or epoch <= 3 or epoch == total:
            logger.info("Epoch %3d/%d | acc=%.3f | val_acc=%.3f", epoch, total, acc, val_acc)

    pipeline = TrainingPipeline(TrainingConfig.from_dict(train_cfg))
    try:
        result = pipeline.train(dataset, on_progress=report)
    except TrainingError as e:
        logger.error("Training failed: %s", e)
        return 1

    adapter = BlobPersistenceAdapter(DirectoryBlobStore(args.output_dir))
    try:
        adapter.save(result.classifier, result.centroids, result.labels)
    except GestureError as e:
        logger.error("Could not save model: %s", e)
        return 1

    logger.info("=" * 60)
    logger.info("Model saved to: %s", args.output_dir)
    logger.info("Labels: %s", ", ".join(result.labels))
    logger.info("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
