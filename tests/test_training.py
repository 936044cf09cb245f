"""
Tests for Training Pipeline
===========================
"""

import threading
import pytest
import numpy as np
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import InsufficientData, TrainingCancelled, TrainingError
from core.events import EventBus, Events
from core.types import ClassifierState
from training.dataset import GestureDataset
from training.train import (
    TrainingConfig, TrainingPipeline, compute_confusion_matrix, stratified_split,
)


@pytest.fixture
def config():
    return TrainingConfig(device="cpu")


class TestTrainingPreconditions:
    """Training refuses datasets it cannot learn from."""

    def test_empty_dataset(self, config):
        with pytest.raises(InsufficientData):
            TrainingPipeline(config).train(GestureDataset())

    def test_single_class(self, config, open_pose):
        dataset = GestureDataset()
        for _ in range(5):
            dataset.add("open", open_pose)
        with pytest.raises(InsufficientData):
            TrainingPipeline(config).train(dataset)

    def test_empty_second_class_does_not_count(self, config, open_pose):
        dataset = GestureDataset()
        dataset.add("open", open_pose)
        dataset.import_data({"dataset": {"open": dataset.to_dict()["dataset"]["open"], "fist": []}})
        with pytest.raises(InsufficientData):
            TrainingPipeline(config).train(dataset)

    def test_min_total_samples(self, open_pose, fist_pose):
        dataset = GestureDataset()
        dataset.add("open", open_pose)
        dataset.add("fist", fist_pose)
        pipeline = TrainingPipeline(TrainingConfig(device="cpu", min_total_samples=20))
        with pytest.raises(InsufficientData):
            pipeline.train(dataset)

    def test_insufficient_data_is_training_error(self):
        assert issubclass(InsufficientData, TrainingError)


class TestTrainingRun:
    """Successful runs produce a trained classifier and centroids."""

    @pytest.fixture
    def result(self, config, two_class_dataset):
        return TrainingPipeline(config).train(two_class_dataset)

    def test_classifier_trained(self, result):
        assert result.classifier.state is ClassifierState.TRAINED
        assert result.classifier.is_trained

    def test_labels_sorted(self, result):
        assert result.labels == ["fist", "open"]
        assert result.classifier.labels == ["fist", "open"]

    def test_centroid_for_every_label(self, result):
        for label in result.labels:
            assert label in result.centroids

    def test_history_and_split(self, result, config):
        assert len(result.history["train_acc"]) == config.epochs
        assert result.train_samples == 32
        assert result.val_samples == 8

    def test_confusion_matrix_shape(self, result):
        assert result.confusion_matrix.shape == (2, 2)
        assert result.confusion_matrix.sum() == 40

    def test_minimal_dataset(self, config, open_pose, fist_pose):
        """One sample per class trains; validation is empty and scores 0."""
        dataset = GestureDataset()
        dataset.add("open", open_pose)
        dataset.add("fist", fist_pose)
        result = TrainingPipeline(config).train(dataset)
        assert result.classifier.is_trained
        assert result.val_samples == 0
        assert result.final_val_acc == 0.0

    def test_plain_mapping_input(self, config, two_class_dataset):
        result = TrainingPipeline(config).train(two_class_dataset.snapshot())
        assert result.labels == ["fist", "open"]
        assert result.dataset_version is None


class TestProgressAndEvents:
    """Progress reporting."""

    def test_progress_called_every_epoch(self, config, two_class_dataset):
        calls = []
        TrainingPipeline(config).train(
            two_class_dataset, on_progress=lambda *args: calls.append(args))

        assert len(calls) == config.epochs
        assert [c[0] for c in calls] == list(range(1, config.epochs + 1))
        assert all(c[1] == config.epochs for c in calls)
        assert all(0.0 <= c[2] <= 1.0 and 0.0 <= c[3] <= 1.0 for c in calls)

    def test_events_published(self, config, two_class_dataset):
        bus = EventBus()
        seen = []
        bus.subscribe(Events.TRAINING_STARTED, lambda **kw: seen.append("started"))
        bus.subscribe(Events.TRAINING_PROGRESS, lambda **kw: seen.append("progress"))
        TrainingPipeline(TrainingConfig(device="cpu", epochs=3), event_bus=bus).train(two_class_dataset)
        assert seen == ["started", "progress", "progress", "progress"]

    def test_failure_published(self, config):
        bus = EventBus()
        failures = []
        bus.subscribe(Events.TRAINING_FAILED, lambda **kw: failures.append(kw["error"]))
        with pytest.raises(InsufficientData):
            TrainingPipeline(config, event_bus=bus).train(GestureDataset())
        # Preconditions fail before the run starts
        assert failures == []


class TestExclusiveTraining:
    """Only one run at a time."""

    def test_concurrent_train_rejected(self, config, two_class_dataset):
        pipeline = TrainingPipeline(config)
        started = threading.Event()
        release = threading.Event()

        def slow_progress(epoch, total, acc, val_acc):
            started.set()
            release.wait(5)

        task = pipeline.start(two_class_dataset, on_progress=slow_progress)
        assert started.wait(5)
        assert pipeline.is_training

        with pytest.raises(TrainingError) as excinfo:
            pipeline.train(two_class_dataset)
        assert excinfo.value.code == "busy"

        release.set()
        assert task.result(timeout=30).classifier.is_trained
        assert not pipeline.is_training

    def test_guard_released_after_failure(self, config, two_class_dataset):
        pipeline = TrainingPipeline(config)
        with pytest.raises(InsufficientData):
            pipeline.train(GestureDataset())
        assert not pipeline.is_training
        assert pipeline.train(two_class_dataset).classifier.is_trained

    def test_cancel(self, config, two_class_dataset):
        pipeline = TrainingPipeline(config)
        gate = threading.Event()

        def wait_for_cancel(epoch, total, acc, val_acc):
            gate.wait(5)

        task = pipeline.start(two_class_dataset, on_progress=wait_for_cancel)
        task.cancel()
        gate.set()

        with pytest.raises(TrainingCancelled):
            task.result(timeout=30)
        assert task.cancelled
        assert task.done()
        assert not pipeline.is_training

    def test_progress_error_fails_run(self, config, two_class_dataset):
        def broken(epoch, total, acc, val_acc):
            raise RuntimeError("display gone")

        with pytest.raises(TrainingError):
            TrainingPipeline(config).train(two_class_dataset, on_progress=broken)


class TestSplit:
    """Stratified train/validation split."""

    def test_every_class_in_training(self):
        snapshot = {"a": [np.zeros(63)] * 10, "b": [np.ones(63)] * 3, "c": [np.ones(63)]}
        train, val = stratified_split(snapshot, ["a", "b", "c"], 0.8, np.random.RandomState(42))

        train_classes = {label for _, label in train}
        assert train_classes == {0, 1, 2}
        assert len(train) == 8 + 2 + 1
        assert len(val) == 2 + 1 + 0

    def test_confusion_matrix(self, config, two_class_dataset):
        from torch.utils.data import DataLoader
        from training.dataset import LandmarkTensorDataset

        result = TrainingPipeline(config).train(two_class_dataset)
        pairs = [(v, 0) for v in two_class_dataset.samples("fist")]
        loader = DataLoader(LandmarkTensorDataset.from_pairs(pairs), batch_size=8)
        matrix = compute_confusion_matrix(result.classifier.model, loader, "cpu", 2)
        assert matrix[0].sum() == 20


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
