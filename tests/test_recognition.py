"""
Tests for Recognition Engine
============================
"""

import pytest
import numpy as np
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.context import GestureContext
from core.types import NO_MODEL_TRAINED, PREDICTION_ERROR, UNCERTAIN, Landmark
from modules.recognition.recognition_engine import RecognitionConfig, RecognitionEngine
from training.train import TrainingConfig


@pytest.fixture(scope="module")
def trained_context():
    """Context trained on 20 "open" and 20 "fist" samples."""
    from conftest import create_mock_pose
    from training.dataset import GestureDataset

    rng = np.random.RandomState(0)
    dataset = GestureDataset()
    for _ in range(20):
        dataset.add("open", create_mock_pose("open", rng))
        dataset.add("fist", create_mock_pose("fist", rng))

    context = GestureContext(dataset, training_config=TrainingConfig(device="cpu"))
    context.train()
    return context


def scaled(pose, factor):
    """Stretch a pose away from its wrist."""
    wrist = pose[0]
    return [Landmark(wrist.x + (p.x - wrist.x) * factor,
                     wrist.y + (p.y - wrist.y) * factor, p.z) for p in pose]


class TestUntrained:
    """Engine behaviour without a model."""

    def test_no_model(self, open_pose):
        engine = RecognitionEngine(GestureContext())
        verdict = engine.recognize(open_pose)
        assert verdict.name == NO_MODEL_TRAINED
        assert verdict.is_sentinel


class TestRecognition:
    """Engine behaviour with a trained model."""

    @pytest.fixture
    def engine(self, trained_context):
        return RecognitionEngine(trained_context, RecognitionConfig())

    def test_open_training_sample(self, engine, trained_context):
        """A pose identical to an "open" training sample is recognised."""
        pose_features = trained_context.dataset.samples("open")[0]
        pose = [(pose_features[3 * i], pose_features[3 * i + 1], pose_features[3 * i + 2])
                for i in range(21)]
        verdict = engine.recognize(pose)

        assert verdict.name == "open"
        assert verdict.confidence > 0.5
        assert verdict.distance is not None
        assert verdict.distance <= engine.distance_threshold

    def test_fist(self, engine, fist_pose):
        verdict = engine.recognize(fist_pose)
        assert verdict.name == "fist"
        assert set(verdict.scores) == {"fist", "open"}
        assert sum(verdict.scores.values()) == pytest.approx(1.0, abs=1e-5)

    def test_outlier_is_uncertain(self, engine, open_pose):
        """Far from every centroid: uncertain regardless of softmax confidence."""
        verdict = engine.recognize(scaled(open_pose, 20.0))
        assert verdict.name == UNCERTAIN
        assert verdict.distance > engine.distance_threshold

    def test_threshold_is_tunable(self, trained_context, open_pose):
        engine = RecognitionEngine(trained_context, RecognitionConfig(max_distance_threshold=1e-6))
        assert engine.recognize(open_pose).name == UNCERTAIN

        engine.distance_threshold = 10.0
        assert engine.recognize(open_pose).name == "open"

    def test_invalid_pose(self, engine, open_pose):
        verdict = engine.recognize(open_pose[:10])
        assert verdict.name == NO_MODEL_TRAINED

    def test_non_numeric_array(self, engine):
        verdict = engine.recognize(np.array([["a", "b", "c"]] * 21))
        assert verdict.name == NO_MODEL_TRAINED

    def test_none_pose(self, engine):
        assert engine.recognize(None).name == NO_MODEL_TRAINED

    def test_stats(self, trained_context, open_pose):
        engine = RecognitionEngine(trained_context)
        engine.recognize(open_pose)
        engine.recognize(scaled(open_pose, 20.0))
        stats = engine.stats
        assert stats["calls"] == 2
        assert stats["uncertain"] == 1


class TestPredictionError:
    """Inference failures become prediction_error verdicts."""

    class BrokenClassifier:
        is_trained = True
        labels = ["a", "b"]

        def predict_proba(self, features):
            raise RuntimeError("device lost")

    class FakeContext:
        def __init__(self, classifier):
            self.model = (classifier, None)

    def test_prediction_error(self, open_pose):
        engine = RecognitionEngine(self.FakeContext(self.BrokenClassifier()))
        verdict = engine.recognize(open_pose)
        assert verdict.name == PREDICTION_ERROR
        assert engine.stats["errors"] == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
