"""
Tests for Landmark Normalization
================================
"""

import pytest
import numpy as np
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import InvalidInput
from core.types import FEATURE_DIM, Landmark
from models.feature_extractor import LandmarkNormalizer, as_feature_vector, normalize


class TestNormalize:
    """Test suite for normalize()."""

    def test_wrist_maps_to_origin(self, open_pose):
        """Wrist x/y become 0 for any valid pose."""
        features = normalize(open_pose)
        assert features[0] == 0.0
        assert features[1] == 0.0

    def test_output_shape_and_dtype(self, open_pose):
        features = normalize(open_pose)
        assert features.shape == (FEATURE_DIM,)
        assert features.dtype == np.float32

    def test_wrist_relative_offsets(self, open_pose):
        """Index fingertip is stored relative to the wrist."""
        features = normalize(open_pose)
        tip = open_pose[8]
        wrist = open_pose[0]
        assert features[24] == pytest.approx(tip.x - wrist.x, abs=1e-6)
        assert features[25] == pytest.approx(tip.y - wrist.y, abs=1e-6)
        assert features[26] == pytest.approx(tip.z, abs=1e-6)

    def test_translation_invariant(self, pose_factory):
        a = normalize(pose_factory("fist", wrist=(0.3, 0.6)))
        b = normalize(pose_factory("fist", wrist=(0.7, 0.9)))
        np.testing.assert_allclose(a, b, atol=1e-6)

    def test_accepts_arrays_mappings_and_tuples(self, open_pose):
        expected = normalize(open_pose)
        as_array = np.array([[p.x, p.y, p.z] for p in open_pose])
        as_dicts = [{"x": p.x, "y": p.y, "z": p.z} for p in open_pose]
        as_tuples = [(p.x, p.y, p.z) for p in open_pose]

        np.testing.assert_allclose(normalize(as_array), expected, atol=1e-6)
        np.testing.assert_allclose(normalize(as_dicts), expected, atol=1e-6)
        np.testing.assert_allclose(normalize(as_tuples), expected, atol=1e-6)

    def test_missing_z_defaults_to_zero(self):
        pose = [(0.1 * i, 0.2, ) for i in range(21)]
        features = normalize(pose)
        assert np.all(features[2::3] == 0.0)

    @pytest.mark.parametrize("count", [0, 20, 22])
    def test_wrong_landmark_count(self, count):
        with pytest.raises(InvalidInput):
            normalize([Landmark(0.5, 0.5)] * count)

    def test_missing_landmark(self, open_pose):
        open_pose[5] = None
        with pytest.raises(InvalidInput):
            normalize(open_pose)

    def test_non_numeric_coordinate(self, open_pose):
        open_pose[3] = {"x": "left", "y": 0.2}
        with pytest.raises(InvalidInput):
            normalize(open_pose)

    def test_non_numeric_array(self):
        with pytest.raises(InvalidInput):
            normalize(np.array([["a", "b", "c"]] * 21))

    def test_non_finite_coordinate(self, open_pose):
        open_pose[7] = Landmark(float("nan"), 0.2)
        with pytest.raises(InvalidInput):
            normalize(open_pose)

    def test_none_pose(self):
        with pytest.raises(InvalidInput):
            normalize(None)

    def test_invalid_input_is_value_error(self):
        with pytest.raises(ValueError):
            normalize([])


class TestLandmarkNormalizer:
    """Test suite for the LandmarkNormalizer wrapper."""

    @pytest.fixture
    def normalizer(self):
        return LandmarkNormalizer()

    def test_feature_dim(self, normalizer):
        assert normalizer.feature_dim == 63

    def test_extract_batch(self, normalizer, open_pose, fist_pose):
        batch = normalizer.extract_batch([open_pose, fist_pose])
        assert batch.shape == (2, FEATURE_DIM)

    def test_extract_empty_batch(self, normalizer):
        assert normalizer.extract_batch([]).shape == (0, FEATURE_DIM)

    def test_as_feature_vector_rejects_wrong_shape(self):
        with pytest.raises(InvalidInput):
            as_feature_vector([0.0] * 62)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
