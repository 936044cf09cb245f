"""
Shared fixtures: synthetic hand poses and small gesture datasets.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.types import Landmark
from training.dataset import GestureDataset


def create_mock_pose(kind="open", rng=None, jitter=0.004, wrist=(0.5, 0.8)):
    """
    Create 21 mock landmarks for a hand.

    Args:
        kind: "open" (fingers extended upward) or "fist" (fingers curled
            close to the wrist)
        rng: np.random.RandomState for jitter; no jitter when None

    Returns:
        List of 21 Landmark objects
    """
    base_x, base_y = wrist
    landmarks = [Landmark(base_x, base_y, 0.0)]

    for finger in range(5):
        x_off = -0.12 + 0.06 * finger
        for joint in range(1, 5):
            if kind == "open":
                dx = x_off * joint / 2
                dy = -0.12 * joint
                z = -0.01 * joint
            elif kind == "fist":
                dx = x_off * 0.3
                dy = -0.03 - 0.01 * joint
                z = -0.02
            else:
                raise ValueError("unknown pose kind %r" % kind)
            landmarks.append(Landmark(base_x + dx, base_y + dy, z))

    if rng is not None:
        landmarks = [
            Landmark(p.x + rng.normal(0, jitter), p.y + rng.normal(0, jitter), p.z)
            for p in landmarks
        ]
    return landmarks


@pytest.fixture
def pose_factory():
    """create_mock_pose as a fixture."""
    return create_mock_pose


@pytest.fixture
def open_pose():
    return create_mock_pose("open")


@pytest.fixture
def fist_pose():
    return create_mock_pose("fist")


@pytest.fixture
def two_class_dataset():
    """20 "open" and 20 "fist" samples with small jitter."""
    rng = np.random.RandomState(0)
    dataset = GestureDataset()
    for _ in range(20):
        dataset.add("open", create_mock_pose("open", rng))
        dataset.add("fist", create_mock_pose("fist", rng))
    return dataset
