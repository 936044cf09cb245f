"""
ML models package for gesture classification.

Provides:
    - LandmarkNormalizer: 21 landmarks → wrist-relative 63-dim feature vector
    - GestureNet: Lightweight MLP for gesture classification
    - GestureClassifier: GestureNet + the LabelSet it was trained on
    - CentroidModel: per-class mean vectors for outlier rejection
"""

__all__ = [
    "LandmarkNormalizer",
    "GestureNet",
    "GestureClassifier",
    "CentroidModel",
]
