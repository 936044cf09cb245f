"""
Training package for the gesture classifier.

Provides:
    - GestureDataset: named gesture classes of normalized samples, JSON interchange
    - LandmarkTensorDataset: PyTorch Dataset over (features, class index) pairs
    - train.py: TrainingPipeline, background TrainingTask and standalone script
"""
