"""
GestureNet: small MLP for user-defined gesture classification.

Architecture:
    Input  : 63 features (wrist-centred landmarks from LandmarkNormalizer)
    FC1    : 128 units, ReLU, Dropout(0.2)
    FC2    : 64 units, ReLU, Dropout(0.2)
    Output : num_classes (softmax applied by GestureClassifier; training uses
             CrossEntropyLoss on the raw logits)

Total parameters: ~17 K, well under 1 ms per frame on CPU.
"""

import logging

import torch.nn as nn

from core.types import FEATURE_DIM

logger = logging.getLogger(__name__)

HIDDEN_UNITS_1 = 128
HIDDEN_UNITS_2 = 64
DROPOUT_RATE = 0.2


class GestureNet(nn.Module):
    """Feed-forward classifier over normalized hand landmarks."""

    def __init__(self, num_classes, input_dim=FEATURE_DIM,
                 hidden1=HIDDEN_UNITS_1, hidden2=HIDDEN_UNITS_2,
                 dropout=DROPOUT_RATE):
        super().__init__()

        if num_classes < 2:
            raise ValueError("GestureNet needs at least 2 classes, got %d" % num_classes)

        self.input_dim = input_dim
        self.num_classes = num_classes
        self.hidden1 = hidden1
        self.hidden2 = hidden2
        self.dropout = dropout

        self.features = nn.Sequential(
            nn.Linear(input_dim, hidden1),
            nn.ReLU(inplace=True),
            nn.Dropout(dropout),

            nn.Linear(hidden1, hidden2),
            nn.ReLU(inplace=True),
            nn.Dropout(dropout),
        )

        self.classifier = nn.Linear(hidden2, num_classes)

        self._init_weights()

    def _init_weights(self):
        for m in self.modules():
            if isinstance(m, nn.Linear):
                nn.init.kaiming_normal_(m.weight, nonlinearity="relu")
                if m.bias is not None:
                    nn.init.zeros_(m.bias)

    def forward(self, x):
        """Forward pass.

        Args:
            x: Tensor of shape (batch, 63)

        Returns:
            Tensor of shape (batch, num_classes), raw logits
        """
        x = self.features(x)
        return self.classifier(x)

    @property
    def hyperparameters(self):
        return {
            "input_dim": self.input_dim,
            "num_classes": self.num_classes,
            "hidden1": self.hidden1,
            "hidden2": self.hidden2,
            "dropout": self.dropout,
        }

    @classmethod
    def from_checkpoint(cls, checkpoint, device="cpu"):
        """Rebuild a model from a checkpoint dict produced by the classifier.

        Supports both the full checkpoint dict and a raw state_dict (the
        class count is then inferred from the output layer).
        """
        if isinstance(checkpoint, dict) and "model_state_dict" in checkpoint:
            state_dict = checkpoint["model_state_dict"]
            params = dict(checkpoint.get("hyperparameters", {}))
        else:
            state_dict = checkpoint
            params = {}

        if "num_classes" not in params:
            params["num_classes"] = state_dict["classifier.weight"].shape[0]

        model = cls(**params)
        model.load_state_dict(state_dict)
        model.to(device)
        model.eval()
        logger.info("Loaded GestureNet (%d classes)", model.num_classes)
        return model
