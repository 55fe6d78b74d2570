import numpy as np
from typing import Dict, Optional, Type, Union
import logging

from .activations import Activation, Softmax
from .errors import InvalidConfigurationError, ShapeMismatchError

# Predictions are clipped to [EPSILON, 1 - EPSILON] before taking logarithms
EPSILON = 1e-7


class Loss:
    """
    Base class for loss functions.

    forward  -> per-sample loss, shape (batch_size,)
    backward -> gradient w.r.t. the predictions, shape (batch_size, outputs)

    `fused_activation` names the output activation whose gradient this loss can
    absorb. When the model's last layer ends with an instance of it, the model
    calls `backward(..., fused=True)` and skips that activation's backward.
    """

    fused_activation: Optional[Type[Activation]] = None

    def calculate(self, predictions: np.ndarray, targets: np.ndarray) -> float:
        """Mean of the per-sample losses."""
        sample_losses = self.forward(predictions, targets)
        return float(np.mean(sample_losses))

    def forward(self, predictions: np.ndarray, targets: np.ndarray) -> np.ndarray:
        raise NotImplementedError("Forward method must be implemented in the subclass")

    def backward(self, predictions: np.ndarray, targets: np.ndarray, fused: bool = False) -> np.ndarray:
        raise NotImplementedError("Backward method must be implemented in the subclass")

    def is_fused_with(self, activation: Optional[Activation]) -> bool:
        return self.fused_activation is not None and isinstance(activation, self.fused_activation)

    def _check_shapes(self, predictions: np.ndarray, targets: np.ndarray):
        if predictions.ndim != 2:
            raise ShapeMismatchError(
                f"{self.__class__.__name__}: predictions must be 2-D (batch, outputs), got shape {predictions.shape}"
            )
        if predictions.shape != targets.shape:
            raise ShapeMismatchError(
                f"{self.__class__.__name__}: Output shape {predictions.shape} must match target shape {targets.shape}"
            )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class MeanSquaredError(Loss):
    """
    Mean Squared Error.

    Per-sample loss = mean over features of (prediction - target)^2
    Gradient (dL/dPrediction) = 2 * (prediction - target) / batch_size
    """

    def forward(self, predictions: np.ndarray, targets: np.ndarray) -> np.ndarray:
        self._check_shapes(predictions, targets)
        return np.mean((predictions - targets) ** 2, axis=1)

    def backward(self, predictions: np.ndarray, targets: np.ndarray, fused: bool = False) -> np.ndarray:
        self._check_shapes(predictions, targets)
        if fused:
            raise InvalidConfigurationError("MeanSquaredError has no fused activation gradient")
        return 2.0 * (predictions - targets) / predictions.shape[0]


class CategoricalCrossentropy(Loss):
    """
    Cross-Entropy loss for multi-class classification with one-hot targets.

    Per-sample loss = Σ_classes target * -ln(clip(prediction))

    backward(fused=True) returns the combined Softmax + Cross-Entropy gradient
    w.r.t. the Softmax *input*:  (clip(prediction) - target) / batch_size.
    backward(fused=False) returns the gradient w.r.t. the predictions
    themselves:  -target / clip(prediction) / batch_size.
    """

    fused_activation = Softmax

    def forward(self, predictions: np.ndarray, targets: np.ndarray) -> np.ndarray:
        self._check_shapes(predictions, targets)
        clipped = np.clip(predictions, EPSILON, 1.0 - EPSILON)
        return np.sum(targets * -np.log(clipped), axis=1)

    def backward(self, predictions: np.ndarray, targets: np.ndarray, fused: bool = False) -> np.ndarray:
        self._check_shapes(predictions, targets)
        num_samples = predictions.shape[0]
        clipped = np.clip(predictions, EPSILON, 1.0 - EPSILON)
        if fused:
            return (clipped - targets) / num_samples
        return -targets / clipped / num_samples


class BinaryCrossentropy(CategoricalCrossentropy):
    """
    Binary Cross-Entropy over one-hot (or multi-hot) targets.

    Per-sample loss = Σ_outputs target * -ln(clip(prediction)), the same score
    as CategoricalCrossentropy. Only positive targets contribute.

    backward(fused=True) is the combined Softmax + cross-entropy gradient
    (clip(prediction) - target) / batch_size; backward(fused=False) is
    -target / clip(prediction) / batch_size.
    """


# Dictionary mapping loss names to loss classes
LOSS_FUNCTIONS: Dict[str, Type[Loss]] = {
    'mse': MeanSquaredError,
    'mean_squared_error': MeanSquaredError,
    'categorical_crossentropy': CategoricalCrossentropy,
    'cross_entropy': CategoricalCrossentropy,
    'binary_crossentropy': BinaryCrossentropy,
    'binary_cross_entropy': BinaryCrossentropy,
}


def get_loss(loss: Union[str, Loss]) -> Loss:
    """Resolves a loss given by name or instance."""
    if isinstance(loss, Loss):
        return loss
    if not isinstance(loss, str) or loss.lower() not in LOSS_FUNCTIONS:
        raise InvalidConfigurationError(
            f"Unsupported loss '{loss}'. Valid options: {list(LOSS_FUNCTIONS.keys())}"
        )
    logging.debug(f"Resolved loss '{loss}' to {LOSS_FUNCTIONS[loss.lower()].__name__}")
    return LOSS_FUNCTIONS[loss.lower()]()
