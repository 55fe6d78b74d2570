import numpy as np
from typing import Union
import logging

from .errors import InvalidConfigurationError, ShapeMismatchError
from .tensor_ops import reduce_max, reduce_sum


class Activation:
    """Base class for all activation functions.

    Activations are stateless: `backward` receives the same input `x` that was
    given to `forward` (the layer's pre-activation output) and recomputes
    whatever it needs from it.
    """

    def forward(self, x: np.ndarray) -> np.ndarray:
        """Compute the activation function value.

        Args:
            x: Input data (numpy array of any supported rank).

        Returns:
            Activated output, same shape as x.
        """
        raise NotImplementedError

    def backward(self, dvalues: np.ndarray, x: np.ndarray) -> np.ndarray:
        """Compute the gradient of the loss with respect to the activation's input.

        Args:
            dvalues: Gradient of the loss with respect to the activation's output.
            x: Input that was passed to `forward` (often denoted 'z').

        Returns:
            Gradient of the loss with respect to x (same shape as x).
        """
        raise NotImplementedError

    @staticmethod
    def _check_same_shape(dvalues: np.ndarray, x: np.ndarray, name: str):
        if dvalues.shape != x.shape:
            raise ShapeMismatchError(f"{name} backward: dvalues shape {dvalues.shape} must match input shape {x.shape}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class ReLU(Activation):
    """Rectified Linear Unit activation function.

    Mathematical form:
        forward: f(x) = max(0, x)
        backward: dx = dvalues if x > 0 else 0
    """

    def forward(self, x: np.ndarray) -> np.ndarray:
        """Compute ReLU activation: max(0, x)"""
        logging.debug(f"ReLU forward - input shape: {x.shape}")
        return np.maximum(0.0, x)

    def backward(self, dvalues: np.ndarray, x: np.ndarray) -> np.ndarray:
        """Pass the gradient through where x > 0, zero elsewhere (including x == 0)."""
        self._check_same_shape(dvalues, x, "ReLU")
        logging.debug(f"ReLU backward - input shape: {x.shape}")
        return dvalues * (x > 0)


class Sigmoid(Activation):
    """Sigmoid activation function.

    Mathematical form:
        forward: f(x) = 1 / (1 + e^-x)
        backward: f'(x) = f(x) * (1 - f(x))
    """

    def forward(self, x: np.ndarray) -> np.ndarray:
        """Compute sigmoid activation with clipping for numerical stability."""
        logging.debug(f"Sigmoid forward - input shape: {x.shape}")
        # Clip input to avoid overflow in exp(-x) for large negative x
        clipped_x = np.clip(x, -500, 500)
        return 1.0 / (1.0 + np.exp(-clipped_x))

    def backward(self, dvalues: np.ndarray, x: np.ndarray) -> np.ndarray:
        """Compute sigmoid gradient using the recomputed activation output."""
        self._check_same_shape(dvalues, x, "Sigmoid")
        sig = self.forward(x)
        return dvalues * sig * (1.0 - sig)


class Softmax(Activation):
    """Softmax activation function.

    Normalizes each row of a 2-D batch to a probability distribution.
    Mathematical form:
        forward: f(x_i) = e^(x_i - max(x)) / Σ e^(x_j - max(x)) for each sample in a batch.

    Backward pass:
        The derivative of softmax is a Jacobian matrix per sample,
        J = diag(y) - y yᵀ. The incoming gradient row is right-multiplied by it.
        This is O(classes²) per sample, which is fine for small class counts.

        When Softmax feeds a Categorical Cross-Entropy loss the model skips this
        step and uses the simplified combined gradient (y - target) / N instead.
    """

    def forward(self, x: np.ndarray) -> np.ndarray:
        """Compute softmax activation safely using max subtraction trick.

        Args:
            x: Input data (2-D: batch_size x classes).

        Returns:
            Softmax probabilities (same shape as input), each row summing to 1.
        """
        if x.ndim != 2:
            raise ShapeMismatchError(f"Softmax expects a 2-D (batch, classes) input, got shape {x.shape}")

        if np.any(np.isnan(x)) or np.any(np.isinf(x)):
            logging.warning(f"Softmax received NaN or inf inputs: min={np.nanmin(x)}, max={np.nanmax(x)}")

        # Apply max subtraction trick for numerical stability along the class axis
        exp_x = np.exp(x - reduce_max(x, axis=1, keepdims=True))
        return exp_x / reduce_sum(exp_x, axis=1, keepdims=True)

    def backward(self, dvalues: np.ndarray, x: np.ndarray) -> np.ndarray:
        """Multiply each gradient row by the softmax Jacobian of its sample."""
        self._check_same_shape(dvalues, x, "Softmax")
        outputs = self.forward(x)
        dinputs = np.empty_like(dvalues, dtype=float)

        for i, (single_output, single_dvalues) in enumerate(zip(outputs, dvalues)):
            single_output = single_output.reshape(-1, 1)
            jacobian_matrix = np.diagflat(single_output) - np.dot(single_output, single_output.T)
            dinputs[i] = np.dot(single_dvalues, jacobian_matrix)
        return dinputs


class Linear(Activation):
    """Linear activation function (identity)."""

    def forward(self, x: np.ndarray) -> np.ndarray:
        return x

    def backward(self, dvalues: np.ndarray, x: np.ndarray) -> np.ndarray:
        self._check_same_shape(dvalues, x, "Linear")
        return dvalues


# Dictionary mapping activation function names to their classes
ACTIVATION_FUNCTIONS = {
    'relu': ReLU,
    'sigmoid': Sigmoid,
    'softmax': Softmax,
    'linear': Linear,
}


def get_activation(activation: Union[str, Activation, None]) -> Union[Activation, None]:
    """Resolves an activation given by name, instance or None.

    Args:
        activation: Name of the activation function (case-insensitive), an
                    Activation instance (returned unchanged), or None.

    Returns:
        An Activation instance, or None when no activation is requested.

    Raises:
        InvalidConfigurationError: If the activation function name is not recognized.
    """
    if activation is None or isinstance(activation, Activation):
        return activation
    if not isinstance(activation, str):
        raise InvalidConfigurationError(f"Invalid activation type '{type(activation).__name__}'")
    name_lower = activation.lower()
    if name_lower not in ACTIVATION_FUNCTIONS:
        raise InvalidConfigurationError(
            f"Unknown activation function '{activation}'. "
            f"Available functions: {list(ACTIVATION_FUNCTIONS.keys())}"
        )
    return ACTIVATION_FUNCTIONS[name_lower]()
