import copy
import numpy as np
from typing import Dict, List, Tuple, Union
import logging

from .errors import InvalidConfigurationError, UnsupportedLayerTypeError

ParameterList = List[Tuple[str, np.ndarray, np.ndarray]]


class Optimizer:
    """
    Base class for optimizers.

    One optimizer instance serves exactly one layer. The model clones the
    configured prototype with `copy()` for every layer and calls
    `initialize(layer)` once at build time, so per-parameter state never leaks
    between layers.
    """

    def __init__(self, learning_rate: float):
        if learning_rate <= 0:
            raise InvalidConfigurationError(f"learning_rate must be positive, got {learning_rate}")
        self.learning_rate = learning_rate

    def copy(self) -> 'Optimizer':
        """Returns an independent clone of this optimizer's configuration, without any state."""
        clone = copy.copy(self)
        clone.reset()
        return clone

    def reset(self):
        """Drops any per-parameter state."""

    def initialize(self, layer) -> None:
        """Allocates per-parameter state for a trainable layer."""
        if not getattr(layer, 'trainable', False):
            raise UnsupportedLayerTypeError(f"{self.__class__.__name__} cannot manage {layer.__class__.__name__}")
        for name, param, _ in layer.parameters():
            self._init_parameter(name, param.shape)

    def update(self, layer) -> None:
        """Updates the layer's weights and biases in place from its stored gradients."""
        layer.apply_gradients(self)

    def step(self, parameters: ParameterList) -> None:
        """Called back by a trainable layer with its (name, parameter, gradient) triples."""
        for name, param, grad in parameters:
            if param.shape != grad.shape:
                raise InvalidConfigurationError(
                    f"Gradient shape {grad.shape} does not match parameter '{name}' shape {param.shape}"
                )
            self._update_parameter(name, param, grad)

    def _init_parameter(self, name: str, shape: Tuple[int, ...]) -> None:
        pass

    def _update_parameter(self, name: str, param: np.ndarray, grad: np.ndarray) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(learning_rate={self.learning_rate})"


class SGD(Optimizer):
    """Plain stochastic gradient descent: param -= learning_rate * grad."""

    def __init__(self, learning_rate: float = 0.01):
        super().__init__(learning_rate)

    def _update_parameter(self, name: str, param: np.ndarray, grad: np.ndarray) -> None:
        param -= self.learning_rate * grad


class _StatefulOptimizer(Optimizer):
    """Optimizer holding per-parameter arrays keyed by parameter name."""

    state_keys: Tuple[str, ...] = ()

    def __init__(self, learning_rate: float):
        super().__init__(learning_rate)
        self.state: Dict[str, Dict[str, np.ndarray]] = {}

    def reset(self):
        self.state = {}

    def _init_parameter(self, name: str, shape: Tuple[int, ...]) -> None:
        self.state[name] = {key: np.zeros(shape) for key in self.state_keys}
        logging.debug(f"{self.__class__.__name__}: initialised state for '{name}' with shape {shape}")

    def step(self, parameters: ParameterList) -> None:
        for name, param, _ in parameters:
            if name not in self.state:
                raise InvalidConfigurationError(
                    f"{self.__class__.__name__} has no state for parameter '{name}'; call initialize(layer) first"
                )
            if self.state[name][self.state_keys[0]].shape != param.shape:
                raise InvalidConfigurationError(
                    f"{self.__class__.__name__} state for '{name}' was initialised for shape "
                    f"{self.state[name][self.state_keys[0]].shape}, got {param.shape}"
                )
        self._begin_step()
        super().step(parameters)

    def _begin_step(self) -> None:
        pass


class Adam(_StatefulOptimizer):
    """
    Adam optimizer.

    m = β1 m + (1 - β1) g
    v = β2 v + (1 - β2) g²
    m̂ = m / (1 - β1^t),  v̂ = v / (1 - β2^t)
    param -= lr * m̂ / (sqrt(v̂) + ε)

    The timestep t is shared by all parameters of the layer and advances once
    per update call.
    """

    state_keys = ('m', 'v')

    def __init__(self, learning_rate: float = 0.001, beta1: float = 0.9, beta2: float = 0.999, epsilon: float = 1e-7):
        super().__init__(learning_rate)
        if not (0.0 <= beta1 < 1.0 and 0.0 <= beta2 < 1.0):
            raise InvalidConfigurationError(f"beta1 and beta2 must be in [0, 1), got {beta1}, {beta2}")
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon
        self.t = 0

    def reset(self):
        super().reset()
        self.t = 0

    def _begin_step(self) -> None:
        self.t += 1

    def _update_parameter(self, name: str, param: np.ndarray, grad: np.ndarray) -> None:
        s = self.state[name]
        s['m'] = self.beta1 * s['m'] + (1 - self.beta1) * grad
        s['v'] = self.beta2 * s['v'] + (1 - self.beta2) * (grad ** 2)

        m_hat = s['m'] / (1 - self.beta1 ** self.t)
        v_hat = s['v'] / (1 - self.beta2 ** self.t)

        param -= self.learning_rate * m_hat / (np.sqrt(v_hat) + self.epsilon)

    def __repr__(self) -> str:
        return (f"Adam(learning_rate={self.learning_rate}, beta1={self.beta1}, "
                f"beta2={self.beta2}, epsilon={self.epsilon})")


class Adagrad(_StatefulOptimizer):
    """Adagrad: accumulate squared gradients, param -= lr * g / (sqrt(acc) + ε)."""

    state_keys = ('accumulator',)

    def __init__(self, learning_rate: float = 0.01, epsilon: float = 1e-8):
        super().__init__(learning_rate)
        self.epsilon = epsilon

    def _update_parameter(self, name: str, param: np.ndarray, grad: np.ndarray) -> None:
        acc = self.state[name]['accumulator']
        acc += grad ** 2
        param -= self.learning_rate * grad / (np.sqrt(acc) + self.epsilon)


OPTIMIZERS = {
    'sgd': SGD,
    'adam': Adam,
    'adagrad': Adagrad,
}


def get_optimizer(optimizer: Union[str, Optimizer], **kwargs) -> Optimizer:
    """Resolves an optimizer given by name (with constructor kwargs) or instance."""
    if isinstance(optimizer, Optimizer):
        return optimizer
    if not isinstance(optimizer, str) or optimizer.lower() not in OPTIMIZERS:
        raise InvalidConfigurationError(
            f"Optimizer '{optimizer}' not implemented. Available: {list(OPTIMIZERS.keys())}"
        )
    return OPTIMIZERS[optimizer.lower()](**kwargs)
