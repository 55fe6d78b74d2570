"""A small NumPy neural-network engine with hand-written backward passes."""

from .activations import Activation, Linear, ReLU, Sigmoid, Softmax, get_activation
from .errors import (
    ClearSequentialError,
    InvalidConfigurationError,
    ShapeMismatchError,
    UnsupportedLayerTypeError,
)
from .layers import Conv2D, Dense, Flatten, Input, Layer, MaxPooling2D, TrainableLayer
from .losses import BinaryCrossentropy, CategoricalCrossentropy, Loss, MeanSquaredError, get_loss
from .model import Sequential
from .optimizers import SGD, Adagrad, Adam, Optimizer, get_optimizer

__version__ = "0.1.0"

__all__ = [
    "Activation", "Linear", "ReLU", "Sigmoid", "Softmax", "get_activation",
    "ClearSequentialError", "InvalidConfigurationError", "ShapeMismatchError", "UnsupportedLayerTypeError",
    "Conv2D", "Dense", "Flatten", "Input", "Layer", "MaxPooling2D", "TrainableLayer",
    "BinaryCrossentropy", "CategoricalCrossentropy", "Loss", "MeanSquaredError", "get_loss",
    "Sequential",
    "SGD", "Adagrad", "Adam", "Optimizer", "get_optimizer",
]
