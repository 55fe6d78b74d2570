# clear_sequential/layers.py

"""
NumPy layer catalogue with hand-written forward and backward passes.

Main components:
1. Input           - declares and checks the per-sample input shape
2. Dense           - fully connected layer, Xavier/Glorot uniform weights
3. Conv2D          - 2D convolution (NHWC), He uniform weights, 'valid'/'same' padding
4. Flatten         - collapses every non-batch axis into one
5. MaxPooling2D    - 2D max pooling, 'valid'/'same' padding

Every layer follows the same protocol:

    output, cache = layer.forward(inputs)
    dinputs = layer.backward(dvalues, cache)

`cache` holds whatever the backward pass needs (inputs, padded inputs,
pre-activation output, argmax positions). It is returned to the caller instead
of being kept on the layer, so a backward pass always uses the context of the
forward pass it belongs to.

Trainable layers (Dense, Conv2D) own `weights`, `biases` and the gradients
`dweights`, `dbiases`. The gradients are overwritten on every backward call.

Tensors use the channels-last layout: images are (N, H, W, C).
"""

import numpy as np
from typing import Dict, List, Optional, Tuple, Union
import logging

from .activations import Activation, get_activation
from .errors import ShapeMismatchError, UnsupportedLayerTypeError
from .tensor_ops import (
    add_bias,
    as_pair,
    check_padding,
    crop_spatial,
    iter_windows,
    pad_spatial,
    spatial_geometry,
    sum_over_leading_axes,
)

# Biases start slightly positive so ReLU units are not dead from the first step
BIAS_INIT_VALUE = 0.01

Cache = Dict[str, object]


# --- Base Layer Classes ---

class Layer:
    """
    Abstract base class for all layers in the neural network.
    """
    trainable = False

    def __init__(self):
        self.input_shape: Optional[Tuple[int, ...]] = None   # per-sample shape, no batch axis
        self.output_shape: Optional[Tuple[int, ...]] = None  # per-sample shape, no batch axis
        self.activation: Optional[Activation] = None

    def forward(self, inputs: np.ndarray) -> Tuple[np.ndarray, Cache]:
        """Performs the forward pass and returns (output, cache)."""
        raise NotImplementedError("Each layer must implement its own forward pass.")

    def backward(self, dvalues: np.ndarray, cache: Cache, skip_activation: bool = False) -> np.ndarray:
        """
        Performs the backward pass for the layer.

        Args:
            dvalues: Gradient of the loss w.r.t. this layer's output.
            cache: The cache returned by the matching forward call.
            skip_activation: Treat dvalues as the gradient w.r.t. the pre-activation
                             output (used for the fused Softmax + cross-entropy gradient).

        Returns:
            Gradient of the loss w.r.t. this layer's input.
        """
        raise NotImplementedError("Each layer must implement its own backward pass.")

    def apply_gradients(self, optimizer) -> None:
        """Hands this layer's parameters to the optimizer. Only trainable layers support it."""
        raise UnsupportedLayerTypeError(f"{self.__class__.__name__} has no trainable parameters to update")

    def count_params(self) -> int:
        return 0

    def _check_input_shape(self, inputs: np.ndarray):
        if self.input_shape is not None and tuple(inputs.shape[1:]) != tuple(self.input_shape):
            raise ShapeMismatchError(
                f"{self.__class__.__name__}: expected per-sample input shape {self.input_shape}, "
                f"got batch of shape {inputs.shape}"
            )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(input_shape={self.input_shape}, output_shape={self.output_shape})"


class TrainableLayer(Layer):
    """A layer owning one weight tensor and one bias vector, plus their gradients."""
    trainable = True

    def __init__(self):
        super().__init__()
        self.weights: np.ndarray = np.zeros(0)
        self.biases: np.ndarray = np.zeros(0)
        self.dweights: np.ndarray = np.zeros(0)
        self.dbiases: np.ndarray = np.zeros(0)

    def parameters(self) -> List[Tuple[str, np.ndarray, np.ndarray]]:
        """(name, parameter, gradient) triples; the optimizer updates parameters in place."""
        return [('weights', self.weights, self.dweights), ('biases', self.biases, self.dbiases)]

    def apply_gradients(self, optimizer) -> None:
        optimizer.step(self.parameters())

    def count_params(self) -> int:
        return int(self.weights.size + self.biases.size)

    def _activation_backward(self, dvalues: np.ndarray, z: np.ndarray, skip_activation: bool) -> np.ndarray:
        if self.activation is None or skip_activation:
            return dvalues
        return self.activation.backward(dvalues, z)

    @staticmethod
    def _warn_if_not_finite(array: np.ndarray, what: str):
        if not np.all(np.isfinite(array)):
            logging.warning(f"NaN or Inf detected in {what}")


# --- Input Layer ---

class Input(Layer):
    """Declares the per-sample shape of the model's input; passes data through unchanged."""

    def __init__(self, *shape: int):
        super().__init__()
        if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
            shape = tuple(shape[0])
        if not shape or any(int(s) <= 0 for s in shape):
            raise ShapeMismatchError(f"Input shape must be a non-empty list of positive ints, got {shape}")
        self.input_shape = tuple(int(s) for s in shape)
        self.output_shape = self.input_shape

    def forward(self, inputs: np.ndarray) -> Tuple[np.ndarray, Cache]:
        inputs = np.asarray(inputs, dtype=float)
        self._check_input_shape(inputs)
        return inputs, {}

    def backward(self, dvalues: np.ndarray, cache: Cache, skip_activation: bool = False) -> np.ndarray:
        raise UnsupportedLayerTypeError("backward is not supported for the Input layer")


# --- Fully Connected Layer ---

class Dense(TrainableLayer):
    """
    Fully connected (Dense) layer.
    Input shape: (N, n_inputs)
    Output shape: (N, n_neurons)
    """

    def __init__(
        self,
        n_inputs: int,
        n_neurons: int,
        activation: Union[str, Activation, None] = None,
        rng: Optional[np.random.Generator] = None,
        initial_weights: Optional[np.ndarray] = None,  # Expected shape (n_inputs, n_neurons)
        initial_biases: Optional[np.ndarray] = None,   # Expected shape (n_neurons,)
    ):
        super().__init__()
        self.n_inputs = int(n_inputs)
        self.n_neurons = int(n_neurons)
        self.input_shape = (self.n_inputs,)
        self.output_shape = (self.n_neurons,)
        self.activation = get_activation(activation)
        rng = rng if rng is not None else np.random.default_rng()

        if initial_weights is not None:
            initial_weights = np.asarray(initial_weights, dtype=float)
            if initial_weights.shape != (self.n_inputs, self.n_neurons):
                raise ShapeMismatchError(
                    f"Initial weights shape {initial_weights.shape} does not match "
                    f"expected shape ({self.n_inputs}, {self.n_neurons})"
                )
            self.weights = initial_weights.copy()
        else:
            # Xavier/Glorot uniform initialization
            scale = np.sqrt(2.0 / (self.n_inputs + self.n_neurons))
            self.weights = rng.uniform(-scale, scale, (self.n_inputs, self.n_neurons))

        if initial_biases is not None:
            initial_biases = np.asarray(initial_biases, dtype=float)
            if initial_biases.shape != (self.n_neurons,):
                raise ShapeMismatchError(
                    f"Initial biases shape {initial_biases.shape} does not match expected shape ({self.n_neurons},)"
                )
            self.biases = initial_biases.copy()
        else:
            self.biases = np.full(self.n_neurons, BIAS_INIT_VALUE)

        self.dweights = np.zeros_like(self.weights)
        self.dbiases = np.zeros_like(self.biases)

        logging.debug(
            f"Dense created: n_inputs={self.n_inputs}, n_neurons={self.n_neurons}, "
            f"activation={self.activation.__class__.__name__ if self.activation else None}"
        )

    def forward(self, inputs: np.ndarray) -> Tuple[np.ndarray, Cache]:
        """inputs shape: (N, n_inputs)"""
        inputs = np.asarray(inputs, dtype=float)
        if inputs.ndim != 2:
            raise ShapeMismatchError(f"Dense expects a 2-D (batch, features) input, got shape {inputs.shape}")
        if inputs.shape[1] != self.n_inputs:
            raise ShapeMismatchError(f"Dense expected {self.n_inputs} input features, got {inputs.shape[1]}")

        # (N, n_inputs) @ (n_inputs, n_neurons) -> (N, n_neurons), biases broadcast over the batch
        z = add_bias(np.dot(inputs, self.weights), self.biases)
        output = self.activation.forward(z) if self.activation is not None else z
        logging.debug(f"Dense forward - input shape: {inputs.shape}, output shape: {output.shape}")
        return output, {'inputs': inputs, 'z': z}

    def backward(self, dvalues: np.ndarray, cache: Cache, skip_activation: bool = False) -> np.ndarray:
        """dvalues shape: (N, n_neurons)"""
        inputs, z = cache['inputs'], cache['z']
        dvalues = np.asarray(dvalues, dtype=float)
        if dvalues.shape != z.shape:
            raise ShapeMismatchError(f"Dense backward: dvalues shape {dvalues.shape} must be {z.shape}")

        dz = self._activation_backward(dvalues, z, skip_activation)

        # Gradient of loss w.r.t. weights: (n_inputs, N) @ (N, n_neurons)
        self.dweights = np.dot(inputs.T, dz)
        # Gradient of loss w.r.t. biases: sum over batch
        self.dbiases = sum_over_leading_axes(dz)
        # Gradient of loss w.r.t. the layer input: (N, n_neurons) @ (n_neurons, n_inputs)
        dinputs = np.dot(dz, self.weights.T)

        self._warn_if_not_finite(dinputs, "Dense input gradient")
        return dinputs


# --- Convolutional Layer ---

class Conv2D(TrainableLayer):
    """
    2D Convolutional Layer.

    Input shape:  (N, H_in, W_in, C_in)
    Kernel shape: (K_h, K_w, C_in, F)
    Output shape: (N, H_out, W_out, F)
    """

    def __init__(
        self,
        input_shape: Tuple[int, int, int],
        filters: int,
        kernel_size: Union[int, Tuple[int, int]],
        strides: Union[int, Tuple[int, int]] = (1, 1),
        padding: str = 'valid',
        activation: Union[str, Activation, None] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        super().__init__()
        if len(input_shape) != 3:
            raise ShapeMismatchError(f"Conv2D input_shape must be (height, width, channels), got {input_shape}")
        self.input_shape = tuple(int(s) for s in input_shape)
        self.C_in = self.input_shape[2]
        self.filters = int(filters)
        self.K_h, self.K_w = as_pair(kernel_size, 'kernel_size')
        self.S_h, self.S_w = as_pair(strides, 'strides')
        self.padding = check_padding(padding)
        self.activation = get_activation(activation)
        rng = rng if rng is not None else np.random.default_rng()

        (H_out, W_out), self.pad_h, self.pad_w = spatial_geometry(
            self.input_shape[:2], (self.K_h, self.K_w), (self.S_h, self.S_w), self.padding
        )
        self.output_shape = (H_out, W_out, self.filters)

        # He uniform initialization
        scale = np.sqrt(2.0 / (self.C_in * self.K_h * self.K_w))
        self.weights = rng.uniform(-scale, scale, (self.K_h, self.K_w, self.C_in, self.filters))
        self.biases = np.full(self.filters, BIAS_INIT_VALUE)  # One bias per filter

        self.dweights = np.zeros_like(self.weights)
        self.dbiases = np.zeros_like(self.biases)

        logging.debug(
            f"Conv2D created: input_shape={self.input_shape}, filters={self.filters}, "
            f"kernel=({self.K_h}, {self.K_w}), strides=({self.S_h}, {self.S_w}), "
            f"padding={self.padding}, output_shape={self.output_shape}"
        )

    def forward(self, inputs: np.ndarray) -> Tuple[np.ndarray, Cache]:
        """
        Performs the forward pass of the convolution.
        inputs shape: (N, H_in, W_in, C_in)
        Output shape: (N, H_out, W_out, F)
        """
        inputs = np.asarray(inputs, dtype=float)
        if inputs.ndim != 4:
            raise ShapeMismatchError(f"Conv2D expects a 4-D (batch, height, width, channels) input, got shape {inputs.shape}")
        self._check_input_shape(inputs)

        N = inputs.shape[0]
        H_out, W_out, _ = self.output_shape
        inputs_padded = pad_spatial(inputs, self.pad_h, self.pad_w)
        Z = np.zeros((N, H_out, W_out, self.filters))

        for h_out, w_out, rows, cols in iter_windows(
            (H_out, W_out), (self.K_h, self.K_w), (self.S_h, self.S_w), inputs_padded.shape[1:3]
        ):
            # Receptive field (N, K_h, K_w, C_in) against every filter (K_h, K_w, C_in, F) -> (N, F)
            receptive_field = inputs_padded[:, rows, cols, :]
            Z[:, h_out, w_out, :] = np.tensordot(receptive_field, self.weights, axes=([1, 2, 3], [0, 1, 2]))

        z = add_bias(Z, self.biases)
        output = self.activation.forward(z) if self.activation is not None else z
        logging.debug(f"Conv2D forward - input shape: {inputs.shape}, output shape: {output.shape}")
        return output, {'inputs_padded': inputs_padded, 'z': z}

    def backward(self, dvalues: np.ndarray, cache: Cache, skip_activation: bool = False) -> np.ndarray:
        """
        Performs the backward pass of the convolution.
        dvalues (gradient of loss w.r.t. the layer output) shape: (N, H_out, W_out, F)

        Computes:
        dweights[kh, kw, ic, oc] = Σ_{n, oh, ow} x_pad[n, oh*S_h + kh, ow*S_w + kw, ic] * dz[n, oh, ow, oc]
        dbiases[oc]              = Σ_{n, oh, ow} dz[n, oh, ow, oc]
        dinputs                  = dz scattered back through the weights, cropped to the unpadded input
        """
        inputs_padded, z = cache['inputs_padded'], cache['z']
        dvalues = np.asarray(dvalues, dtype=float)
        if dvalues.shape != z.shape:
            raise ShapeMismatchError(f"Conv2D backward: dvalues shape {dvalues.shape} must be {z.shape}")

        dz = self._activation_backward(dvalues, z, skip_activation)
        H_out, W_out, _ = self.output_shape

        dweights = np.zeros_like(self.weights)
        dinputs_padded = np.zeros_like(inputs_padded)

        # db is the sum of dz over batch, height and width for each filter
        self.dbiases = sum_over_leading_axes(dz)

        for h_out, w_out, rows, cols in iter_windows(
            (H_out, W_out), (self.K_h, self.K_w), (self.S_h, self.S_w), inputs_padded.shape[1:3]
        ):
            dz_curr = dz[:, h_out, w_out, :]               # (N, F)
            receptive_field = inputs_padded[:, rows, cols, :]  # (N, K_h, K_w, C_in)

            # Same weight is reused at every position, so contributions accumulate
            dweights += np.tensordot(receptive_field, dz_curr, axes=([0], [0]))
            # Overlapping windows hit the same input pixel, so this accumulates too
            dinputs_padded[:, rows, cols, :] += np.tensordot(dz_curr, self.weights, axes=([1], [3]))

        self.dweights = dweights
        dinputs = crop_spatial(dinputs_padded, self.pad_h, self.pad_w, self.input_shape[:2])
        self._warn_if_not_finite(dinputs, "Conv2D input gradient")
        return dinputs


# --- Reshaping Layer ---

class Flatten(Layer):
    """
    Flattens the input from (N, d1, d2, ...) to (N, d1*d2*...).
    """

    def __init__(self, input_shape: Optional[Tuple[int, ...]] = None):
        super().__init__()
        if input_shape is not None:
            self.input_shape = tuple(int(s) for s in input_shape)
            self.output_shape = (int(np.prod(self.input_shape)),)

    @property
    def flattened_size(self) -> Optional[int]:
        return self.output_shape[0] if self.output_shape is not None else None

    def forward(self, inputs: np.ndarray) -> Tuple[np.ndarray, Cache]:
        inputs = np.asarray(inputs, dtype=float)
        if inputs.ndim < 2:
            raise ShapeMismatchError(f"Flatten expects a batched input of rank >= 2, got shape {inputs.shape}")
        N = inputs.shape[0]
        if self.flattened_size is not None:
            if inputs.size % self.flattened_size != 0 or inputs.size // max(N, 1) != self.flattened_size:
                raise ShapeMismatchError(
                    f"Flatten: input of shape {inputs.shape} cannot be flattened to ({N}, {self.flattened_size})"
                )
        # Reshape to (N, -1), where -1 infers the product of remaining dimensions
        return inputs.reshape(N, -1), {'original_shape': inputs.shape}

    def backward(self, dvalues: np.ndarray, cache: Cache, skip_activation: bool = False) -> np.ndarray:
        """Reshape the gradient back to the original multi-dimensional shape."""
        original_shape = cache['original_shape']
        dvalues = np.asarray(dvalues, dtype=float)
        if dvalues.size != int(np.prod(original_shape)):
            raise ShapeMismatchError(f"Flatten backward: gradient of shape {dvalues.shape} does not match {original_shape}")
        return dvalues.reshape(original_shape)


# --- Pooling Layer ---

class MaxPooling2D(Layer):
    """
    Max Pooling layer for 2D inputs.
    Input shape: (N, H_in, W_in, C)
    Output shape: (N, H_out, W_out, C)

    Each incoming gradient goes to the single input position that held the
    window maximum (the first one in row-major order on ties).
    """

    def __init__(
        self,
        input_shape: Tuple[int, int, int],
        pool_size: Union[int, Tuple[int, int]] = (2, 2),
        strides: Union[int, Tuple[int, int], None] = None,
        padding: str = 'valid',
    ):
        super().__init__()
        if len(input_shape) != 3:
            raise ShapeMismatchError(f"MaxPooling2D input_shape must be (height, width, channels), got {input_shape}")
        self.input_shape = tuple(int(s) for s in input_shape)
        self.K_h, self.K_w = as_pair(pool_size, 'pool_size')
        # Default stride is the pool size
        self.S_h, self.S_w = as_pair(strides, 'strides') if strides is not None else (self.K_h, self.K_w)
        self.padding = check_padding(padding)

        (H_out, W_out), self.pad_h, self.pad_w = spatial_geometry(
            self.input_shape[:2], (self.K_h, self.K_w), (self.S_h, self.S_w), self.padding
        )
        self.output_shape = (H_out, W_out, self.input_shape[2])

    def forward(self, inputs: np.ndarray) -> Tuple[np.ndarray, Cache]:
        inputs = np.asarray(inputs, dtype=float)
        if inputs.ndim != 4:
            raise ShapeMismatchError(f"MaxPooling2D expects a 4-D (batch, height, width, channels) input, got shape {inputs.shape}")
        self._check_input_shape(inputs)

        N, C = inputs.shape[0], inputs.shape[3]
        H_out, W_out, _ = self.output_shape
        # -inf padding can never be selected as a maximum
        inputs_padded = pad_spatial(inputs, self.pad_h, self.pad_w, fill_value=-np.inf)
        output = np.zeros((N, H_out, W_out, C))
        argmax = np.zeros((N, H_out, W_out, C), dtype=np.intp)

        for h_out, w_out, rows, cols in iter_windows(
            (H_out, W_out), (self.K_h, self.K_w), (self.S_h, self.S_w), inputs_padded.shape[1:3]
        ):
            window = inputs_padded[:, rows, cols, :]
            flat_window = window.reshape(N, -1, C)
            # np.argmax returns the first occurrence, i.e. row-major scan order within the window
            idx = np.argmax(flat_window, axis=1)
            argmax[:, h_out, w_out, :] = idx
            output[:, h_out, w_out, :] = np.take_along_axis(flat_window, idx[:, np.newaxis, :], axis=1)[:, 0, :]

        logging.debug(f"MaxPooling2D forward - input shape: {inputs.shape}, output shape: {output.shape}")
        return output, {'padded_shape': inputs_padded.shape, 'argmax': argmax}

    def backward(self, dvalues: np.ndarray, cache: Cache, skip_activation: bool = False) -> np.ndarray:
        padded_shape, argmax = cache['padded_shape'], cache['argmax']
        dvalues = np.asarray(dvalues, dtype=float)
        if dvalues.shape != argmax.shape:
            raise ShapeMismatchError(f"MaxPooling2D backward: dvalues shape {dvalues.shape} must be {argmax.shape}")

        N, C = padded_shape[0], padded_shape[3]
        H_out, W_out, _ = self.output_shape
        dinputs_padded = np.zeros(padded_shape)
        batch_idx, channel_idx = np.meshgrid(np.arange(N), np.arange(C), indexing='ij')

        for h_out, w_out, rows, cols in iter_windows(
            (H_out, W_out), (self.K_h, self.K_w), (self.S_h, self.S_w), padded_shape[1:3]
        ):
            window_width = cols.stop - cols.start
            idx = argmax[:, h_out, w_out, :]
            max_rows = rows.start + idx // window_width
            max_cols = cols.start + idx % window_width
            # np.add.at so overlapping windows that share a maximum add up
            np.add.at(dinputs_padded, (batch_idx, max_rows, max_cols, channel_idx), dvalues[:, h_out, w_out, :])

        return crop_spatial(dinputs_padded, self.pad_h, self.pad_w, self.input_shape[:2])
