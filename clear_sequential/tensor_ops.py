# clear_sequential/tensor_ops.py

"""
Small tensor helpers shared by the layers.

NumPy provides the dense array itself; this module only adds the pieces the
layers need on top of it:
1. Broadcasting a 1-D bias vector across the last axis of a 2-D or 4-D tensor
2. Axis-checked reductions (sum / max)
3. "valid" / "same" padding geometry for windowed operations
4. Padding and cropping of the spatial axes of (N, H, W, C) tensors
5. Iteration over the receptive windows of a strided 2-D operation
"""

import numpy as np
from typing import Iterator, Tuple, Union

from .errors import InvalidConfigurationError, ShapeMismatchError

PADDING_MODES = ('valid', 'same')


def as_pair(value: Union[int, Tuple[int, int]], name: str) -> Tuple[int, int]:
    """Normalises an int or a 2-sequence of ints to a (height, width) pair of positive ints."""
    if isinstance(value, (int, np.integer)):
        pair = (int(value), int(value))
    else:
        try:
            h, w = value
            pair = (int(h), int(w))
        except (TypeError, ValueError) as e:
            raise InvalidConfigurationError(f"{name} must be an int or a pair of ints, got {value!r}") from e
    if pair[0] <= 0 or pair[1] <= 0:
        raise InvalidConfigurationError(f"{name} must be positive, got {pair}")
    return pair


def check_padding(padding: str) -> str:
    mode = str(padding).lower()
    if mode not in PADDING_MODES:
        raise InvalidConfigurationError(f"Unknown padding type: {padding!r}. Expected one of {PADDING_MODES}")
    return mode


def check_axis(x: np.ndarray, axis: Union[int, Tuple[int, ...]]) -> Tuple[int, ...]:
    """Validates an axis argument against the rank of x and returns it as a tuple of non-negative ints."""
    axes = (axis,) if isinstance(axis, (int, np.integer)) else tuple(axis)
    normalised = []
    for a in axes:
        if not -x.ndim <= a < x.ndim:
            raise InvalidConfigurationError(f"Axis {a} is out of range for a tensor of rank {x.ndim}")
        normalised.append(int(a) % x.ndim)
    if len(set(normalised)) != len(normalised):
        raise InvalidConfigurationError(f"Repeated axis in {axis!r}")
    return tuple(normalised)


def reduce_sum(x: np.ndarray, axis: Union[int, Tuple[int, ...]], keepdims: bool = False) -> np.ndarray:
    return np.sum(x, axis=check_axis(x, axis), keepdims=keepdims)


def reduce_max(x: np.ndarray, axis: Union[int, Tuple[int, ...]], keepdims: bool = False) -> np.ndarray:
    return np.max(x, axis=check_axis(x, axis), keepdims=keepdims)


def sum_over_leading_axes(x: np.ndarray) -> np.ndarray:
    """Sums every axis except the last one, e.g. the bias gradient of a (N, D) or (N, H, W, F) tensor."""
    return reduce_sum(x, axis=tuple(range(x.ndim - 1)))


def add_bias(x: np.ndarray, biases: np.ndarray) -> np.ndarray:
    """
    Broadcasts a 1-D bias vector across the last axis of a 2-D or 4-D tensor.

    Args:
        x: Tensor of shape (N, D) or (N, H, W, C).
        biases: Vector of shape (D,) or (C,).

    Returns:
        x + biases, with the same shape as x.

    Raises:
        ShapeMismatchError: If the ranks are unsupported or the last axis does not match.
    """
    if biases.ndim != 1:
        raise ShapeMismatchError(f"Bias must be 1-D, got shape {biases.shape}")
    if x.ndim not in (2, 4):
        raise ShapeMismatchError(f"Bias broadcast supports 2-D or 4-D tensors, got shape {x.shape}")
    if x.shape[-1] != biases.shape[0]:
        raise ShapeMismatchError(
            f"Bias of size {biases.shape[0]} cannot be broadcast across last axis of shape {x.shape}"
        )
    return x + biases


# --- Windowed-operation geometry ---

def output_size_and_padding(in_size: int, kernel: int, stride: int, padding: str) -> Tuple[int, int, int]:
    """
    Output length along one spatial axis, plus the padding added before and after it.

    'valid': out = floor((in - k) / s) + 1, no padding.
    'same':  out = ceil(in / s), total = max(0, (out - 1) * s + k - in),
             split as total // 2 before and the remainder after.

    Returns:
        (out_size, pad_before, pad_after)
    """
    mode = check_padding(padding)
    if mode == 'valid':
        if in_size < kernel:
            raise ShapeMismatchError(f"Window of size {kernel} does not fit an input of size {in_size} with 'valid' padding")
        return (in_size - kernel) // stride + 1, 0, 0

    out_size = -(-in_size // stride)  # ceil division
    total = max(0, (out_size - 1) * stride + kernel - in_size)
    before = total // 2
    return out_size, before, total - before


def spatial_geometry(
    input_hw: Tuple[int, int],
    kernel: Tuple[int, int],
    strides: Tuple[int, int],
    padding: str,
) -> Tuple[Tuple[int, int], Tuple[int, int], Tuple[int, int]]:
    """
    Output (H_out, W_out) and the (before, after) padding of each spatial axis.

    Returns:
        ((H_out, W_out), (pad_top, pad_bottom), (pad_left, pad_right))
    """
    h_out, top, bottom = output_size_and_padding(input_hw[0], kernel[0], strides[0], padding)
    w_out, left, right = output_size_and_padding(input_hw[1], kernel[1], strides[1], padding)
    return (h_out, w_out), (top, bottom), (left, right)


def pad_spatial(
    x: np.ndarray,
    pad_h: Tuple[int, int],
    pad_w: Tuple[int, int],
    fill_value: float = 0.0,
) -> np.ndarray:
    """
    Pads the H and W axes of an (N, H, W, C) tensor.

    A larger tensor filled with `fill_value` is allocated and the original is
    copied in at offset (pad_h[0], pad_w[0]).
    """
    if pad_h == (0, 0) and pad_w == (0, 0):
        return x
    N, H, W, C = x.shape
    padded = np.full((N, H + pad_h[0] + pad_h[1], W + pad_w[0] + pad_w[1], C), fill_value, dtype=float)
    padded[:, pad_h[0]:pad_h[0] + H, pad_w[0]:pad_w[0] + W, :] = x
    return padded


def crop_spatial(x: np.ndarray, pad_h: Tuple[int, int], pad_w: Tuple[int, int], input_hw: Tuple[int, int]) -> np.ndarray:
    """Inverse of pad_spatial: cuts the original (H, W) region back out of a padded tensor."""
    H, W = input_hw
    return x[:, pad_h[0]:pad_h[0] + H, pad_w[0]:pad_w[0] + W, :]


def iter_windows(
    output_hw: Tuple[int, int],
    kernel: Tuple[int, int],
    strides: Tuple[int, int],
    input_hw: Tuple[int, int],
) -> Iterator[Tuple[int, int, slice, slice]]:
    """
    Yields (h_out, w_out, rows, cols) for every output position of a strided window.

    The (padded) input must hold every window in full.

    Raises:
        ShapeMismatchError: If the last window runs past the input bounds.
    """
    K_h, K_w = kernel
    S_h, S_w = strides
    H, W = input_hw
    needed_h = (output_hw[0] - 1) * S_h + K_h
    needed_w = (output_hw[1] - 1) * S_w + K_w
    if needed_h > H or needed_w > W:
        raise ShapeMismatchError(
            f"{output_hw[0]}x{output_hw[1]} windows of size {kernel} with strides {strides} "
            f"need an input of at least {needed_h}x{needed_w}, got {H}x{W}"
        )
    for h_out in range(output_hw[0]):
        vert_start = h_out * S_h
        for w_out in range(output_hw[1]):
            horiz_start = w_out * S_w
            yield h_out, w_out, slice(vert_start, vert_start + K_h), slice(horiz_start, horiz_start + K_w)
