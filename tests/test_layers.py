import numpy as np
import pytest

from clear_sequential.errors import InvalidConfigurationError, ShapeMismatchError, UnsupportedLayerTypeError
from clear_sequential.layers import Conv2D, Dense, Flatten, Input, MaxPooling2D
from clear_sequential.optimizers import SGD


def numerical_gradient(f, x, eps=1e-6):
    """Central-difference gradient of the scalar function f() w.r.t. the array x (perturbed in place)."""
    grad = np.zeros_like(x)
    it = np.nditer(x, flags=['multi_index'])
    for _ in it:
        idx = it.multi_index
        original = x[idx]
        x[idx] = original + eps
        plus = f()
        x[idx] = original - eps
        minus = f()
        x[idx] = original
        grad[idx] = (plus - minus) / (2 * eps)
    return grad


def check_layer_gradients(layer, inputs, rng, check_params=True):
    """Compares backward() with central differences of sum(upstream * forward(inputs))."""
    output, cache = layer.forward(inputs)
    upstream = rng.normal(size=output.shape)
    dinputs = layer.backward(upstream, cache)

    def objective():
        out, _ = layer.forward(inputs)
        return np.sum(upstream * out)

    np.testing.assert_allclose(dinputs, numerical_gradient(objective, inputs), rtol=1e-5, atol=1e-7)
    if check_params:
        np.testing.assert_allclose(layer.dweights, numerical_gradient(objective, layer.weights), rtol=1e-5, atol=1e-7)
        np.testing.assert_allclose(layer.dbiases, numerical_gradient(objective, layer.biases), rtol=1e-5, atol=1e-7)


# --- Input ---

def test_input_checks_per_sample_shape():
    layer = Input(4, 4, 1)
    out, cache = layer.forward(np.zeros((3, 4, 4, 1)))
    assert out.shape == (3, 4, 4, 1)
    assert cache == {}
    with pytest.raises(ShapeMismatchError):
        layer.forward(np.zeros((3, 4, 4, 2)))


def test_input_accepts_tuple():
    assert Input((2, 3)).output_shape == (2, 3)


def test_input_has_no_backward():
    with pytest.raises(UnsupportedLayerTypeError):
        Input(2).backward(np.zeros((1, 2)), {})


def test_non_trainable_layers_reject_updates():
    with pytest.raises(UnsupportedLayerTypeError):
        Flatten((2, 2)).apply_gradients(SGD())


# --- Dense ---

def test_dense_identity():
    layer = Dense(2, 2, initial_weights=np.eye(2), initial_biases=np.zeros(2))
    out, _ = layer.forward(np.array([[1.0, 2.0]]))
    np.testing.assert_array_equal(out, [[1.0, 2.0]])


def test_dense_gradient_shapes():
    rng = np.random.default_rng(0)
    layer = Dense(5, 3, activation='relu', rng=rng)
    x = rng.normal(size=(4, 5))
    out, cache = layer.forward(x)
    assert out.shape == (4, 3)
    dinputs = layer.backward(np.ones((4, 3)), cache)
    assert dinputs.shape == (4, 5)
    assert layer.dweights.shape == (5, 3)
    assert layer.dbiases.shape == (3,)


def test_dense_gradients_match_numerical():
    rng = np.random.default_rng(1)
    layer = Dense(4, 3, activation='sigmoid', rng=rng)
    check_layer_gradients(layer, rng.normal(size=(5, 4)), rng)


def test_dense_skip_activation_passes_gradient_straight_through():
    rng = np.random.default_rng(2)
    layer = Dense(3, 2, activation='softmax', rng=rng)
    x = rng.normal(size=(4, 3))
    _, cache = layer.forward(x)
    dz = rng.normal(size=(4, 2))
    dinputs = layer.backward(dz, cache, skip_activation=True)
    np.testing.assert_allclose(dinputs, dz @ layer.weights.T)
    np.testing.assert_allclose(layer.dweights, x.T @ dz)


def test_dense_shape_errors():
    layer = Dense(3, 2)
    with pytest.raises(ShapeMismatchError):
        layer.forward(np.ones((2, 4)))
    with pytest.raises(ShapeMismatchError):
        layer.forward(np.ones((2, 3, 1, 1)))
    with pytest.raises(ShapeMismatchError):
        Dense(3, 2, initial_weights=np.ones((2, 3)))


def test_dense_initialisation_is_reproducible():
    a = Dense(4, 3, rng=np.random.default_rng(7))
    b = Dense(4, 3, rng=np.random.default_rng(7))
    np.testing.assert_array_equal(a.weights, b.weights)
    np.testing.assert_array_equal(a.biases, np.full(3, 0.01))
    assert np.all(np.abs(a.weights) <= np.sqrt(2.0 / 7))


# --- Conv2D ---

def test_conv2d_valid_output_shape():
    layer = Conv2D((8, 8, 1), filters=4, kernel_size=(3, 3), padding='valid')
    out, _ = layer.forward(np.zeros((2, 8, 8, 1)))
    assert layer.output_shape == (6, 6, 4)
    assert out.shape == (2, 6, 6, 4)


def test_conv2d_same_output_shape():
    layer = Conv2D((8, 8, 1), filters=4, kernel_size=(3, 3), padding='same')
    out, _ = layer.forward(np.zeros((2, 8, 8, 1)))
    assert out.shape == (2, 8, 8, 4)


def test_conv2d_strided_same_output_shape():
    layer = Conv2D((7, 7, 2), filters=3, kernel_size=3, strides=2, padding='same')
    assert layer.output_shape == (4, 4, 3)


def test_conv2d_known_values():
    layer = Conv2D((3, 3, 1), filters=1, kernel_size=(2, 2))
    layer.weights[...] = 1.0
    layer.biases[...] = 0.0
    x = np.arange(9.0).reshape(1, 3, 3, 1)
    out, _ = layer.forward(x)
    np.testing.assert_array_equal(out[0, :, :, 0], [[8.0, 12.0], [20.0, 24.0]])


def test_conv2d_invalid_configuration():
    with pytest.raises(InvalidConfigurationError):
        Conv2D((8, 8, 1), filters=2, kernel_size=3, padding='full')
    with pytest.raises(ShapeMismatchError):
        Conv2D((2, 2, 1), filters=2, kernel_size=3, padding='valid')


def test_conv2d_rejects_wrong_rank_and_channels():
    layer = Conv2D((4, 4, 2), filters=2, kernel_size=3)
    with pytest.raises(ShapeMismatchError):
        layer.forward(np.zeros((4, 4, 2)))
    with pytest.raises(ShapeMismatchError):
        layer.forward(np.zeros((1, 4, 4, 3)))


@pytest.mark.parametrize("padding, strides", [('valid', (1, 1)), ('same', (1, 1)), ('same', (2, 2)), ('valid', (2, 1))])
def test_conv2d_gradients_match_numerical(padding, strides):
    rng = np.random.default_rng(3)
    layer = Conv2D((5, 5, 2), filters=2, kernel_size=(3, 3), strides=strides, padding=padding, rng=rng)
    check_layer_gradients(layer, rng.normal(size=(2, 5, 5, 2)), rng)


def test_conv2d_dinputs_has_unpadded_shape():
    rng = np.random.default_rng(4)
    layer = Conv2D((6, 6, 1), filters=2, kernel_size=3, padding='same', rng=rng)
    x = rng.normal(size=(3, 6, 6, 1))
    out, cache = layer.forward(x)
    assert layer.backward(np.ones_like(out), cache).shape == x.shape


def test_conv2d_batch_gradient_is_sum_of_sample_gradients():
    rng = np.random.default_rng(5)
    layer = Conv2D((5, 5, 1), filters=3, kernel_size=(2, 2), padding='same', activation='relu', rng=rng)
    x = rng.normal(size=(2, 5, 5, 1))
    out, cache = layer.forward(x)
    upstream = rng.normal(size=out.shape)

    layer.backward(upstream, cache)
    batch_dweights, batch_dbiases = layer.dweights.copy(), layer.dbiases.copy()

    summed_dweights = np.zeros_like(batch_dweights)
    summed_dbiases = np.zeros_like(batch_dbiases)
    for i in range(2):
        _, sample_cache = layer.forward(x[i:i + 1])
        layer.backward(upstream[i:i + 1], sample_cache)
        summed_dweights += layer.dweights
        summed_dbiases += layer.dbiases

    np.testing.assert_allclose(batch_dweights, summed_dweights)
    np.testing.assert_allclose(batch_dbiases, summed_dbiases)


# --- Flatten ---

def test_flatten_round_trip():
    layer = Flatten((3, 3, 2))
    x = np.arange(36.0).reshape(2, 3, 3, 2)
    out, cache = layer.forward(x)
    assert out.shape == (2, 18)
    np.testing.assert_array_equal(layer.backward(out, cache), x)


def test_flatten_size_mismatch():
    with pytest.raises(ShapeMismatchError):
        Flatten((3, 3, 2)).forward(np.zeros((2, 3, 3, 1)))


def test_flatten_without_declared_shape():
    out, _ = Flatten().forward(np.zeros((4, 2, 5)))
    assert out.shape == (4, 10)


# --- MaxPooling2D ---

def test_max_pooling_forward_values():
    x = np.array([[1.0, 2.0, 5.0, 0.0],
                  [3.0, 4.0, 1.0, 1.0],
                  [0.0, 0.0, 2.0, 2.0],
                  [9.0, 0.0, 2.0, 7.0]]).reshape(1, 4, 4, 1)
    layer = MaxPooling2D((4, 4, 1))
    out, _ = layer.forward(x)
    np.testing.assert_array_equal(out[0, :, :, 0], [[4.0, 5.0], [9.0, 7.0]])


def test_max_pooling_backward_routes_to_first_maximum():
    x = np.array([[2.0, 2.0],
                  [1.0, 2.0]]).reshape(1, 2, 2, 1)
    layer = MaxPooling2D((2, 2, 1))
    _, cache = layer.forward(x)
    dinputs = layer.backward(np.full((1, 1, 1, 1), 3.0), cache)
    np.testing.assert_array_equal(dinputs[0, :, :, 0], [[3.0, 0.0], [0.0, 0.0]])


def test_max_pooling_overlapping_windows_accumulate():
    x = np.array([[0.0, 0.0, 0.0],
                  [0.0, 9.0, 0.0],
                  [0.0, 0.0, 0.0]]).reshape(1, 3, 3, 1)
    layer = MaxPooling2D((3, 3, 1), pool_size=(2, 2), strides=(1, 1))
    _, cache = layer.forward(x)
    dinputs = layer.backward(np.ones((1, 2, 2, 1)), cache)
    assert dinputs[0, 1, 1, 0] == 4.0
    assert dinputs.sum() == 4.0


def test_max_pooling_same_padding_never_selects_padding():
    layer = MaxPooling2D((3, 3, 2), pool_size=(2, 2), padding='same')
    assert layer.output_shape == (2, 2, 2)
    x = np.full((1, 3, 3, 2), -5.0)
    out, cache = layer.forward(x)
    np.testing.assert_array_equal(out, np.full((1, 2, 2, 2), -5.0))
    assert layer.backward(np.ones_like(out), cache).shape == x.shape


def test_max_pooling_gradients_match_numerical():
    rng = np.random.default_rng(6)
    layer = MaxPooling2D((5, 5, 3), pool_size=(2, 2), padding='same')
    check_layer_gradients(layer, rng.normal(size=(2, 5, 5, 3)), rng, check_params=False)


def test_max_pooling_default_stride_is_pool_size():
    layer = MaxPooling2D((6, 6, 1), pool_size=3)
    assert (layer.S_h, layer.S_w) == (3, 3)
    assert layer.output_shape == (2, 2, 1)
