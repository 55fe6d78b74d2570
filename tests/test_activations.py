import numpy as np
import pytest

from clear_sequential.activations import Linear, ReLU, Sigmoid, Softmax, get_activation
from clear_sequential.errors import InvalidConfigurationError, ShapeMismatchError


def numerical_input_gradient(activation, x, upstream, eps=1e-6):
    """Central differences of sum(upstream * activation(x)) w.r.t. x."""
    grad = np.zeros_like(x)
    it = np.nditer(x, flags=['multi_index'])
    for _ in it:
        idx = it.multi_index
        original = x[idx]
        x[idx] = original + eps
        plus = np.sum(upstream * activation.forward(x))
        x[idx] = original - eps
        minus = np.sum(upstream * activation.forward(x))
        x[idx] = original
        grad[idx] = (plus - minus) / (2 * eps)
    return grad


def test_relu_forward_and_backward_mask():
    relu = ReLU()
    x = np.array([[-1.0, 0.0, 2.0]])
    np.testing.assert_array_equal(relu.forward(x), [[0.0, 0.0, 2.0]])
    np.testing.assert_array_equal(relu.backward(np.ones((1, 3)), x), [[0.0, 0.0, 1.0]])


def test_relu_works_on_4d():
    x = np.full((2, 3, 3, 4), -1.0)
    x[0, 1, 1, 2] = 5.0
    out = ReLU().forward(x)
    assert out.shape == x.shape
    assert out.sum() == 5.0


def test_relu_backward_shape_mismatch():
    with pytest.raises(ShapeMismatchError):
        ReLU().backward(np.ones((2, 3)), np.ones((3, 2)))


def test_softmax_rows_sum_to_one():
    x = np.array([[1.0, 2.0, 3.0], [1000.0, 1000.0, 1000.0], [-5.0, 0.0, 5.0]])
    out = Softmax().forward(x)
    np.testing.assert_allclose(out.sum(axis=1), np.ones(3))
    np.testing.assert_allclose(out[1], np.full(3, 1.0 / 3.0))
    assert np.all(out > 0)


def test_softmax_rejects_non_2d():
    with pytest.raises(ShapeMismatchError):
        Softmax().forward(np.ones(3))
    with pytest.raises(ShapeMismatchError):
        Softmax().forward(np.ones((1, 2, 2, 3)))


def test_softmax_backward_matches_numerical_gradient():
    rng = np.random.default_rng(0)
    x = rng.normal(size=(3, 4))
    upstream = rng.normal(size=(3, 4))
    analytic = Softmax().backward(upstream, x)
    numeric = numerical_input_gradient(Softmax(), x.copy(), upstream)
    np.testing.assert_allclose(analytic, numeric, rtol=1e-5, atol=1e-8)


def test_sigmoid_backward_matches_numerical_gradient():
    rng = np.random.default_rng(1)
    x = rng.normal(size=(4, 3))
    upstream = rng.normal(size=(4, 3))
    analytic = Sigmoid().backward(upstream, x)
    numeric = numerical_input_gradient(Sigmoid(), x.copy(), upstream)
    np.testing.assert_allclose(analytic, numeric, rtol=1e-5, atol=1e-8)


def test_sigmoid_is_stable_for_large_inputs():
    out = Sigmoid().forward(np.array([[-1e4, 0.0, 1e4]]))
    assert np.all(np.isfinite(out))
    np.testing.assert_allclose(out, [[0.0, 0.5, 1.0]], atol=1e-12)


def test_linear_is_identity():
    x = np.arange(6.0).reshape(2, 3)
    np.testing.assert_array_equal(Linear().forward(x), x)
    np.testing.assert_array_equal(Linear().backward(x, x), x)


def test_get_activation():
    assert isinstance(get_activation('ReLU'), ReLU)
    assert isinstance(get_activation('softmax'), Softmax)
    assert get_activation(None) is None
    sigmoid = Sigmoid()
    assert get_activation(sigmoid) is sigmoid


@pytest.mark.parametrize("bad", ['tanh', 42])
def test_get_activation_unknown(bad):
    with pytest.raises(InvalidConfigurationError):
        get_activation(bad)


def test_softmax_is_invariant_to_row_shifts():
    x = np.array([[0.5, -1.0, 2.0], [3.0, 3.0, 0.0]])
    shifted = x + np.array([[10.0], [-7.0]])
    np.testing.assert_allclose(Softmax().forward(shifted), Softmax().forward(x), atol=1e-12)
