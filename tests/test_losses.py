import numpy as np
import pytest

from clear_sequential.activations import ReLU, Sigmoid, Softmax
from clear_sequential.errors import InvalidConfigurationError, ShapeMismatchError
from clear_sequential.losses import (
    EPSILON,
    BinaryCrossentropy,
    CategoricalCrossentropy,
    MeanSquaredError,
    get_loss,
)


def test_mse_is_zero_for_identical_tensors():
    x = np.random.default_rng(0).normal(size=(5, 3))
    assert MeanSquaredError().calculate(x, x.copy()) == 0.0


def test_mse_value_and_gradient():
    predictions = np.array([[1.0, 2.0], [3.0, 4.0]])
    targets = np.array([[1.0, 0.0], [0.0, 4.0]])
    mse = MeanSquaredError()
    np.testing.assert_allclose(mse.forward(predictions, targets), [2.0, 4.5])
    np.testing.assert_allclose(mse.backward(predictions, targets), [[0.0, 2.0], [3.0, 0.0]])


def test_mse_has_no_fused_gradient():
    mse = MeanSquaredError()
    assert not mse.is_fused_with(Softmax())
    with pytest.raises(InvalidConfigurationError):
        mse.backward(np.ones((1, 1)), np.ones((1, 1)), fused=True)


def test_categorical_crossentropy_value():
    predictions = np.array([[0.7, 0.2, 0.1], [0.1, 0.1, 0.8]])
    targets = np.array([[1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    loss = CategoricalCrossentropy().forward(predictions, targets)
    np.testing.assert_allclose(loss, [-np.log(0.7), -np.log(0.8)])


def test_categorical_crossentropy_clips_zero_predictions():
    loss = CategoricalCrossentropy().calculate(np.array([[0.0, 1.0]]), np.array([[1.0, 0.0]]))
    assert np.isfinite(loss)
    np.testing.assert_allclose(loss, -np.log(EPSILON))


def test_categorical_fused_gradient_equals_softmax_chain():
    rng = np.random.default_rng(2)
    z = rng.normal(size=(4, 3))
    targets = np.eye(3)[[0, 2, 1, 1]]
    probs = Softmax().forward(z)
    cce = CategoricalCrossentropy()

    fused = cce.backward(probs, targets, fused=True)
    chained = Softmax().backward(cce.backward(probs, targets, fused=False), z)
    np.testing.assert_allclose(fused, chained, rtol=1e-6, atol=1e-10)
    np.testing.assert_allclose(fused, (probs - targets) / 4)


def test_binary_crossentropy_value():
    predictions = np.array([[0.3, 0.6], [0.9, 0.1]])
    targets = np.array([[0.0, 1.0], [1.0, 0.0]])
    loss = BinaryCrossentropy().forward(predictions, targets)
    # Only positive targets contribute
    np.testing.assert_allclose(loss, [-np.log(0.6), -np.log(0.9)])


def test_binary_fused_gradient_equals_softmax_chain():
    rng = np.random.default_rng(3)
    z = rng.normal(size=(5, 2))
    targets = np.eye(2)[[0, 1, 1, 0, 1]]
    probs = Softmax().forward(z)
    bce = BinaryCrossentropy()

    fused = bce.backward(probs, targets, fused=True)
    chained = Softmax().backward(bce.backward(probs, targets, fused=False), z)
    np.testing.assert_allclose(fused, chained, rtol=1e-6, atol=1e-10)
    np.testing.assert_allclose(fused, (probs - targets) / 5)


def test_plain_gradient_is_the_default():
    probs = np.array([[0.25, 0.75]])
    targets = np.array([[0.0, 1.0]])
    for loss in (CategoricalCrossentropy(), BinaryCrossentropy()):
        np.testing.assert_allclose(loss.backward(probs, targets), [[0.0, -1.0 / 0.75]])


def test_cross_entropy_clips_predictions_at_both_ends():
    predictions = np.array([[1.0, 0.0]])
    targets = np.array([[1.0, 0.0]])
    cce = CategoricalCrossentropy()
    np.testing.assert_allclose(cce.forward(predictions, targets), [-np.log(1.0 - EPSILON)])
    np.testing.assert_allclose(cce.backward(predictions, targets, fused=True), [[-EPSILON, EPSILON]])


def test_fusion_depends_on_output_activation():
    assert CategoricalCrossentropy().is_fused_with(Softmax())
    assert not CategoricalCrossentropy().is_fused_with(Sigmoid())
    assert not CategoricalCrossentropy().is_fused_with(None)
    assert BinaryCrossentropy().is_fused_with(Softmax())
    assert not BinaryCrossentropy().is_fused_with(Sigmoid())
    assert not BinaryCrossentropy().is_fused_with(ReLU())


@pytest.mark.parametrize("loss", [MeanSquaredError(), CategoricalCrossentropy(), BinaryCrossentropy()])
def test_shape_mismatch(loss):
    with pytest.raises(ShapeMismatchError):
        loss.forward(np.ones((2, 3)), np.ones((2, 2)))
    with pytest.raises(ShapeMismatchError):
        loss.backward(np.ones(3), np.ones(3))


def test_get_loss():
    assert isinstance(get_loss('mse'), MeanSquaredError)
    assert isinstance(get_loss('cross_entropy'), CategoricalCrossentropy)
    assert isinstance(get_loss('Binary_Crossentropy'), BinaryCrossentropy)
    loss = MeanSquaredError()
    assert get_loss(loss) is loss
    with pytest.raises(InvalidConfigurationError):
        get_loss('hinge')
