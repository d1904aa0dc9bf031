import dataclasses

import numpy as np
import pytest

from lossgrad.core.activations import Identity, Sigmoid, Softmax, log_softmax, softmax
from lossgrad.core.types import ConfigurationError
from lossgrad.training.losses import (
    REGISTRY,
    LossBinaryXENT,
    LossCosineProximity,
    LossHinge,
    LossKLD,
    LossL1,
    LossL2,
    LossMCXENT,
    LossMSE,
    LossPoisson,
    LossSquaredHinge,
    default_activation,
)


def test_l2_reference_scenario():
    labels = np.array([[1.0, 0.0], [0.0, 1.0]])
    pre_output = np.array([[0.0, 0.0], [1.0, 1.0]])
    loss = LossL2()
    assert np.allclose(loss.score_array(labels, pre_output, Identity()), [[1.0], [1.0]])
    assert loss.score(labels, pre_output, Identity(), average=True) == pytest.approx(1.0)
    assert np.allclose(
        loss.gradient(labels, pre_output, Identity()), [[-2.0, 0.0], [2.0, 0.0]]
    )


def test_kld_of_identical_distributions_is_zero():
    labels = np.array([[1.0, 0.0]])
    score = LossKLD().score(labels, labels.copy(), Identity())
    assert score == pytest.approx(0.0, abs=1e-9)


def test_l1_values_and_sign_gradient():
    labels = np.array([[1.0, -1.0]])
    pre_output = np.array([[0.5, 0.5]])
    assert LossL1().score(labels, pre_output, Identity()) == pytest.approx(2.0)
    assert np.allclose(LossL1().gradient(labels, pre_output, Identity()), [[-1.0, 1.0]])


def test_mse_is_l2_over_output_width():
    rng = np.random.default_rng(0)
    labels = rng.standard_normal((3, 4))
    pre_output = rng.standard_normal((3, 4))
    l2 = LossL2().score_array(labels, pre_output, Identity())
    mse = LossMSE().score_array(labels, pre_output, Identity())
    assert np.allclose(mse, l2 / 4)


def test_fused_mcxent_scores_and_gradient():
    labels = np.array([[0.0, 1.0, 0.0], [1.0, 0.0, 0.0]])
    z = np.array([[0.2, -0.4, 1.1], [2.0, 0.5, -1.0]])
    loss = LossMCXENT()
    expected = -np.sum(labels * log_softmax(z), axis=1, keepdims=True)
    assert np.allclose(loss.score_array(labels, z, Softmax()), expected)
    assert np.allclose(loss.gradient(labels, z, Softmax()), softmax(z) - labels)


def test_fused_mcxent_is_finite_for_extreme_logits():
    labels = np.array([[0.0, 1.0]])
    z = np.array([[1000.0, 0.0]])
    assert LossMCXENT().score(labels, z, Softmax()) == pytest.approx(1000.0)
    grad = LossMCXENT().gradient(labels, z, Softmax())
    assert np.allclose(grad, [[1.0, -1.0]])


def test_generic_mcxent_clamps_at_eps():
    labels = np.array([[0.0, 1.0]])
    z = np.array([[1000.0, 0.0]])
    score = LossMCXENT().score(labels, z, Softmax(fuse=False))
    assert np.isfinite(score)
    assert score == pytest.approx(-np.log(1e-5))


def test_fused_binary_xent_matches_closed_form():
    labels = np.array([[1.0, 0.0, 1.0]])
    z = np.array([[0.3, -1.2, 2.5]])
    s = 1.0 / (1.0 + np.exp(-z))
    expected = -np.sum(labels * np.log(s) + (1 - labels) * np.log(1 - s))
    assert LossBinaryXENT().score(labels, z, Sigmoid()) == pytest.approx(expected)
    assert np.allclose(LossBinaryXENT().gradient(labels, z, Sigmoid()), s - labels)


def test_poisson_value():
    score = LossPoisson().score(np.array([[1.0]]), np.array([[2.0]]), Identity())
    assert score == pytest.approx(2.0 - np.log(2.0))


def test_cosine_proximity_of_parallel_rows():
    labels = np.array([[1.0, 2.0], [3.0, -1.0]])
    pre_output = np.array([[2.0, 4.0], [-3.0, 1.0]])
    scores = LossCosineProximity().score_array(labels, pre_output, Identity())
    assert np.allclose(scores, [[-1.0], [1.0]])


def test_cosine_proximity_zero_row_stays_finite():
    labels = np.array([[1.0, 2.0]])
    pre_output = np.zeros((1, 2))
    loss = LossCosineProximity()
    assert np.isfinite(loss.score(labels, pre_output, Identity()))
    assert np.all(np.isfinite(loss.gradient(labels, pre_output, Identity())))


def test_hinge_family_values():
    labels = np.array([[1.0, -1.0]])
    pre_output = np.array([[0.5, 0.5]])
    assert LossHinge().score(labels, pre_output, Identity()) == pytest.approx(2.0)
    assert np.allclose(LossHinge().gradient(labels, pre_output, Identity()), [[-1.0, 1.0]])
    assert LossSquaredHinge().score(labels, pre_output, Identity()) == pytest.approx(2.5)
    assert np.allclose(
        LossSquaredHinge().gradient(labels, pre_output, Identity()), [[-1.0, 3.0]]
    )


def test_squared_hinge_inactive_margin():
    labels = np.array([[1.0]])
    pre_output = np.array([[2.0]])
    assert LossSquaredHinge().score(labels, pre_output, Identity()) == 0.0
    assert np.all(LossSquaredHinge().gradient(labels, pre_output, Identity()) == 0.0)


@pytest.mark.parametrize("loss_cls", [LossKLD, LossPoisson, LossCosineProximity, LossHinge])
def test_losses_without_weight_support_reject_weights(loss_cls):
    with pytest.raises(ConfigurationError, match="does not support"):
        loss_cls(np.ones(3))


def test_weights_must_be_a_row_vector():
    with pytest.raises(ConfigurationError):
        LossL2(np.ones((3, 1)))


def test_weights_are_frozen():
    loss = LossL2(np.array([1.0, 2.0]))
    with pytest.raises(ValueError):
        loss.weights[0] = 3.0
    with pytest.raises(dataclasses.FrozenInstanceError):
        loss.weights = None


def test_equality_hash_and_repr():
    a = LossL2([1.0, 2.0])
    b = LossL2(np.array([[1.0, 2.0]]))
    assert a == b and hash(a) == hash(b)
    assert LossL2() == LossL2()
    assert LossL2() != LossL1()
    assert a != LossL2()
    assert repr(a) == "LossL2(weights=[1.0, 2.0])"
    assert repr(LossKLD()) == "LossKLD()"


def test_shape_mismatch_raises():
    with pytest.raises(ConfigurationError, match="labels shape"):
        LossL2().score(np.zeros((2, 3)), np.zeros((2, 2)), Identity())
    with pytest.raises(ConfigurationError, match="2-D"):
        LossL2().gradient(np.zeros(3), np.zeros(3), Identity())


def test_registry_aliases_and_unknown_names():
    assert isinstance(REGISTRY.get("ce"), LossMCXENT)
    assert isinstance(REGISTRY.get("BCE"), LossBinaryXENT)
    assert isinstance(REGISTRY.get("kl_divergence"), LossKLD)
    assert "ce" in REGISTRY.names() and "ce" not in REGISTRY.kinds()
    with pytest.raises(KeyError, match="Available losses"):
        REGISTRY.get("nope")


@pytest.mark.parametrize(
    "task_type,loss_cls,activation_cls",
    [
        ("regression", LossMSE, Identity),
        ("multiclass", LossMCXENT, Softmax),
        ("binary", LossBinaryXENT, Sigmoid),
        ("multilabel", LossBinaryXENT, Sigmoid),
    ],
)
def test_auto_resolution(task_type, loss_cls, activation_cls):
    assert isinstance(REGISTRY.resolve("auto", task_type=task_type), loss_cls)
    assert isinstance(default_activation(task_type), activation_cls)


def test_auto_rejects_unknown_task():
    with pytest.raises(ValueError):
        REGISTRY.resolve("auto", task_type="ranking")


def test_hinge_family_masks_gradient_twice_and_score_once():
    labels = np.array([[1.0, -1.0]])
    z = np.array([[0.2, 0.3]])
    mask = np.array([0.5])
    squared = LossSquaredHinge()
    assert squared.score(labels, z, Identity()) == pytest.approx(2.33)
    assert squared.score(labels, z, Identity(), mask) == pytest.approx(2.33 * 0.5)
    assert np.allclose(squared.gradient(labels, z, Identity()), [[-1.6, 2.6]])
    assert np.allclose(squared.gradient(labels, z, Identity(), mask), [[-0.4, 0.65]])
    hinge = LossHinge()
    assert hinge.score(labels, z, Identity(), mask) == pytest.approx(2.1 * 0.5)
    assert np.allclose(hinge.gradient(labels, z, Identity(), mask), [[-0.25, 0.25]])


def test_other_losses_mask_gradient_once():
    labels = np.array([[1.0, -1.0]])
    z = np.array([[0.2, 0.3]])
    mask = np.array([0.5])
    full = LossL2().gradient(labels, z, Identity())
    assert np.allclose(LossL2().gradient(labels, z, Identity(), mask), full * 0.5)


def test_average_of_empty_batch_is_rejected():
    empty = np.zeros((0, 3))
    assert LossMCXENT().score(empty, empty, Softmax()) == 0.0
    assert LossMCXENT().score_array(empty, empty, Softmax()).shape == (0, 1)
    with pytest.raises(ConfigurationError, match="empty batch"):
        LossMCXENT().score(empty, empty, Softmax(), average=True)
