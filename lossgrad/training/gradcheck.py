"""Finite-difference verification of analytic loss gradients.

The numeric gradient is the centred difference of the unaveraged score,

    dL/dz_ij ~= (L(z + h e_ij) - L(z - h e_ij)) / 2h

and each element is compared with ``|g - n| / (|g| + |n|)``. Elements whose
absolute error is below ``min_abs_error`` are treated as matching, since the
relative error of two near-zero values is meaningless.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..core.activations import ActivationFunction, get_activation
from ..core.types import Array
from .losses import REGISTRY, LossFunction

logger = logging.getLogger(__name__)

DEFAULT_CASES: Tuple[Tuple[str, str], ...] = (
    ("l1", "identity"),
    ("l1", "tanh"),
    ("l2", "identity"),
    ("l2", "sigmoid"),
    ("l2", "leakyrelu"),
    ("mae", "tanh"),
    ("mse", "identity"),
    ("mse", "softplus"),
    ("kld", "softmax"),
    ("kld", "sigmoid"),
    ("mcxent", "softmax"),
    ("mcxent", "sigmoid"),
    ("xent", "sigmoid"),
    ("xent", "softmax"),
    ("poisson", "softplus"),
    ("poisson", "sigmoid"),
    ("cosine_proximity", "identity"),
    ("cosine_proximity", "tanh"),
    ("hinge", "identity"),
    ("hinge", "tanh"),
    ("squared_hinge", "identity"),
    ("squared_hinge", "tanh"),
)


@dataclass(frozen=True)
class GradCheckResult:
    """Outcome of comparing analytic and numeric gradients for one case."""

    loss: str
    activation: str
    max_rel_error: float
    max_abs_error: float
    passed: bool

    def as_record(self) -> Dict[str, object]:
        return {
            "loss": self.loss,
            "activation": self.activation,
            "max_rel_error": self.max_rel_error,
            "max_abs_error": self.max_abs_error,
            "passed": self.passed,
        }


def numeric_gradient(
    loss: LossFunction,
    labels: Array,
    pre_output: Array,
    activation: ActivationFunction,
    mask: Optional[Array] = None,
    example_weights: Optional[Array] = None,
    step: float = 1e-5,
) -> Array:
    """Central-difference estimate of d score / d pre_output."""

    z = np.array(pre_output, dtype=np.float64)
    grad = np.zeros_like(z)
    for idx in np.ndindex(z.shape):
        original = z[idx]
        z[idx] = original + step
        plus = loss.score(labels, z, activation, mask, example_weights, average=False)
        z[idx] = original - step
        minus = loss.score(labels, z, activation, mask, example_weights, average=False)
        z[idx] = original
        grad[idx] = (plus - minus) / (2.0 * step)
    return grad


def check_gradient(
    loss: LossFunction,
    labels: Array,
    pre_output: Array,
    activation: ActivationFunction,
    mask: Optional[Array] = None,
    example_weights: Optional[Array] = None,
    *,
    step: float = 1e-5,
    max_rel_error: float = 1e-4,
    min_abs_error: float = 1e-7,
) -> GradCheckResult:
    analytic = loss.gradient(labels, pre_output, activation, mask, example_weights)
    numeric = numeric_gradient(
        loss, labels, pre_output, activation, mask, example_weights, step=step
    )
    abs_err = np.abs(analytic - numeric)
    denom = np.abs(analytic) + np.abs(numeric)
    rel_err = np.divide(abs_err, denom, out=np.zeros_like(abs_err), where=denom > 0)
    rel_err = np.where(abs_err > min_abs_error, rel_err, 0.0)
    worst_rel = float(np.max(rel_err)) if rel_err.size else 0.0
    worst_abs = float(np.max(abs_err)) if abs_err.size else 0.0
    return GradCheckResult(
        loss=loss.kind,
        activation=activation.name,
        max_rel_error=worst_rel,
        max_abs_error=worst_abs,
        passed=worst_rel <= max_rel_error,
    )


def sample_inputs(
    loss_kind: str, batch: int, features: int, rng: np.random.Generator
) -> tuple[Array, Array]:
    """Return ``(labels, pre_output)`` with labels in the domain of ``loss_kind``."""

    shape = (batch, features)
    pre_output = rng.standard_normal(shape)
    if loss_kind == "mcxent":
        labels = np.zeros(shape)
        labels[np.arange(batch), rng.integers(0, features, size=batch)] = 1.0
    elif loss_kind == "kld":
        labels = rng.dirichlet(np.ones(features), size=batch)
    elif loss_kind == "xent":
        labels = rng.integers(0, 2, size=shape).astype(np.float64)
    elif loss_kind == "poisson":
        labels = rng.poisson(2.0, size=shape).astype(np.float64)
    elif loss_kind in {"hinge", "squared_hinge"}:
        labels = rng.choice([-1.0, 1.0], size=shape)
    else:
        labels = rng.standard_normal(shape)
    return labels, pre_output


def run_cases(
    cases: Sequence[Tuple[str, str]] = DEFAULT_CASES,
    *,
    batch: int = 4,
    features: int = 3,
    seed: int = 0,
    with_mask: bool = False,
    with_example_weights: bool = False,
    with_feature_weights: bool = False,
    max_rel_error: float = 1e-4,
) -> List[GradCheckResult]:
    """Gradient-check every ``(loss, activation)`` pair on random inputs."""

    rng = np.random.default_rng(seed)
    results: List[GradCheckResult] = []
    for loss_name, activation_name in cases:
        loss = REGISTRY.get(loss_name)
        if with_feature_weights and loss.accepts_weights:
            loss = REGISTRY.get(loss_name, rng.uniform(0.5, 2.0, size=features))
        activation = get_activation(activation_name)
        labels, pre_output = sample_inputs(loss.kind, batch, features, rng)
        mask = None
        if with_mask:
            mask = rng.integers(0, 2, size=batch).astype(np.float64)
            mask[0] = 1.0
        example_weights = rng.uniform(0.5, 2.0, size=batch) if with_example_weights else None
        result = check_gradient(
            loss,
            labels,
            pre_output,
            activation,
            mask,
            example_weights,
            max_rel_error=max_rel_error,
        )
        logger.info(
            "gradcheck %s/%s: max_rel_error=%.3e passed=%s",
            result.loss,
            result.activation,
            result.max_rel_error,
            result.passed,
        )
        results.append(result)
    return results


__all__ = [
    "DEFAULT_CASES",
    "GradCheckResult",
    "check_gradient",
    "numeric_gradient",
    "run_cases",
    "sample_inputs",
]
