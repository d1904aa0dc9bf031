"""Loss functions composed with activation functions, plus the loss registry.

Each loss computes its per-element score and dL/da in post-activation space,
runs them through the shared weighting pipeline, and lets the activation turn
dL/da into dL/dz. Activations that expose a fused hook for a loss kind (softmax
for ``mcxent``, sigmoid for ``xent``) replace that generic path entirely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import ClassVar, Dict, Iterable, Optional, Type

import numpy as np

from ..core.activations import ActivationFunction, FusedLossHook, get_activation
from ..core.types import EPS_THRESHOLD, Array, ConfigurationError, as_batch
from ..core.weighting import (
    apply_mask,
    apply_weighting,
    as_row_vector,
    combined_scale,
    validate_weighting,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class LossFunction:
    """Base class for every loss.

    ``weights`` is an optional per-output-feature row vector, frozen at
    construction. Its length is checked against the output width on every
    call, since the width is only known once a batch arrives.
    """

    weights: Optional[Array] = None

    kind: ClassVar[str] = ""
    accepts_weights: ClassVar[bool] = False
    # Hinge-style losses also mask dL/da before backprop, then mask dL/dz again.
    masks_dlda: ClassVar[bool] = False

    def __post_init__(self) -> None:
        if self.weights is None:
            return
        if not self.accepts_weights:
            raise ConfigurationError(
                f"{type(self).__name__} does not support a feature-weight vector"
            )
        object.__setattr__(self, "weights", as_row_vector(self.weights, "weights"))

    # ------------------------------------------------------------------
    # Formulas implemented by each variant, in post-activation space.

    def _element_scores(self, labels: Array, output: Array) -> Array:
        raise NotImplementedError

    def _dlda(self, labels: Array, output: Array) -> Array:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Public API

    def score(
        self,
        labels: Array,
        pre_output: Array,
        activation: ActivationFunction,
        mask: Optional[Array] = None,
        example_weights: Optional[Array] = None,
        average: bool = False,
    ) -> float:
        """Return the total loss, divided by the batch size when ``average``."""

        labels, z = self._prepare(labels, pre_output, mask, example_weights)
        scores = self._weighted_scores(labels, z, activation, mask, example_weights)
        total = float(np.sum(scores))
        if average:
            if scores.shape[0] == 0:
                raise ConfigurationError("cannot average the score of an empty batch")
            total /= scores.shape[0]
        return total

    def score_array(
        self,
        labels: Array,
        pre_output: Array,
        activation: ActivationFunction,
        mask: Optional[Array] = None,
        example_weights: Optional[Array] = None,
    ) -> Array:
        """Return the per-example loss as a ``(batch, 1)`` column."""

        labels, z = self._prepare(labels, pre_output, mask, example_weights)
        scores = self._weighted_scores(labels, z, activation, mask, example_weights)
        return np.sum(scores, axis=1, keepdims=True)

    def gradient(
        self,
        labels: Array,
        pre_output: Array,
        activation: ActivationFunction,
        mask: Optional[Array] = None,
        example_weights: Optional[Array] = None,
    ) -> Array:
        """Return dL/dz of the summed (unaveraged) loss, shaped like ``pre_output``."""

        labels, z = self._prepare(labels, pre_output, mask, example_weights)
        hook = self._fused_hook(activation)
        if hook is not None:
            logger.debug("%s: fused gradient via %s", self.kind, type(activation).__name__)
            scale = combined_scale(z.shape, self.weights, example_weights)
            grad = hook.gradient(labels, z, scale)
        else:
            output = activation.forward(z, training=True)
            dlda = apply_weighting(
                self._dlda(labels, output),
                self.weights,
                example_weights,
                mask if self.masks_dlda else None,
            )
            # Parameter gradients are always empty for the activations shipped here.
            grad, _ = activation.backprop(z, dlda)
        return apply_mask(grad, mask)

    def score_and_gradient(
        self,
        labels: Array,
        pre_output: Array,
        activation: ActivationFunction,
        mask: Optional[Array] = None,
        example_weights: Optional[Array] = None,
        average: bool = False,
    ) -> tuple[float, Array]:
        return (
            self.score(labels, pre_output, activation, mask, example_weights, average),
            self.gradient(labels, pre_output, activation, mask, example_weights),
        )

    # ------------------------------------------------------------------
    # Internal helpers

    def _prepare(
        self,
        labels: Array,
        pre_output: Array,
        mask: Optional[Array],
        example_weights: Optional[Array],
    ) -> tuple[Array, Array]:
        labels = as_batch(labels, "labels")
        z = as_batch(pre_output, "pre_output")
        if labels.shape != z.shape:
            raise ConfigurationError(
                f"labels shape {labels.shape} does not match pre_output shape {z.shape}"
            )
        validate_weighting(z.shape, self.weights, example_weights, mask)
        return labels, z

    def _fused_hook(self, activation: ActivationFunction) -> Optional[FusedLossHook]:
        query = getattr(activation, "fused_hook", None)
        if query is None:
            return None
        return query(self.kind)

    def _weighted_scores(
        self,
        labels: Array,
        z: Array,
        activation: ActivationFunction,
        mask: Optional[Array],
        example_weights: Optional[Array],
    ) -> Array:
        hook = self._fused_hook(activation)
        if hook is not None:
            scores = hook.element_scores(labels, z)
        else:
            scores = self._element_scores(labels, activation.forward(z, training=True))
        return apply_weighting(scores, self.weights, example_weights, mask)

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        if self.weights is None or other.weights is None:  # type: ignore[attr-defined]
            return self.weights is None and other.weights is None  # type: ignore[attr-defined]
        return bool(np.array_equal(self.weights, other.weights))  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        key = None if self.weights is None else self.weights.tobytes()
        return hash((type(self).__name__, key))

    def __repr__(self) -> str:
        if self.weights is None:
            return f"{type(self).__name__}()"
        return f"{type(self).__name__}(weights={self.weights.tolist()})"


class LossL1(LossFunction):
    """Sum of absolute errors."""

    kind = "l1"
    accepts_weights = True

    def _element_scores(self, labels: Array, output: Array) -> Array:
        return np.abs(output - labels)

    def _dlda(self, labels: Array, output: Array) -> Array:
        return np.sign(output - labels)


class LossL2(LossFunction):
    """Sum of squared errors."""

    kind = "l2"
    accepts_weights = True

    def _element_scores(self, labels: Array, output: Array) -> Array:
        diff = labels - output
        return diff * diff

    def _dlda(self, labels: Array, output: Array) -> Array:
        return 2.0 * (output - labels)


class LossMAE(LossL1):
    """L1 averaged over the output features of each example."""

    kind = "mae"

    def _element_scores(self, labels: Array, output: Array) -> Array:
        return super()._element_scores(labels, output) / output.shape[1]

    def _dlda(self, labels: Array, output: Array) -> Array:
        return super()._dlda(labels, output) / output.shape[1]


class LossMSE(LossL2):
    """L2 averaged over the output features of each example."""

    kind = "mse"

    def _element_scores(self, labels: Array, output: Array) -> Array:
        return super()._element_scores(labels, output) / output.shape[1]

    def _dlda(self, labels: Array, output: Array) -> Array:
        return super()._dlda(labels, output) / output.shape[1]


class LossKLD(LossFunction):
    """Kullback-Leibler divergence ``y * log(y / a)``.

    Both ``a`` and ``y`` are clipped to ``[EPS_THRESHOLD, 1]`` first.
    """

    kind = "kld"

    def _element_scores(self, labels: Array, output: Array) -> Array:
        a = np.clip(output, EPS_THRESHOLD, 1.0)
        y = np.clip(labels, EPS_THRESHOLD, 1.0)
        return y * np.log(y / a)

    def _dlda(self, labels: Array, output: Array) -> Array:
        a = np.clip(output, EPS_THRESHOLD, 1.0)
        y = np.clip(labels, EPS_THRESHOLD, 1.0)
        return -y / a


class LossMCXENT(LossFunction):
    """Multi-class cross-entropy ``-y * log(a)``."""

    kind = "mcxent"
    accepts_weights = True

    def _element_scores(self, labels: Array, output: Array) -> Array:
        return -labels * np.log(np.maximum(output, EPS_THRESHOLD))

    def _dlda(self, labels: Array, output: Array) -> Array:
        return -labels / np.maximum(output, EPS_THRESHOLD)


class LossBinaryXENT(LossFunction):
    """Binary cross-entropy over independent outputs."""

    kind = "xent"
    accepts_weights = True

    def _element_scores(self, labels: Array, output: Array) -> Array:
        a = np.clip(output, EPS_THRESHOLD, 1.0 - EPS_THRESHOLD)
        return -(labels * np.log(a) + (1.0 - labels) * np.log(1.0 - a))

    def _dlda(self, labels: Array, output: Array) -> Array:
        a = np.clip(output, EPS_THRESHOLD, 1.0 - EPS_THRESHOLD)
        return (a - labels) / (a * (1.0 - a))


class LossPoisson(LossFunction):
    """Poisson negative log-likelihood ``a - y * log(a)``."""

    kind = "poisson"

    def _element_scores(self, labels: Array, output: Array) -> Array:
        return output - labels * np.log(np.maximum(output, EPS_THRESHOLD))

    def _dlda(self, labels: Array, output: Array) -> Array:
        return 1.0 - labels / np.maximum(output, EPS_THRESHOLD)


class LossCosineProximity(LossFunction):
    """Negative cosine similarity between each label row and output row."""

    kind = "cosine_proximity"

    @staticmethod
    def _norms(labels: Array, output: Array) -> tuple[Array, Array]:
        y_norm = np.maximum(np.linalg.norm(labels, axis=1, keepdims=True), EPS_THRESHOLD)
        a_norm = np.maximum(np.linalg.norm(output, axis=1, keepdims=True), EPS_THRESHOLD)
        return y_norm, a_norm

    def _element_scores(self, labels: Array, output: Array) -> Array:
        y_norm, a_norm = self._norms(labels, output)
        return -(labels * output) / (y_norm * a_norm)

    def _dlda(self, labels: Array, output: Array) -> Array:
        y_norm, a_norm = self._norms(labels, output)
        a_norm_sq = a_norm * a_norm
        dot = np.sum(labels * output, axis=1, keepdims=True)
        dlda = labels * a_norm_sq - output * dot
        dlda /= y_norm * a_norm * a_norm_sq
        return -dlda


class LossHinge(LossFunction):
    """Hinge loss ``max(0, 1 - y * a)`` for labels in {-1, 1}."""

    kind = "hinge"
    masks_dlda = True

    def _element_scores(self, labels: Array, output: Array) -> Array:
        return np.maximum(1.0 - labels * output, 0.0)

    def _dlda(self, labels: Array, output: Array) -> Array:
        active = (1.0 - labels * output) > 0.0
        return np.where(active, -labels, 0.0)


class LossSquaredHinge(LossFunction):
    """Squared hinge loss ``max(0, 1 - y * a) ** 2`` for labels in {-1, 1}."""

    kind = "squared_hinge"
    masks_dlda = True

    def _element_scores(self, labels: Array, output: Array) -> Array:
        margin = np.maximum(1.0 - labels * output, 0.0)
        return margin * margin

    def _dlda(self, labels: Array, output: Array) -> Array:
        margin = 1.0 - labels * output
        active = (margin > 0.0).astype(np.float64)
        return -2.0 * labels * margin * active


class LossRegistry:
    """Central registry for loss functions."""

    def __init__(self) -> None:
        self._registry: Dict[str, Type[LossFunction]] = {}

    def register(self, name: str, loss_cls: Type[LossFunction]) -> None:
        self._registry[name] = loss_cls

    def get(self, name: str, weights: Optional[Array] = None) -> LossFunction:
        key = name.lower()
        if key not in self._registry:
            available = ", ".join(self.names())
            raise KeyError(f"Unknown loss {name!r}. Available losses: {available}")
        return self._registry[key](weights)

    def names(self) -> Iterable[str]:
        return sorted(self._registry)

    def kinds(self) -> Iterable[str]:
        """Canonical kinds, without aliases."""

        return sorted({cls.kind for cls in self._registry.values()})

    def resolve(
        self, name: str, *, task_type: str, weights: Optional[Array] = None
    ) -> LossFunction:
        if name == "auto":
            if task_type == "regression":
                name = "mse"
            elif task_type == "multiclass":
                name = "mcxent"
            elif task_type in {"binary", "multilabel"}:
                name = "xent"
            else:
                raise ValueError(f"Unknown task type: {task_type}")
        return self.get(name, weights)


def default_activation(task_type: str) -> ActivationFunction:
    """Output activation that pairs with the ``auto`` loss for ``task_type``."""

    if task_type == "regression":
        return get_activation("identity")
    if task_type == "multiclass":
        return get_activation("softmax")
    if task_type in {"binary", "multilabel"}:
        return get_activation("sigmoid")
    raise ValueError(f"Unknown task type: {task_type}")


REGISTRY = LossRegistry()

for _cls in (
    LossL1,
    LossL2,
    LossMAE,
    LossMSE,
    LossKLD,
    LossMCXENT,
    LossBinaryXENT,
    LossPoisson,
    LossCosineProximity,
    LossHinge,
    LossSquaredHinge,
):
    REGISTRY.register(_cls.kind, _cls)

# Aliases for parity with common framework naming
REGISTRY.register("ce", LossMCXENT)
REGISTRY.register("negativeloglikelihood", LossMCXENT)
REGISTRY.register("bce", LossBinaryXENT)
REGISTRY.register("bcewithlogits", LossBinaryXENT)
REGISTRY.register("kl_divergence", LossKLD)
REGISTRY.register("cosine", LossCosineProximity)

__all__ = [
    "LossBinaryXENT",
    "LossCosineProximity",
    "LossFunction",
    "LossHinge",
    "LossKLD",
    "LossL1",
    "LossL2",
    "LossMAE",
    "LossMCXENT",
    "LossMSE",
    "LossPoisson",
    "LossRegistry",
    "LossSquaredHinge",
    "REGISTRY",
    "default_activation",
]
