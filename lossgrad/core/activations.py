"""Activation functions and their chain-rule backward passes.

Every ``forward`` returns a fresh array and leaves its input untouched, so
callers may pass labels or pre-activation buffers they still own. Derivatives
are always evaluated at the pre-activation input ``z`` rather than at a cached
post-activation value.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Dict, Iterable, Optional, Protocol, Type

import numpy as np

from .types import Array, ConfigurationError, Gradients, as_batch


class FusedLossHook(Protocol):
    """Closed-form loss/activation pair that bypasses the generic chain rule."""

    def element_scores(self, labels: Array, pre_output: Array) -> Array:
        """Return the unweighted per-element loss computed directly from ``z``."""

    def gradient(
        self, labels: Array, pre_output: Array, scale: Optional[Array]
    ) -> Array:
        """Return dL/dz with the feature/example ``scale`` folded in (no mask)."""


class ActivationFunction(Protocol):
    """Protocol implemented by every activation function."""

    name: ClassVar[str]

    def forward(self, z: Array, training: bool = True) -> Array:
        """Return the post-activation values for ``z``."""

    def gradient_component(self, z: Array) -> Array:
        """Return the elementwise derivative evaluated at ``z``."""

    def backprop(self, z: Array, dlda: Array) -> tuple[Array, Gradients]:
        """Convert dL/da into dL/dz; the second element holds parameter gradients."""

    def fused_hook(self, loss_kind: str) -> Optional[FusedLossHook]:
        """Return a fused shortcut for ``loss_kind`` if this activation has one."""


def _check_pair(z: Array, dlda: Array) -> tuple[Array, Array]:
    z = as_batch(z, "pre_output")
    dlda = as_batch(dlda, "dL/da")
    if z.shape != dlda.shape:
        raise ConfigurationError(
            f"dL/da shape {dlda.shape} does not match pre_output shape {z.shape}"
        )
    return z, dlda


@dataclass(frozen=True)
class _Elementwise:
    """Base for activations whose Jacobian is diagonal."""

    name: ClassVar[str] = ""

    def forward(self, z: Array, training: bool = True) -> Array:
        raise NotImplementedError

    def gradient_component(self, z: Array) -> Array:
        raise NotImplementedError

    def backprop(self, z: Array, dlda: Array) -> tuple[Array, Gradients]:
        z, dlda = _check_pair(z, dlda)
        # No activation here carries trainable parameters.
        return dlda * self.gradient_component(z), {}

    def fused_hook(self, loss_kind: str) -> Optional[FusedLossHook]:
        return None


@dataclass(frozen=True)
class Identity(_Elementwise):
    """Pass-through activation (``a = z``)."""

    name: ClassVar[str] = "identity"

    def forward(self, z: Array, training: bool = True) -> Array:
        return np.array(z, dtype=np.float64)

    def gradient_component(self, z: Array) -> Array:
        return np.ones_like(np.asarray(z, dtype=np.float64))


def sigmoid(z: Array) -> Array:
    """Overflow-free logistic function."""

    return np.exp(-np.logaddexp(0.0, -np.asarray(z, dtype=np.float64)))


class _SigmoidBinaryXent:
    """Sigmoid + binary cross-entropy computed from the logits."""

    def element_scores(self, labels: Array, pre_output: Array) -> Array:
        z = pre_output
        return np.maximum(z, 0.0) - z * labels + np.log1p(np.exp(-np.abs(z)))

    def gradient(
        self, labels: Array, pre_output: Array, scale: Optional[Array]
    ) -> Array:
        grad = sigmoid(pre_output) - labels
        if scale is not None:
            grad *= scale
        return grad


@dataclass(frozen=True)
class Sigmoid(_Elementwise):
    name: ClassVar[str] = "sigmoid"

    def forward(self, z: Array, training: bool = True) -> Array:
        return sigmoid(z)

    def gradient_component(self, z: Array) -> Array:
        s = sigmoid(z)
        return s * (1.0 - s)

    def fused_hook(self, loss_kind: str) -> Optional[FusedLossHook]:
        if loss_kind == "xent":
            return _SigmoidBinaryXent()
        return None


@dataclass(frozen=True)
class TanH(_Elementwise):
    name: ClassVar[str] = "tanh"

    def forward(self, z: Array, training: bool = True) -> Array:
        return np.tanh(np.asarray(z, dtype=np.float64))

    def gradient_component(self, z: Array) -> Array:
        t = np.tanh(np.asarray(z, dtype=np.float64))
        return 1.0 - t * t


@dataclass(frozen=True)
class ReLU(_Elementwise):
    name: ClassVar[str] = "relu"

    def forward(self, z: Array, training: bool = True) -> Array:
        return np.maximum(np.asarray(z, dtype=np.float64), 0.0)

    def gradient_component(self, z: Array) -> Array:
        return (np.asarray(z) > 0).astype(np.float64)


@dataclass(frozen=True)
class LeakyReLU(_Elementwise):
    name: ClassVar[str] = "leakyrelu"
    alpha: float = 0.01

    def forward(self, z: Array, training: bool = True) -> Array:
        z = np.asarray(z, dtype=np.float64)
        return np.where(z > 0, z, self.alpha * z)

    def gradient_component(self, z: Array) -> Array:
        return np.where(np.asarray(z) > 0, 1.0, self.alpha)


@dataclass(frozen=True)
class SoftPlus(_Elementwise):
    name: ClassVar[str] = "softplus"

    def forward(self, z: Array, training: bool = True) -> Array:
        return np.logaddexp(0.0, np.asarray(z, dtype=np.float64))

    def gradient_component(self, z: Array) -> Array:
        return sigmoid(z)


@dataclass(frozen=True)
class HardTanh(_Elementwise):
    name: ClassVar[str] = "hardtanh"

    def forward(self, z: Array, training: bool = True) -> Array:
        return np.clip(np.asarray(z, dtype=np.float64), -1.0, 1.0)

    def gradient_component(self, z: Array) -> Array:
        return (np.abs(np.asarray(z)) < 1.0).astype(np.float64)


def softmax(z: Array) -> Array:
    """Row-wise softmax with max-shift."""

    shifted = z - np.max(z, axis=1, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=1, keepdims=True)


def log_softmax(z: Array) -> Array:
    """Row-wise log-softmax without forming ``log(softmax(z))``."""

    shifted = z - np.max(z, axis=1, keepdims=True)
    return shifted - np.log(np.sum(np.exp(shifted), axis=1, keepdims=True))


class _SoftmaxMulticlassXent:
    """Softmax + multi-class cross-entropy.

    With ``t = y * scale`` the composed gradient is ``a * sum_j(t_j) - t``,
    which reduces to ``a - y`` for unweighted probability labels.
    """

    def element_scores(self, labels: Array, pre_output: Array) -> Array:
        return -labels * log_softmax(pre_output)

    def gradient(
        self, labels: Array, pre_output: Array, scale: Optional[Array]
    ) -> Array:
        temp = labels if scale is None else labels * scale
        a = softmax(pre_output)
        return a * np.sum(temp, axis=1, keepdims=True) - temp


@dataclass(frozen=True)
class Softmax:
    """Row-wise softmax.

    ``fuse=False`` disables the cross-entropy shortcut so the generic
    Jacobian-vector product path is used instead.
    """

    name: ClassVar[str] = "softmax"
    fuse: bool = True

    def forward(self, z: Array, training: bool = True) -> Array:
        return softmax(as_batch(z, "pre_output"))

    def gradient_component(self, z: Array) -> Array:
        # Diagonal of the Jacobian only; backprop applies the full product.
        a = self.forward(z)
        return a * (1.0 - a)

    def backprop(self, z: Array, dlda: Array) -> tuple[Array, Gradients]:
        z, dlda = _check_pair(z, dlda)
        a = softmax(z)
        inner = np.sum(dlda * a, axis=1, keepdims=True)
        return a * (dlda - inner), {}

    def fused_hook(self, loss_kind: str) -> Optional[FusedLossHook]:
        if self.fuse and loss_kind == "mcxent":
            return _SoftmaxMulticlassXent()
        return None


_ACTIVATIONS: Dict[str, Type] = {
    "identity": Identity,
    "linear": Identity,
    "sigmoid": Sigmoid,
    "tanh": TanH,
    "softmax": Softmax,
    "relu": ReLU,
    "leakyrelu": LeakyReLU,
    "leaky_relu": LeakyReLU,
    "softplus": SoftPlus,
    "hardtanh": HardTanh,
}


def activation_names() -> Iterable[str]:
    return sorted(_ACTIVATIONS)


def get_activation(name: str, **params: object) -> ActivationFunction:
    """Instantiate the activation registered under ``name``."""

    key = name.lower()
    if key not in _ACTIVATIONS:
        available = ", ".join(activation_names())
        raise KeyError(f"Unknown activation {name!r}. Available activations: {available}")
    return _ACTIVATIONS[key](**params)


__all__ = [
    "ActivationFunction",
    "FusedLossHook",
    "HardTanh",
    "Identity",
    "LeakyReLU",
    "ReLU",
    "Sigmoid",
    "SoftPlus",
    "Softmax",
    "TanH",
    "activation_names",
    "get_activation",
    "log_softmax",
    "sigmoid",
    "softmax",
]
