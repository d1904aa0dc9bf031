"""Core typing contracts for lossgrad."""

from __future__ import annotations

from typing import Dict

import numpy as np

Array = np.ndarray

Gradients = Dict[str, Array]

# Clamp threshold applied before log/division of post-activation values.
EPS_THRESHOLD = 1e-5


class ConfigurationError(ValueError):
    """Raised when weights, masks or tensors do not fit the batch they are used with."""


def as_batch(x: Array, name: str) -> Array:
    """Return ``x`` as a 2-D float64 array without copying when possible."""

    arr = np.asarray(x, dtype=np.float64)
    if arr.ndim != 2:
        raise ConfigurationError(
            f"{name} must be 2-D (examples x features), got shape {arr.shape}"
        )
    return arr


__all__ = ["Array", "ConfigurationError", "EPS_THRESHOLD", "Gradients", "as_batch"]
