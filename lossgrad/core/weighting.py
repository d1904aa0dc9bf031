"""Feature-weight, example-weight and mask scaling shared by every loss."""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from .types import Array, ConfigurationError


def _as_vector(x: Array, name: str) -> Array:
    arr = np.asarray(x, dtype=np.float64)
    if arr.ndim == 1:
        return arr
    if arr.ndim == 2 and 1 in arr.shape:
        return arr.reshape(-1)
    raise ConfigurationError(f"{name} must be a vector, got shape {arr.shape}")


def as_row_vector(x: Array, name: str = "weights") -> Array:
    """Return a read-only 1-D copy of a row-vector ``x``.

    A ``(n, 1)`` column with ``n > 1`` is rejected: feature weights index the
    feature axis and must be given as a row.
    """

    arr = np.array(x, dtype=np.float64)
    if arr.ndim == 2 and arr.shape[0] != 1:
        raise ConfigurationError(
            f"{name} array must be a row vector, got shape {arr.shape}"
        )
    if arr.ndim not in (1, 2) or arr.size == 0:
        raise ConfigurationError(
            f"{name} array must be a non-empty row vector, got shape {arr.shape}"
        )
    arr = arr.reshape(-1)
    arr.setflags(write=False)
    return arr


def as_column_vector(x: Array, name: str) -> Array:
    """Return ``x`` as a 1-D per-example vector (no copy when already 1-D float64)."""

    return _as_vector(x, name)


def _check_length(vector: Array, expected: int, name: str, dim: str) -> None:
    if vector.shape[0] != expected:
        raise ConfigurationError(
            f"{name} vector (length {vector.shape[0]}) does not match {dim} {expected}"
        )


def validate_weighting(
    shape: Sequence[int],
    feature_weights: Optional[Array] = None,
    example_weights: Optional[Array] = None,
    mask: Optional[Array] = None,
) -> None:
    """Check all scaling vectors against ``shape`` before any work starts."""

    batch, features = int(shape[0]), int(shape[1])
    if feature_weights is not None:
        _check_length(
            _as_vector(feature_weights, "feature weights"),
            features,
            "feature weights",
            "output feature size",
        )
    if example_weights is not None:
        _check_length(
            as_column_vector(example_weights, "example weights"),
            batch,
            "example weights",
            "batch size",
        )
    if mask is not None:
        _check_length(as_column_vector(mask, "mask"), batch, "mask", "batch size")


def apply_weighting(
    arr: Array,
    feature_weights: Optional[Array] = None,
    example_weights: Optional[Array] = None,
    mask: Optional[Array] = None,
) -> Array:
    """Scale ``arr`` in place by feature weight, then example weight, then mask.

    ``arr`` must be a scratch array owned by the caller. Each vector's length is
    checked right before it is applied, so a mismatch surfaces before that
    stage mutates anything. Returns ``arr``.
    """

    batch, features = arr.shape
    if feature_weights is not None:
        fw = _as_vector(feature_weights, "feature weights")
        _check_length(fw, features, "feature weights", "output feature size")
        arr *= fw.reshape(1, -1)
    if example_weights is not None:
        ew = as_column_vector(example_weights, "example weights")
        _check_length(ew, batch, "example weights", "batch size")
        arr *= ew.reshape(-1, 1)
    if mask is not None:
        arr = apply_mask(arr, mask)
    return arr


def apply_mask(arr: Array, mask: Optional[Array]) -> Array:
    """Multiply each row of ``arr`` in place by its mask entry."""

    if mask is None:
        return arr
    m = as_column_vector(mask, "mask")
    _check_length(m, arr.shape[0], "mask", "batch size")
    arr *= m.reshape(-1, 1)
    return arr


def combined_scale(
    shape: Sequence[int],
    feature_weights: Optional[Array] = None,
    example_weights: Optional[Array] = None,
) -> Optional[Array]:
    """Return the elementwise product of feature and example weights, or ``None``."""

    if feature_weights is None and example_weights is None:
        return None
    return apply_weighting(
        np.ones(tuple(shape), dtype=np.float64), feature_weights, example_weights
    )


__all__ = [
    "apply_mask",
    "apply_weighting",
    "as_column_vector",
    "as_row_vector",
    "combined_scale",
    "validate_weighting",
]
