"""Core numerical primitives for lossgrad."""

from . import activations, types, weighting

__all__ = ["activations", "types", "weighting"]
