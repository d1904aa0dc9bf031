"""lossgrad public API."""

from .core import activations  # noqa: F401
from .core import types  # noqa: F401
from .core.activations import get_activation
from .core.types import EPS_THRESHOLD, ConfigurationError
from .training.config import Objective, load_objective, loss_from_config, loss_to_config
from .training.gradcheck import check_gradient
from .training.losses import REGISTRY, LossFunction, default_activation

__all__ = [
    "ConfigurationError",
    "EPS_THRESHOLD",
    "LossFunction",
    "Objective",
    "REGISTRY",
    "activations",
    "check_gradient",
    "default_activation",
    "get_activation",
    "load_objective",
    "loss_from_config",
    "loss_to_config",
    "types",
]
