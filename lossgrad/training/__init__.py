"""Loss functions, configuration and gradient checking."""

from . import config, gradcheck, losses

__all__ = ["config", "gradcheck", "losses"]
