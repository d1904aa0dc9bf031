"""Configuration loading and persisted loss state.

Only a loss's optional feature-weight vector is ever persisted, as a flat list
of floats. Loading rebuilds the row vector but does not check its length: the
output width is unknown until a batch arrives, and every loss call validates
it then.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Union

import numpy as np
import yaml

from ..core.activations import ActivationFunction, get_activation
from ..core.types import Array
from .losses import REGISTRY, LossFunction, default_activation

logger = logging.getLogger(__name__)

ConfigLike = Union[str, Mapping[str, object]]


def loss_to_config(loss: LossFunction) -> dict:
    config: dict = {"name": loss.kind}
    if loss.weights is not None:
        config["weights"] = [float(w) for w in loss.weights]
    return config


def loss_from_config(config: ConfigLike, *, task_type: Optional[str] = None) -> LossFunction:
    """Rebuild a loss from a name or a ``{"name": ..., "weights": [...]}`` mapping."""

    if isinstance(config, str):
        name, weights = config, None
    else:
        name = str(config["name"])
        weights = config.get("weights")
    if weights is not None:
        weights = np.asarray(weights, dtype=np.float64).reshape(1, -1)
    if name == "auto":
        if task_type is None:
            raise ValueError("Loss 'auto' requires a task_type")
        return REGISTRY.resolve(name, task_type=task_type, weights=weights)
    return REGISTRY.get(name, weights)


def dumps_loss(loss: LossFunction) -> str:
    return json.dumps(loss_to_config(loss), sort_keys=True)


def loads_loss(text: str) -> LossFunction:
    return loss_from_config(json.loads(text))


def activation_to_config(activation: ActivationFunction) -> dict:
    config: dict = {"name": activation.name}
    if dataclasses.is_dataclass(activation):
        config.update(dataclasses.asdict(activation))
    return config


def activation_from_config(
    config: ConfigLike, *, task_type: Optional[str] = None
) -> ActivationFunction:
    if isinstance(config, str):
        name, params = config, {}
    else:
        params = {k: v for k, v in config.items() if k != "name"}
        name = str(config["name"])
    if name == "auto":
        if task_type is None:
            raise ValueError("Activation 'auto' requires a task_type")
        return default_activation(task_type)
    return get_activation(name, **params)


@dataclass(frozen=True)
class Objective:
    """A loss paired with the output activation it is evaluated through."""

    loss: LossFunction
    activation: ActivationFunction
    average: bool = True

    def score(
        self,
        labels: Array,
        pre_output: Array,
        mask: Optional[Array] = None,
        example_weights: Optional[Array] = None,
    ) -> float:
        return self.loss.score(
            labels, pre_output, self.activation, mask, example_weights, self.average
        )

    def gradient(
        self,
        labels: Array,
        pre_output: Array,
        mask: Optional[Array] = None,
        example_weights: Optional[Array] = None,
    ) -> Array:
        return self.loss.gradient(labels, pre_output, self.activation, mask, example_weights)

    def score_and_gradient(
        self,
        labels: Array,
        pre_output: Array,
        mask: Optional[Array] = None,
        example_weights: Optional[Array] = None,
    ) -> tuple[float, Array]:
        return self.loss.score_and_gradient(
            labels, pre_output, self.activation, mask, example_weights, self.average
        )

    def to_config(self) -> dict:
        return {
            "loss": loss_to_config(self.loss),
            "activation": activation_to_config(self.activation),
            "average": self.average,
        }


def read_config_file(path: Union[str, Path]) -> Mapping[str, object]:
    """Read a JSON or YAML mapping from ``path``."""

    path = Path(path)
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text or "{}")
    else:
        raise ValueError(f"Unsupported config file type: {path.suffix}")

    if not isinstance(data, Mapping):
        raise TypeError(f"Config {path.name} must decode to a mapping")
    logger.debug("Loaded config from %s", path)
    return data


def load_objective(source: Union[str, Path, Mapping[str, object]]) -> Objective:
    """Build an :class:`Objective` from a config mapping or a JSON/YAML file."""

    config = source if isinstance(source, Mapping) else read_config_file(source)
    if "loss" not in config:
        raise KeyError("Objective config is missing required key: loss")
    task_type = config.get("task_type")
    task_type = str(task_type) if task_type is not None else None
    loss = loss_from_config(config["loss"], task_type=task_type)  # type: ignore[arg-type]
    activation = activation_from_config(
        config.get("activation", "auto" if task_type else "identity"),  # type: ignore[arg-type]
        task_type=task_type,
    )
    return Objective(loss=loss, activation=activation, average=bool(config.get("average", True)))


def _normalise(value):  # type: ignore[override]
    if isinstance(value, Mapping):
        return {str(k): _normalise(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalise(v) for v in value]
    if isinstance(value, np.ndarray):
        return _normalise(value.tolist())
    if isinstance(value, Path):
        return str(value)
    return value


def config_hash(config: Mapping[str, object]) -> str:
    """Return a stable 12-character hash for ``config``."""

    canonical = json.dumps(_normalise(config), sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return digest[:12]


__all__ = [
    "Objective",
    "activation_from_config",
    "activation_to_config",
    "config_hash",
    "dumps_loss",
    "load_objective",
    "loads_loss",
    "loss_from_config",
    "loss_to_config",
    "read_config_file",
]
