"""Learner configuration: validated dataclass and YAML loading."""

from __future__ import annotations

from dataclasses import MISSING, asdict, dataclass, fields
from pathlib import Path
from typing import Any

import numpy as np
import yaml

from .approximator import RESET_MODES
from .errors import ConfigurationError
from .interpolator import DEFAULT_SMOOTHING, available_interpolators

MAX_GRID_SIZE = 1_000_000


def load_config(path: str | Path) -> dict:
    """Load YAML config. Returns dict with optional 'learner', 'approximator' and 'task' keys."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@dataclass(frozen=True)
class LearnerConfig:
    state_dimensions: int
    action_dimensions: int
    number_of_wires: int
    min_action: tuple[float, ...]
    max_action: tuple[float, ...]
    base_of_dimensions: int = 5
    learning_rate: float = 0.5
    devaluation_factor: float = 0.9
    control_points_error_target: float = 0.001
    control_points_step_size: float = 0.1
    control_points_max_iterations: int = 10000
    ascent_step_size: float = 0.05
    ascent_max_iterations: int = 50
    max_grid_size: int = MAX_GRID_SIZE
    reset_mode: str = "random"
    interpolator: str = "wirefit"
    smoothing: float = DEFAULT_SMOOTHING

    def __post_init__(self) -> None:
        object.__setattr__(self, "min_action", tuple(float(v) for v in np.asarray(self.min_action).reshape(-1)))
        object.__setattr__(self, "max_action", tuple(float(v) for v in np.asarray(self.max_action).reshape(-1)))
        self._validate()

    def _validate(self) -> None:
        if self.state_dimensions < 1:
            raise ConfigurationError(f"state_dimensions must be >= 1, got {self.state_dimensions}")
        if self.action_dimensions < 1:
            raise ConfigurationError(f"action_dimensions must be >= 1, got {self.action_dimensions}")
        if self.number_of_wires < 1:
            raise ConfigurationError(f"number_of_wires must be >= 1, got {self.number_of_wires}")
        if len(self.min_action) != self.action_dimensions or len(self.max_action) != self.action_dimensions:
            raise ConfigurationError(
                f"min_action and max_action must have {self.action_dimensions} terms, "
                f"got {len(self.min_action)} and {len(self.max_action)}"
            )
        if any(lo > hi for lo, hi in zip(self.min_action, self.max_action)):
            raise ConfigurationError(f"min_action {self.min_action} exceeds max_action {self.max_action}")
        if self.base_of_dimensions < 2:
            raise ConfigurationError(f"base_of_dimensions must be >= 2, got {self.base_of_dimensions}")
        if self.max_grid_size < 1:
            raise ConfigurationError("max_grid_size must be >= 1")
        if self.base_of_dimensions ** self.action_dimensions > self.max_grid_size:
            raise ConfigurationError(
                f"Boltzmann grid of {self.base_of_dimensions}^{self.action_dimensions} actions "
                f"exceeds max_grid_size={self.max_grid_size}"
            )
        if not 0.0 <= self.learning_rate <= 1.0:
            raise ConfigurationError(f"learning_rate must be in [0, 1], got {self.learning_rate}")
        if not 0.0 <= self.devaluation_factor <= 1.0:
            raise ConfigurationError(f"devaluation_factor must be in [0, 1], got {self.devaluation_factor}")
        if self.control_points_error_target < 0.0:
            raise ConfigurationError("control_points_error_target must be >= 0")
        if self.control_points_step_size <= 0.0:
            raise ConfigurationError("control_points_step_size must be > 0")
        if self.control_points_max_iterations < 1:
            raise ConfigurationError("control_points_max_iterations must be >= 1")
        if self.ascent_step_size <= 0.0:
            raise ConfigurationError("ascent_step_size must be > 0")
        if self.ascent_max_iterations < 0:
            raise ConfigurationError("ascent_max_iterations must be >= 0")
        if self.reset_mode not in RESET_MODES:
            raise ConfigurationError(f"reset_mode must be one of {RESET_MODES}, got '{self.reset_mode}'")
        if self.interpolator.lower() not in available_interpolators():
            raise ConfigurationError(
                f"unknown interpolator '{self.interpolator}', expected one of: {', '.join(available_interpolators())}"
            )

    @property
    def output_dim(self) -> int:
        return self.number_of_wires * (self.action_dimensions + 1)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LearnerConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown learner config keys: {unknown}")
        required = {f.name for f in fields(cls) if f.default is MISSING}
        missing = sorted(required - set(data))
        if missing:
            raise ConfigurationError(f"missing learner config keys: {missing}")
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["min_action"] = list(self.min_action)
        out["max_action"] = list(self.max_action)
        return out
