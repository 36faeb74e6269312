"""Demonstration reward task used by the runner and the end-to-end tests."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from .errors import ConfigurationError, DimensionMismatchError

# Absorbs linspace rounding for grid actions sitting exactly on the band edge.
_BAND_SLACK = 1e-9


class TargetBandTask:
    """Fixed state; reward ``reward_inside`` when every action term is within ``tolerance`` of the target."""

    def __init__(
        self,
        state: Sequence[float],
        target: Sequence[float],
        tolerance: float = 0.05,
        reward_inside: float = 1.0,
        reward_outside: float = 0.0,
    ):
        if tolerance < 0.0:
            raise ConfigurationError(f"tolerance must be >= 0, got {tolerance}")
        self.state = np.asarray(state, dtype=np.float64).reshape(-1)
        self.target = np.asarray(target, dtype=np.float64).reshape(-1)
        self.tolerance = float(tolerance)
        self.reward_inside = float(reward_inside)
        self.reward_outside = float(reward_outside)

    def reset(self) -> np.ndarray:
        return self.state.copy()

    def in_band(self, action: Sequence[float] | np.ndarray) -> bool:
        a = np.asarray(action, dtype=np.float64).reshape(-1)
        if a.shape != self.target.shape:
            raise DimensionMismatchError(f"action must have shape {self.target.shape}, got {a.shape}")
        return bool(np.max(np.abs(a - self.target)) <= self.tolerance + _BAND_SLACK)

    def step(self, action: Sequence[float] | np.ndarray) -> tuple[float, np.ndarray]:
        reward = self.reward_inside if self.in_band(action) else self.reward_outside
        return reward, self.state.copy()
