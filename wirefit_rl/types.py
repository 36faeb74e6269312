"""Shared dataclasses for the wire-fitting pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

State = np.ndarray  # shape (state_dimensions,)
Action = np.ndarray  # shape (action_dimensions,)


@dataclass
class Wire:
    """Control point of the interpolated reward surface."""

    action: np.ndarray  # shape (action_dimensions,)
    reward: float

    def __post_init__(self) -> None:
        self.action = np.asarray(self.action, dtype=np.float64).reshape(-1)
        self.reward = float(self.reward)

    def copy(self) -> "Wire":
        return Wire(action=self.action.copy(), reward=self.reward)


class LearnerPhase(Enum):
    IDLE = "idle"
    AWAITING_FEEDBACK = "awaiting_feedback"


@dataclass
class ControlWireFit:
    """Outcome of one control-point gradient descent."""

    iterations: int
    initial_error: float
    final_error: float
    converged: bool
    errors: list[float] = field(default_factory=list)


@dataclass
class EpisodeResult:
    episode: int
    action: np.ndarray
    reward: float
    exploration_constant: float
