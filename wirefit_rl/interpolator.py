"""Interpolators that turn a sparse set of control wires into a continuous reward surface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Callable

import numpy as np

from .errors import ConfigurationError, DimensionMismatchError, NumericDegeneracyError
from .types import Wire

DEFAULT_SMOOTHING = 0.001
# Below this the queried action sits on a maximum-reward wire.
_COINCIDENT_DISTANCE = 1e-12


def stack_wires(wires: Sequence[Wire]) -> tuple[np.ndarray, np.ndarray]:
    """Return (actions[W, D], rewards[W]) for a non-empty wire set."""
    if len(wires) == 0:
        raise ValueError("control wires must not be empty")
    dims = {w.action.shape for w in wires}
    if len(dims) != 1:
        raise DimensionMismatchError(f"control wires have mixed action shapes: {sorted(dims)}")
    actions = np.stack([w.action for w in wires]).astype(np.float64)
    rewards = np.array([w.reward for w in wires], dtype=np.float64)
    return actions, rewards


def _as_action(action: Sequence[float] | np.ndarray, dim: int) -> np.ndarray:
    arr = np.asarray(action, dtype=np.float64).reshape(-1)
    if arr.shape != (dim,):
        raise DimensionMismatchError(f"action must have shape ({dim},), got {arr.shape}")
    return arr


def _index_of(wire: Wire, wires: Sequence[Wire]) -> int:
    for i, w in enumerate(wires):
        if w is wire:
            return i
    for i, w in enumerate(wires):
        if w.reward == wire.reward and np.array_equal(w.action, wire.action):
            return i
    raise ValueError("wire is not one of the control wires")


class Interpolator(ABC):
    """Reward surface over actions defined by control wires.

    Implementations provide the surface value and its partial derivatives with respect to
    each wire's reward and action terms. ``name`` is a stable tag used to select an
    interpolator from configuration.
    """

    @abstractmethod
    def get_reward(self, control_wires: Sequence[Wire], action: Sequence[float] | np.ndarray) -> float:
        ...

    @abstractmethod
    def reward_derivative(
        self,
        action: Sequence[float] | np.ndarray,
        wire: Wire,
        control_wires: Sequence[Wire],
    ) -> float:
        ...

    @abstractmethod
    def action_term_derivative(
        self,
        action_term: float,
        wire_action_term: float,
        action: Sequence[float] | np.ndarray,
        wire: Wire,
        control_wires: Sequence[Wire],
    ) -> float:
        ...

    @abstractmethod
    def name(self) -> str:
        ...

    def distances(self, control_wires: Sequence[Wire], action: Sequence[float] | np.ndarray) -> np.ndarray:
        actions, _ = stack_wires(control_wires)
        a = _as_action(action, actions.shape[1])
        diff = a - actions
        return np.sum(diff * diff, axis=1)

    def gradients(
        self,
        control_wires: Sequence[Wire],
        action: Sequence[float] | np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Partials of the surface at ``action``: (d/d reward [W], d/d wire action [W, D])."""
        actions, _ = stack_wires(control_wires)
        a = _as_action(action, actions.shape[1])
        d_rewards = np.zeros((len(control_wires),), dtype=np.float64)
        d_actions = np.zeros_like(actions)
        for j, wire in enumerate(control_wires):
            d_rewards[j] = self.reward_derivative(a, wire, control_wires)
            for k in range(a.size):
                d_actions[j, k] = self.action_term_derivative(a[k], wire.action[k], a, wire, control_wires)
        return d_rewards, d_actions

    def action_gradient(self, control_wires: Sequence[Wire], action: Sequence[float] | np.ndarray) -> np.ndarray:
        """Gradient of the surface with respect to the queried action.

        Valid for surfaces that depend on ``action - wire.action`` only, where moving the
        action is the same as moving every wire the opposite way.
        """
        _, d_actions = self.gradients(control_wires, action)
        return -np.sum(d_actions, axis=0)


class WireFitInterpolator(Interpolator):
    """Baird & Klopf wire-fitting: inverse-distance blend biased toward high-reward wires.

    distance_i = |a - a_i|^2 + smoothing * (max_reward - q_i), weight_i = 1 / distance_i and
    the surface is the weighted mean of the wire rewards. The surface never leaves the range
    of the wire rewards and peaks exactly on the highest wire.
    """

    def __init__(self, smoothing: float = DEFAULT_SMOOTHING):
        if not smoothing > 0.0:
            raise NumericDegeneracyError(f"smoothing must be > 0, got {smoothing}")
        self.smoothing = float(smoothing)

    def name(self) -> str:
        return "wirefit"

    def _distances(self, actions: np.ndarray, rewards: np.ndarray, action: np.ndarray) -> np.ndarray:
        diff = action - actions
        return np.sum(diff * diff, axis=1) + self.smoothing * (np.max(rewards) - rewards)

    def _surface(
        self,
        actions: np.ndarray,
        rewards: np.ndarray,
        action: np.ndarray,
    ) -> tuple[int, np.ndarray, float, float]:
        """Returns (coincident wire or -1, weights, normalization, reward)."""
        dist = self._distances(actions, rewards, action)
        hit = np.flatnonzero(dist < _COINCIDENT_DISTANCE)
        if hit.size:
            j = int(hit[0])
            return j, np.zeros_like(dist), 0.0, float(rewards[j])
        weights = 1.0 / dist
        norm = float(np.sum(weights))
        return -1, weights, norm, float(np.dot(weights, rewards) / norm)

    def distances(self, control_wires: Sequence[Wire], action: Sequence[float] | np.ndarray) -> np.ndarray:
        actions, rewards = stack_wires(control_wires)
        return self._distances(actions, rewards, _as_action(action, actions.shape[1]))

    def get_reward(self, control_wires: Sequence[Wire], action: Sequence[float] | np.ndarray) -> float:
        actions, rewards = stack_wires(control_wires)
        _, _, _, q = self._surface(actions, rewards, _as_action(action, actions.shape[1]))
        return q

    def gradients(
        self,
        control_wires: Sequence[Wire],
        action: Sequence[float] | np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        actions, rewards = stack_wires(control_wires)
        a = _as_action(action, actions.shape[1])
        hit, w, norm, q = self._surface(actions, rewards, a)
        if hit >= 0:
            d_rewards = np.zeros_like(rewards)
            d_rewards[hit] = 1.0
            return d_rewards, np.zeros_like(actions)

        # Each q_j enters its own distance with -smoothing; the arg-max wire also shifts
        # every distance through max_reward.
        spread = (w * w) * (rewards - q)
        d_rewards = (w + self.smoothing * spread) / norm
        top = int(np.argmax(rewards))
        d_rewards[top] -= self.smoothing * float(np.sum(spread)) / norm

        d_actions = 2.0 * (spread / norm)[:, None] * (a - actions)
        return d_rewards, d_actions

    def reward_derivative(
        self,
        action: Sequence[float] | np.ndarray,
        wire: Wire,
        control_wires: Sequence[Wire],
    ) -> float:
        j = _index_of(wire, control_wires)
        d_rewards, _ = self.gradients(control_wires, action)
        return float(d_rewards[j])

    def action_term_derivative(
        self,
        action_term: float,
        wire_action_term: float,
        action: Sequence[float] | np.ndarray,
        wire: Wire,
        control_wires: Sequence[Wire],
    ) -> float:
        j = _index_of(wire, control_wires)
        actions, rewards = stack_wires(control_wires)
        hit, w, norm, q = self._surface(actions, rewards, _as_action(action, actions.shape[1]))
        if hit >= 0:
            return 0.0
        return float(2.0 * w[j] * w[j] * (action_term - wire_action_term) * (rewards[j] - q) / norm)


_REGISTRY: dict[str, Callable[..., Interpolator]] = {
    "wirefit": WireFitInterpolator,
}


def available_interpolators() -> list[str]:
    return sorted(_REGISTRY)


def make_interpolator(name: str, **kwargs: Any) -> Interpolator:
    """Build an interpolator from its ``name`` tag."""
    try:
        factory = _REGISTRY[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"unknown interpolator '{name}', expected one of: {', '.join(available_interpolators())}"
        ) from None
    return factory(**kwargs)
