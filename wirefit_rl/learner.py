"""Wire-fitted Q-learning for continuous state and action vectors."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import numpy as np

from .approximator import Approximator, BackpropTrainer, MLPApproximator, Trainer
from .config import LearnerConfig
from .errors import ConfigurationError, DimensionMismatchError, InvalidSequenceError
from .interpolator import Interpolator, make_interpolator, stack_wires
from .types import ControlWireFit, LearnerPhase, Wire


class WireFitQLearn:
    """Q-learner that extends the tabular update to continuous spaces (Gaskett et al.).

    An approximator maps each state to ``number_of_wires`` control wires (action, reward);
    an interpolator blends them into a continuous reward surface over actions. Feedback for
    the last chosen action moves the wires by gradient descent and the trainer then fits
    the approximator to the moved wires.

    Calls must alternate: choose an action, then apply reinforcement for it. The learner is
    not thread-safe; callers sharing one instance across threads must serialize access.
    """

    MAX_BACKTRACKS = 30

    def __init__(
        self,
        config: LearnerConfig,
        approximator: Approximator,
        trainer: Trainer,
        interpolator: Interpolator | None = None,
        seed: int | None = None,
    ):
        if approximator.output_dim != config.output_dim:
            raise DimensionMismatchError(
                f"approximator must output {config.output_dim} values "
                f"({config.number_of_wires} wires x {config.action_dimensions + 1}), got {approximator.output_dim}"
            )
        bound = getattr(trainer, "approximator", approximator)
        if bound is not approximator:
            raise ConfigurationError("trainer is bound to a different approximator than the learner")
        self.config = config
        self.approximator = approximator
        self.trainer = trainer
        if interpolator is None:
            interpolator = make_interpolator(config.interpolator, smoothing=config.smoothing)
        self.interpolator = interpolator
        self.min_action = np.asarray(config.min_action, dtype=np.float64)
        self.max_action = np.asarray(config.max_action, dtype=np.float64)
        self.rng = np.random.default_rng(seed)

        self.phase = LearnerPhase.IDLE
        self.last_state: np.ndarray | None = None
        self.last_action: np.ndarray | None = None
        self.last_fit: ControlWireFit | None = None

    @property
    def state_dimensions(self) -> int:
        return self.config.state_dimensions

    @property
    def action_dimensions(self) -> int:
        return self.config.action_dimensions

    @property
    def number_of_wires(self) -> int:
        return self.config.number_of_wires

    # --- protocol

    def _check_state(self, state: Sequence[float] | np.ndarray) -> np.ndarray:
        arr = np.asarray(state, dtype=np.float64).reshape(-1)
        if arr.shape != (self.state_dimensions,):
            raise DimensionMismatchError(f"state must have shape ({self.state_dimensions},), got {arr.shape}")
        return arr

    def _check_action(self, action: Sequence[float] | np.ndarray) -> np.ndarray:
        arr = np.asarray(action, dtype=np.float64).reshape(-1)
        if arr.shape != (self.action_dimensions,):
            raise DimensionMismatchError(f"action must have shape ({self.action_dimensions},), got {arr.shape}")
        return arr

    def _require_idle(self, operation: str) -> None:
        if self.phase is not LearnerPhase.IDLE:
            raise InvalidSequenceError(
                f"{operation} called while feedback for the last action is outstanding; "
                "call apply_reinforcement_to_last_action or reset first"
            )

    def _remember(self, state: np.ndarray, action: np.ndarray) -> None:
        self.last_state = state.copy()
        self.last_action = action.copy()
        self.phase = LearnerPhase.AWAITING_FEEDBACK

    # --- wires

    def get_wires(self, state: Sequence[float] | np.ndarray) -> list[Wire]:
        """Feed ``state`` to the approximator and split its output into wires."""
        s = self._check_state(state)
        raw = np.asarray(self.approximator.predict(s), dtype=np.float64).reshape(-1)
        if raw.shape != (self.config.output_dim,):
            raise DimensionMismatchError(
                f"approximator output must have shape ({self.config.output_dim},), got {raw.shape}"
            )
        D = self.action_dimensions
        blocks = raw.reshape(self.number_of_wires, D + 1)
        return [Wire(action=block[:D].copy(), reward=float(block[D])) for block in blocks]

    def get_raw_output(self, wires: Sequence[Wire]) -> np.ndarray:
        """Inverse of ``get_wires``: flatten wires to the approximator's output layout."""
        if len(wires) != self.number_of_wires:
            raise DimensionMismatchError(f"expected {self.number_of_wires} wires, got {len(wires)}")
        actions, rewards = stack_wires(wires)
        if actions.shape[1] != self.action_dimensions:
            raise DimensionMismatchError(
                f"wire actions must have {self.action_dimensions} terms, got {actions.shape[1]}"
            )
        return np.concatenate([actions, rewards[:, None]], axis=1).reshape(-1)

    def action_grid(self, base_of_dimensions: int | None = None) -> np.ndarray:
        """Evenly spaced actions, ``base`` levels per dimension, last dimension fastest."""
        base = self.config.base_of_dimensions if base_of_dimensions is None else int(base_of_dimensions)
        if base < 2:
            raise ConfigurationError(f"base_of_dimensions must be >= 2, got {base}")
        if base ** self.action_dimensions > self.config.max_grid_size:
            raise ConfigurationError(
                f"Boltzmann grid of {base}^{self.action_dimensions} actions "
                f"exceeds max_grid_size={self.config.max_grid_size}"
            )
        levels = [np.linspace(lo, hi, base) for lo, hi in zip(self.min_action, self.max_action)]
        mesh = np.meshgrid(*levels, indexing="ij")
        return np.stack([m.reshape(-1) for m in mesh], axis=1)

    def get_set_of_wires(self, state: Sequence[float] | np.ndarray, base_of_dimensions: int | None = None) -> list[Wire]:
        """Label every grid action with its interpolated reward for ``state``."""
        grid = self.action_grid(base_of_dimensions)
        wires = self.get_wires(state)
        return [Wire(action=a, reward=self.interpolator.get_reward(wires, a)) for a in grid]

    # --- greedy

    def _ascend(self, wires: list[Wire], action: np.ndarray) -> tuple[np.ndarray, float]:
        # Projected ascent along the normalized gradient; rejected steps halve the step size.
        a = action
        q = self.interpolator.get_reward(wires, a)
        step = self.config.ascent_step_size
        for _ in range(self.config.ascent_max_iterations):
            grad = self.interpolator.action_gradient(wires, a)
            norm = float(np.linalg.norm(grad))
            if norm == 0.0 or not np.isfinite(norm):
                break
            candidate = np.clip(a + step * grad / norm, self.min_action, self.max_action)
            if np.array_equal(candidate, a):
                break
            candidate_q = self.interpolator.get_reward(wires, candidate)
            if candidate_q >= q:
                a, q = candidate, candidate_q
            else:
                step *= 0.5
        return a, q

    def _maximize(self, wires: list[Wire]) -> tuple[np.ndarray, float]:
        best_action: np.ndarray | None = None
        best_reward = -np.inf
        for wire in wires:
            seed = np.clip(wire.action, self.min_action, self.max_action)
            action, reward = self._ascend(wires, seed)
            if best_action is None or reward > best_reward:
                best_action, best_reward = action, reward
        return best_action, float(best_reward)

    def best_action(self, state: Sequence[float] | np.ndarray) -> np.ndarray:
        """Action with the highest interpolated reward inside the action bounds."""
        action, _ = self._maximize(self.get_wires(state))
        return action.copy()

    def highest_reward(self, state: Sequence[float] | np.ndarray) -> float:
        _, reward = self._maximize(self.get_wires(state))
        return reward

    def choose_best_action(self, state: Sequence[float] | np.ndarray) -> np.ndarray:
        s = self._check_state(state)
        self._require_idle("choose_best_action")
        action = self.best_action(s)
        self._remember(s, action)
        return action.copy()

    # --- Boltzmann

    def boltzmann_probabilities(
        self,
        state: Sequence[float] | np.ndarray,
        exploration_constant: float,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Grid actions and their softmax probabilities exp(reward / c) / sum(...)."""
        if not exploration_constant > 0.0:
            raise ConfigurationError(f"exploration_constant must be > 0, got {exploration_constant}")
        candidates = self.get_set_of_wires(state)
        actions = np.stack([w.action for w in candidates])
        rewards = np.array([w.reward for w in candidates], dtype=np.float64)
        # Shift before scaling: the best entry stays exactly 0, the gaps may overflow to -inf.
        with np.errstate(over="ignore"):
            z = (rewards - np.max(rewards)) / float(exploration_constant)
        exp = np.exp(z)
        return actions, exp / np.sum(exp)

    def choose_boltzmann_action(self, state: Sequence[float] | np.ndarray, exploration_constant: float) -> np.ndarray:
        """Sample a grid action; lower ``exploration_constant`` favours higher rewards."""
        s = self._check_state(state)
        self._require_idle("choose_boltzmann_action")
        actions, probs = self.boltzmann_probabilities(s, exploration_constant)
        idx = int(self.rng.choice(len(probs), p=probs))
        action = actions[idx]
        self._remember(s, action)
        return action.copy()

    choose_boltzman_action = choose_boltzmann_action

    # --- update

    def get_q_value(
        self,
        reward: float,
        new_state: Sequence[float] | np.ndarray,
        action: Sequence[float] | np.ndarray,
        control_wires: Sequence[Wire],
    ) -> float:
        """Blend the current estimate for ``action`` with reward plus devalued future reward."""
        old = self.interpolator.get_reward(control_wires, action)
        feedback = float(reward) + self.config.devaluation_factor * self.highest_reward(new_state)
        return (1.0 - self.config.learning_rate) * old + self.config.learning_rate * feedback

    def _squared_error(self, wires: Sequence[Wire], correct_wire: Wire) -> float:
        return (correct_wire.reward - self.interpolator.get_reward(wires, correct_wire.action)) ** 2

    def _step(
        self,
        wires: Sequence[Wire],
        residual: float,
        d_rewards: np.ndarray,
        d_actions: np.ndarray,
        scale: float,
        nearest: int | None,
        target_action: np.ndarray,
    ) -> list[Wire]:
        actions, rewards = stack_wires(wires)
        rewards = rewards + scale * residual * d_rewards
        actions = actions + scale * residual * d_actions
        if nearest is not None:
            actions[nearest] += scale * (target_action - actions[nearest])
        return [Wire(action=a, reward=r) for a, r in zip(actions, rewards)]

    def new_control_wires(self, correct_wire: Wire, control_wires: Sequence[Wire]) -> list[Wire]:
        """Move ``control_wires`` so the surface at ``correct_wire.action`` approaches its reward.

        Every step moves all wire rewards and action terms down the squared-error gradient
        and pulls the nearest wire toward the correct action. Steps that would raise the
        error drop the pull and are halved; when none helps the descent stops early. The
        outcome is stored in ``last_fit``.
        """
        target_action = self._check_action(correct_wire.action)
        target = float(correct_wire.reward)
        wires = [w.copy() for w in control_wires]
        step = self.config.control_points_step_size

        error = self._squared_error(wires, correct_wire)
        errors = [error]
        iterations = 0
        while error > self.config.control_points_error_target and iterations < self.config.control_points_max_iterations:
            residual = target - self.interpolator.get_reward(wires, target_action)
            d_rewards, d_actions = self.interpolator.gradients(wires, target_action)
            nearest = int(np.argmin(self.interpolator.distances(wires, target_action)))

            candidate = self._step(wires, residual, d_rewards, d_actions, step, nearest, target_action)
            candidate_error = self._squared_error(candidate, correct_wire)
            scale = step
            backtracks = 0
            while candidate_error > error and backtracks < self.MAX_BACKTRACKS:
                candidate = self._step(wires, residual, d_rewards, d_actions, scale, None, target_action)
                candidate_error = self._squared_error(candidate, correct_wire)
                scale *= 0.5
                backtracks += 1
            if candidate_error > error:
                break

            wires, error = candidate, candidate_error
            errors.append(error)
            iterations += 1

        self.last_fit = ControlWireFit(
            iterations=iterations,
            initial_error=errors[0],
            final_error=error,
            converged=error <= self.config.control_points_error_target,
            errors=errors,
        )
        return wires

    def apply_reinforcement_to_last_action(self, reward: float, new_state: Sequence[float] | np.ndarray) -> None:
        """Train the approximator toward the updated reward of the last chosen action."""
        if self.phase is not LearnerPhase.AWAITING_FEEDBACK:
            raise InvalidSequenceError("apply_reinforcement_to_last_action called before an action was chosen")
        s_new = self._check_state(new_state)

        control_wires = self.get_wires(self.last_state)
        target = self.get_q_value(reward, s_new, self.last_action, control_wires)
        fitted = self.new_control_wires(Wire(action=self.last_action, reward=target), control_wires)
        self.trainer.train(self.last_state, self.get_raw_output(fitted))

        self.last_state = None
        self.last_action = None
        self.phase = LearnerPhase.IDLE

    def reset(self) -> None:
        """Forget the pending action and reinitialize the approximator per ``config.reset_mode``."""
        self.last_state = None
        self.last_action = None
        self.last_fit = None
        self.phase = LearnerPhase.IDLE
        self.approximator.reset(self.config.reset_mode)


def build_learner(
    config: LearnerConfig,
    backend: str = "numpy",
    hidden_dim: int | None = None,
    hidden_layers: int | None = None,
    trainer_kwargs: dict[str, Any] | None = None,
    seed: int | None = None,
) -> WireFitQLearn:
    """Construct a learner with one of the bundled approximator/trainer pairs."""
    trainer_kwargs = trainer_kwargs or {}
    if backend == "numpy":
        approximator = MLPApproximator(
            input_dim=config.state_dimensions,
            output_dim=config.output_dim,
            hidden_dim=hidden_dim or 16,
            hidden_layers=1 if hidden_layers is None else hidden_layers,
            seed=seed,
        )
        trainer = BackpropTrainer(approximator, **trainer_kwargs)
    elif backend == "torch":
        from .approximator_torch import TorchMLPApproximator, TorchTrainer

        approximator = TorchMLPApproximator(
            input_dim=config.state_dimensions,
            output_dim=config.output_dim,
            hidden_dim=hidden_dim or 64,
            hidden_layers=2 if hidden_layers is None else hidden_layers,
            seed=seed,
        )
        trainer = TorchTrainer(approximator, **trainer_kwargs)
    else:
        raise ConfigurationError(f"backend must be one of: numpy, torch; got '{backend}'")
    return WireFitQLearn(config, approximator, trainer, seed=seed)
