"""Train a wire-fitted Q-learner on the target-band task with Boltzmann exploration."""

from __future__ import annotations

import argparse
from datetime import datetime
from pathlib import Path
from typing import Any

import numpy as np
from torch.utils.tensorboard import SummaryWriter
from tqdm import tqdm

from .config import LearnerConfig, load_config
from .errors import ConfigurationError
from .learner import WireFitQLearn, build_learner
from .tasks import TargetBandTask
from .types import EpisodeResult

DEFAULT_LEARNER: dict[str, Any] = {
    "state_dimensions": 1,
    "action_dimensions": 1,
    "number_of_wires": 3,
    "min_action": [0.0],
    "max_action": [1.0],
    "base_of_dimensions": 5,
    "learning_rate": 0.5,
    "devaluation_factor": 0.0,
    "control_points_max_iterations": 1000,
}
DEFAULT_TASK: dict[str, Any] = {"state": [0.5], "target": [0.8], "tolerance": 0.05}
DEFAULT_APPROXIMATOR: dict[str, Any] = {"backend": "numpy", "hidden_dim": None, "hidden_layers": None, "trainer": {}}

# argparse dest -> learner config key
_LEARNER_FLAGS = {
    "wires": "number_of_wires",
    "base": "base_of_dimensions",
    "learning_rate": "learning_rate",
    "devaluation_factor": "devaluation_factor",
    "gd_error_target": "control_points_error_target",
    "gd_step_size": "control_points_step_size",
    "gd_max_iterations": "control_points_max_iterations",
    "min_action": "min_action",
    "max_action": "max_action",
    "reset_mode": "reset_mode",
    "interpolator": "interpolator",
    "smoothing": "smoothing",
}


def resolve_settings(args: argparse.Namespace) -> tuple[LearnerConfig, dict[str, Any], dict[str, Any]]:
    """Merge defaults, the optional YAML file and command line flags (flags win)."""
    file_cfg = load_config(args.config) if getattr(args, "config", None) else {}
    learner = {**DEFAULT_LEARNER, **file_cfg.get("learner", {})}
    task = {**DEFAULT_TASK, **file_cfg.get("task", {})}
    approximator = {**DEFAULT_APPROXIMATOR, **file_cfg.get("approximator", {})}

    for dest, key in _LEARNER_FLAGS.items():
        value = getattr(args, dest, None)
        if value is not None:
            learner[key] = value
    if getattr(args, "task_state", None) is not None:
        task["state"] = args.task_state
    if getattr(args, "task_target", None) is not None:
        task["target"] = args.task_target
    if getattr(args, "task_tolerance", None) is not None:
        task["tolerance"] = args.task_tolerance
    if getattr(args, "backend", None) is not None:
        approximator["backend"] = args.backend
    if getattr(args, "hidden_dim", None) is not None:
        approximator["hidden_dim"] = args.hidden_dim
    if getattr(args, "hidden_layers", None) is not None:
        approximator["hidden_layers"] = args.hidden_layers
    trainer = dict(approximator.get("trainer") or {})
    if getattr(args, "trainer_lr", None) is not None:
        trainer["learning_rate"] = args.trainer_lr
    if getattr(args, "trainer_epochs", None) is not None:
        trainer["max_epochs"] = args.trainer_epochs
    approximator["trainer"] = trainer

    learner["state_dimensions"] = len(task["state"])
    learner["action_dimensions"] = len(task["target"])
    return LearnerConfig.from_dict(learner), approximator, task


class WireFitRunner:
    def __init__(self, args: argparse.Namespace):
        self.args = args
        if args.episodes < 0:
            raise ConfigurationError("--episodes must be >= 0")
        if not 0.0 < args.exploration_min <= args.exploration_start:
            raise ConfigurationError("require 0 < --exploration-min <= --exploration-start")
        if not 0.0 < args.exploration_decay <= 1.0:
            raise ConfigurationError("--exploration-decay must be in (0, 1]")

        self.config, approx_cfg, task_cfg = resolve_settings(args)
        self.backend = approx_cfg["backend"]
        self.learner: WireFitQLearn = build_learner(
            self.config,
            backend=self.backend,
            hidden_dim=approx_cfg.get("hidden_dim"),
            hidden_layers=approx_cfg.get("hidden_layers"),
            trainer_kwargs=approx_cfg.get("trainer"),
            seed=args.seed,
        )
        self.task = TargetBandTask(**task_cfg)

        self.run_timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.exp_name = getattr(args, "exp_name", None)
        if self.exp_name:
            self.tb_logdir = str(Path(args.tensorboard_logdir) / self.exp_name / f"run_{self.run_timestamp}")
        else:
            self.tb_logdir = str(Path(args.tensorboard_logdir) / f"run_{self.run_timestamp}")
        self.tb_writer: SummaryWriter | None = None
        self._episode_bar: tqdm | None = None

        self._log(
            "runner_init "
            f"episodes={args.episodes} wires={self.config.number_of_wires} "
            f"state_dims={self.config.state_dimensions} action_dims={self.config.action_dimensions} "
            f"base={self.config.base_of_dimensions} lr={self.config.learning_rate} "
            f"devaluation={self.config.devaluation_factor} backend={self.backend} "
            f"interpolator={self.learner.interpolator.name()} reset_mode={self.config.reset_mode} "
            f"exploration={args.exploration_start}->{args.exploration_min} decay={args.exploration_decay} "
            f"tensorboard_logdir={self.tb_logdir}"
        )

    def _log(self, message: str) -> None:
        ts = datetime.now().strftime("%H:%M:%S")
        text = f"[{ts}] {message}"
        if self._episode_bar is not None:
            self._episode_bar.write(text)
        else:
            print(text, flush=True)

    def exploration_constant(self, episode: int) -> float:
        value = self.args.exploration_start * self.args.exploration_decay ** episode
        return float(max(self.args.exploration_min, value))

    def run_episode(self, episode: int) -> EpisodeResult:
        state = self.task.reset()
        c = self.exploration_constant(episode)
        action = self.learner.choose_boltzmann_action(state, c)
        reward, new_state = self.task.step(action)
        self.learner.apply_reinforcement_to_last_action(reward, new_state)
        return EpisodeResult(episode=episode, action=action, reward=reward, exploration_constant=c)

    def run(self) -> list[EpisodeResult]:
        results: list[EpisodeResult] = []
        total = int(self.args.episodes)
        reward_sum = 0.0
        self.tb_writer = SummaryWriter(log_dir=self.tb_logdir)
        if self.exp_name:
            self.tb_writer.add_text("meta/exp_name", self.exp_name, 0)

        try:
            self._episode_bar = tqdm(
                total=total,
                desc="wire-fit episodes",
                unit="ep",
                mininterval=1.0,
                maxinterval=5.0,
                disable=getattr(self.args, "progress", "on") == "off",
            )
            for episode in range(total):
                result = self.run_episode(episode)
                results.append(result)
                reward_sum += result.reward
                fit = self.learner.last_fit

                self.tb_writer.add_scalar("train/reward", result.reward, episode)
                self.tb_writer.add_scalar("train/exploration_constant", result.exploration_constant, episode)
                if fit is not None:
                    self.tb_writer.add_scalar("train/control_fit_error", fit.final_error, episode)
                    self.tb_writer.add_scalar("train/control_fit_iterations", fit.iterations, episode)

                if self.args.log_interval > 0 and (episode + 1) % self.args.log_interval == 0:
                    state = self.task.reset()
                    best = self.learner.best_action(state)
                    highest = self.learner.highest_reward(state)
                    for i, value in enumerate(best):
                        self.tb_writer.add_scalar(f"train/best_action_{i}", float(value), episode)
                    self.tb_writer.add_scalar("train/highest_reward", highest, episode)
                    self._log(
                        "episode_stats "
                        f"episode={episode + 1} mean_reward={reward_sum / (episode + 1):.3f} "
                        f"exploration={result.exploration_constant:.4f} "
                        f"best_action={np.array2string(best, precision=3)} highest_reward={highest:.3f} "
                        f"fit_iterations={fit.iterations if fit else 0} "
                        f"fit_error={fit.final_error if fit else float('nan'):.5f}"
                    )

                self._episode_bar.update(1)
                self._episode_bar.set_postfix(
                    {
                        "c": f"{result.exploration_constant:.3f}",
                        "ret": f"{result.reward:.1f}",
                        "mean": f"{reward_sum / (episode + 1):.2f}",
                    }
                )
        finally:
            self.tb_writer.flush()
            self.tb_writer.close()
            if self._episode_bar is not None:
                self._episode_bar.close()
                self._episode_bar = None

        state = self.task.reset()
        self._log(
            "runner_done "
            f"episodes={total} mean_reward={reward_sum / max(total, 1):.3f} "
            f"best_action={np.array2string(self.learner.best_action(state), precision=3)}"
        )
        return results


def add_common_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", default=None, help="Optional YAML file with learner/approximator/task sections")
    p.add_argument("--backend", default=None, choices=["numpy", "torch"])
    p.add_argument("--hidden-dim", type=int, default=None)
    p.add_argument("--hidden-layers", type=int, default=None, help="Hidden layers of the approximator network")
    p.add_argument("--trainer-lr", type=float, default=None)
    p.add_argument("--trainer-epochs", type=int, default=None)
    p.add_argument("--wires", type=int, default=None)
    p.add_argument("--base", type=int, default=None, help="Grid levels per action dimension for Boltzmann sampling")
    p.add_argument("--learning-rate", type=float, default=None)
    p.add_argument("--devaluation-factor", type=float, default=None)
    p.add_argument("--gd-error-target", type=float, default=None)
    p.add_argument("--gd-step-size", type=float, default=None)
    p.add_argument("--gd-max-iterations", type=int, default=None)
    p.add_argument("--min-action", type=float, nargs="+", default=None)
    p.add_argument("--max-action", type=float, nargs="+", default=None)
    p.add_argument("--reset-mode", default=None, choices=["random", "zeros", "initial"])
    p.add_argument("--interpolator", default=None)
    p.add_argument("--smoothing", type=float, default=None)
    p.add_argument("--task-state", type=float, nargs="+", default=None)
    p.add_argument("--task-target", type=float, nargs="+", default=None)
    p.add_argument("--task-tolerance", type=float, default=None)
    p.add_argument("--exploration-start", type=float, default=1.0)
    p.add_argument("--exploration-min", type=float, default=0.05)
    p.add_argument("--exploration-decay", type=float, default=0.99)
    p.add_argument("--tensorboard-logdir", default="runs/wirefit")
    p.add_argument("--exp-name", type=str, default=None, help="Optional experiment name for TensorBoard log grouping")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--log-interval", type=int, default=50)
    p.add_argument("--progress", default="on", choices=["on", "off"])


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Train a wire-fitted Q-learner on the target-band task")
    p.add_argument("--episodes", type=int, default=500)
    add_common_arguments(p)
    return p


def main() -> None:
    args = build_parser().parse_args()
    runner = WireFitRunner(args)
    runner.run()


if __name__ == "__main__":
    main()
