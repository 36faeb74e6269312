"""Sample the learned reward surface for the task state and write CSV/JSON/PNG reports."""

from __future__ import annotations

import argparse
import csv
import json
import time
from pathlib import Path
from typing import Any

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

from .errors import ConfigurationError
from .learner import WireFitQLearn
from .runner import WireFitRunner, add_common_arguments

matplotlib.use("Agg")


def sample_surface(
    learner: WireFitQLearn,
    state: np.ndarray,
    resolution: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Grid actions [N, D] and their interpolated rewards [N] for ``state``."""
    candidates = learner.get_set_of_wires(state, resolution)
    actions = np.stack([w.action for w in candidates])
    rewards = np.array([w.reward for w in candidates], dtype=np.float64)
    return actions, rewards


def _plot_surface(
    actions: np.ndarray,
    rewards: np.ndarray,
    learner: WireFitQLearn,
    state: np.ndarray,
    target: np.ndarray | None,
    output_dir: Path,
    prefix: str,
) -> Path:
    # For D > 1 collapse the remaining dimensions by taking the max reward per first-axis level.
    levels = np.unique(actions[:, 0])
    profile = np.array([rewards[actions[:, 0] == v].max() for v in levels], dtype=np.float64)
    wires = learner.get_wires(state)

    fig = plt.figure(figsize=(10, 5))
    ax = fig.add_subplot(111)
    ax.plot(levels, profile, linewidth=2.0, label="Interpolated reward")
    ax.scatter(
        [w.action[0] for w in wires],
        [w.reward for w in wires],
        marker="x",
        s=60,
        color="tab:red",
        label="Control wires",
    )
    if target is not None:
        ax.axvline(float(target[0]), linestyle="--", alpha=0.7, color="tab:green", label="Task target")
    ax.set_title(f"Wire-fitted reward surface at state {np.array2string(state, precision=3)}")
    ax.set_xlabel("Action[0]" if learner.action_dimensions == 1 else "Action[0] (max over other dims)")
    ax.set_ylabel("Reward")
    ax.grid(True, alpha=0.3)
    ax.legend(loc="best")
    path = output_dir / f"{prefix}_surface.png"
    fig.tight_layout()
    fig.savefig(path, dpi=160)
    plt.close(fig)
    return path


def _save_reports(
    actions: np.ndarray,
    rewards: np.ndarray,
    learner: WireFitQLearn,
    state: np.ndarray,
    output_dir: Path,
    prefix: str,
    args: argparse.Namespace,
    train_time_sec: float,
) -> tuple[Path, Path]:
    csv_path = output_dir / f"{prefix}_surface.csv"
    json_path = output_dir / f"{prefix}_surface.json"

    D = actions.shape[1]
    fieldnames = [f"action_{i}" for i in range(D)] + ["reward"]
    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for a, r in zip(actions, rewards):
            row = {f"action_{i}": float(a[i]) for i in range(D)}
            row["reward"] = float(r)
            writer.writerow(row)

    best = learner.best_action(state)
    payload = {
        "config": {
            "learner": learner.config.to_dict(),
            "episodes": int(args.episodes),
            "resolution": int(args.resolution),
            "seed": args.seed,
            "train_time_sec": train_time_sec,
        },
        "state": state.tolist(),
        "best_action": best.tolist(),
        "highest_reward": learner.highest_reward(state),
        "wires": [{"action": w.action.tolist(), "reward": w.reward} for w in learner.get_wires(state)],
        "surface": [{"action": a.tolist(), "reward": float(r)} for a, r in zip(actions, rewards)],
    }
    with json_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

    return csv_path, json_path


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Train briefly, then report the learned wire-fitted reward surface")
    p.add_argument("--episodes", type=int, default=200, help="Training episodes before sampling (0 = untrained)")
    p.add_argument("--resolution", type=int, default=101, help="Grid levels per action dimension")
    p.add_argument("--output-dir", default="eval_reports")
    p.add_argument("--output-prefix", default="wirefit")
    add_common_arguments(p)
    return p


def run_evaluation(args: argparse.Namespace) -> dict[str, Any]:
    if args.resolution < 2:
        raise ConfigurationError("--resolution must be >= 2")

    runner = WireFitRunner(args)
    t0 = time.perf_counter()
    if args.episodes > 0:
        runner.run()
    train_time = time.perf_counter() - t0

    learner = runner.learner
    state = runner.task.reset()
    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    actions, rewards = sample_surface(learner, state, int(args.resolution))
    plot_path = _plot_surface(actions, rewards, learner, state, runner.task.target, output_dir, args.output_prefix)
    csv_path, json_path = _save_reports(
        actions, rewards, learner, state, output_dir, args.output_prefix, args, train_time
    )

    best = learner.best_action(state)
    print(
        "evaluation_summary "
        f"points={len(rewards)} reward_min={rewards.min():.4f} reward_max={rewards.max():.4f} "
        f"best_action={np.array2string(best, precision=3)} "
        f"plot={plot_path} csv={csv_path} json={json_path}",
        flush=True,
    )

    return {
        "actions": actions,
        "rewards": rewards,
        "best_action": best,
        "plot": plot_path,
        "csv": csv_path,
        "json": json_path,
    }


def main() -> None:
    args = build_parser().parse_args()
    run_evaluation(args)


if __name__ == "__main__":
    main()
