import json
import tempfile
import unittest
from pathlib import Path

import numpy as np

from wirefit_rl.errors import ConfigurationError
from wirefit_rl.evaluate import build_parser as build_eval_parser
from wirefit_rl.evaluate import run_evaluation
from wirefit_rl.runner import WireFitRunner, build_parser, resolve_settings
from wirefit_rl.tasks import TargetBandTask


class TestTargetBandTask(unittest.TestCase):
    def test_reward_band(self):
        task = TargetBandTask(state=[0.5], target=[0.8], tolerance=0.05)
        self.assertEqual(task.step([0.75])[0], 1.0)
        self.assertEqual(task.step([0.8])[0], 1.0)
        self.assertEqual(task.step([0.7])[0], 0.0)
        self.assertEqual(task.step([1.0])[0], 0.0)
        np.testing.assert_array_equal(task.step([0.0])[1], [0.5])

    def test_reset_returns_copy(self):
        task = TargetBandTask(state=[0.5], target=[0.8])
        s = task.reset()
        s[0] = 9.0
        np.testing.assert_array_equal(task.reset(), [0.5])


class TestRunner(unittest.TestCase):
    def test_parser_defaults(self):
        args = build_parser().parse_args([])
        self.assertEqual(args.episodes, 500)
        self.assertEqual(args.exploration_start, 1.0)
        self.assertEqual(args.exploration_min, 0.05)
        self.assertEqual(args.tensorboard_logdir, "runs/wirefit")
        self.assertIsNone(args.backend)
        self.assertIsNone(args.hidden_layers)

    def test_flags_override_yaml(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "cfg.yaml"
            path.write_text(
                "learner:\n  number_of_wires: 4\n  learning_rate: 0.3\n"
                "approximator:\n  hidden_dim: 8\n"
                "task:\n  state: [0.1, 0.2]\n  target: [0.5, 0.5]\n"
                "  tolerance: 0.1\n",
                encoding="utf-8",
            )
            args = build_parser().parse_args(
                [
                    "--config", str(path),
                    "--learning-rate", "0.7",
                    "--min-action", "0", "0",
                    "--max-action", "1", "1",
                    "--trainer-epochs", "50",
                    "--hidden-layers", "2",
                ]
            )
            config, approximator, task = resolve_settings(args)
        self.assertEqual(config.number_of_wires, 4)
        self.assertAlmostEqual(config.learning_rate, 0.7)
        self.assertEqual(config.state_dimensions, 2)
        self.assertEqual(config.action_dimensions, 2)
        self.assertEqual(approximator["hidden_dim"], 8)
        self.assertEqual(approximator["hidden_layers"], 2)
        self.assertEqual(approximator["trainer"], {"max_epochs": 50})
        self.assertEqual(task["tolerance"], 0.1)

    def test_exploration_schedule(self):
        args = build_parser().parse_args(
            ["--exploration-start", "1.0", "--exploration-min", "0.1", "--exploration-decay", "0.5", "--seed", "0"]
        )
        runner = WireFitRunner(args)
        self.assertAlmostEqual(runner.exploration_constant(0), 1.0)
        self.assertAlmostEqual(runner.exploration_constant(1), 0.5)
        self.assertAlmostEqual(runner.exploration_constant(10), 0.1)

    def test_invalid_exploration_raises(self):
        args = build_parser().parse_args(["--exploration-min", "2.0"])
        with self.assertRaises(ConfigurationError):
            WireFitRunner(args)

    def test_run_smoke_writes_tensorboard(self):
        with tempfile.TemporaryDirectory() as td:
            args = build_parser().parse_args(
                [
                    "--episodes", "6",
                    "--gd-max-iterations", "50",
                    "--trainer-epochs", "50",
                    "--log-interval", "3",
                    "--seed", "1",
                    "--tensorboard-logdir", td,
                    "--exp-name", "smoke",
                    "--progress", "off",
                ]
            )
            runner = WireFitRunner(args)
            results = runner.run()
            self.assertEqual(len(results), 6)
            self.assertTrue(all(r.reward in (0.0, 1.0) for r in results))
            self.assertTrue(all(0.0 <= float(r.action[0]) <= 1.0 for r in results))
            run_dirs = list((Path(td) / "smoke").glob("run_*"))
            self.assertEqual(len(run_dirs), 1)
            self.assertTrue(any(run_dirs[0].iterdir()))


class TestEvaluate(unittest.TestCase):
    def test_smoke_evaluation_writes_artifacts(self):
        with tempfile.TemporaryDirectory() as td:
            args = build_eval_parser().parse_args(
                [
                    "--episodes", "3",
                    "--resolution", "11",
                    "--gd-max-iterations", "50",
                    "--trainer-epochs", "50",
                    "--seed", "2",
                    "--tensorboard-logdir", str(Path(td) / "tb"),
                    "--output-dir", str(Path(td) / "out"),
                    "--output-prefix", "smoke",
                    "--progress", "off",
                ]
            )
            out = run_evaluation(args)
            self.assertTrue(Path(out["plot"]).exists())
            self.assertTrue(Path(out["csv"]).exists())
            self.assertEqual(out["actions"].shape, (11, 1))
            self.assertEqual(out["rewards"].shape, (11,))

            payload = json.loads(Path(out["json"]).read_text(encoding="utf-8"))
            self.assertEqual(len(payload["surface"]), 11)
            self.assertEqual(len(payload["wires"]), 3)
            self.assertEqual(payload["config"]["episodes"], 3)

    def test_two_dimensional_untrained_surface(self):
        with tempfile.TemporaryDirectory() as td:
            args = build_eval_parser().parse_args(
                [
                    "--episodes", "0",
                    "--resolution", "4",
                    "--task-state", "0.5",
                    "--task-target", "0.2", "0.7",
                    "--min-action", "0", "0",
                    "--max-action", "1", "1",
                    "--tensorboard-logdir", str(Path(td) / "tb"),
                    "--output-dir", td,
                    "--progress", "off",
                ]
            )
            out = run_evaluation(args)
            self.assertEqual(out["actions"].shape, (16, 2))
            self.assertTrue(Path(out["plot"]).exists())

    def test_resolution_must_allow_grid(self):
        args = build_eval_parser().parse_args(["--resolution", "1"])
        with self.assertRaises(ConfigurationError):
            run_evaluation(args)


if __name__ == "__main__":
    unittest.main()
