import tempfile
import unittest
from pathlib import Path

from wirefit_rl.config import LearnerConfig, load_config
from wirefit_rl.errors import ConfigurationError, NumericDegeneracyError


def _params(**overrides):
    params = dict(
        state_dimensions=1,
        action_dimensions=2,
        number_of_wires=4,
        min_action=[0.0, -1.0],
        max_action=[1.0, 1.0],
    )
    params.update(overrides)
    return params


class TestLearnerConfig(unittest.TestCase):
    def test_defaults_and_output_dim(self):
        cfg = LearnerConfig(**_params())
        self.assertEqual(cfg.output_dim, 12)
        self.assertEqual(cfg.min_action, (0.0, -1.0))
        self.assertEqual(cfg.base_of_dimensions, 5)
        self.assertEqual(cfg.reset_mode, "random")
        self.assertEqual(cfg.interpolator, "wirefit")
        self.assertAlmostEqual(cfg.control_points_error_target, 0.001)

    def test_invalid_values_raise(self):
        cases = [
            dict(number_of_wires=0),
            dict(state_dimensions=0),
            dict(action_dimensions=0, min_action=[], max_action=[]),
            dict(min_action=[0.0]),
            dict(min_action=[2.0, 0.0]),
            dict(learning_rate=1.5),
            dict(devaluation_factor=-0.1),
            dict(base_of_dimensions=1),
            dict(control_points_step_size=0.0),
            dict(control_points_max_iterations=0),
            dict(reset_mode="warm"),
            dict(interpolator="spline"),
            dict(base_of_dimensions=1001, max_grid_size=1_000_000),
        ]
        for overrides in cases:
            with self.subTest(**{k: str(v) for k, v in overrides.items()}):
                with self.assertRaises(ConfigurationError):
                    LearnerConfig(**_params(**overrides))

    def test_smoothing_must_be_positive(self):
        from wirefit_rl.learner import build_learner

        cfg = LearnerConfig(**_params(smoothing=0.0))
        with self.assertRaises(NumericDegeneracyError):
            build_learner(cfg)

    def test_from_dict_rejects_unknown_and_missing(self):
        with self.assertRaises(ConfigurationError):
            LearnerConfig.from_dict({**_params(), "wires": 3})
        params = _params()
        del params["number_of_wires"]
        with self.assertRaises(ConfigurationError):
            LearnerConfig.from_dict(params)

    def test_dict_roundtrip(self):
        cfg = LearnerConfig(**_params(learning_rate=0.25))
        self.assertEqual(LearnerConfig.from_dict(cfg.to_dict()), cfg)

    def test_load_yaml(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "cfg.yaml"
            path.write_text(
                "learner:\n"
                "  state_dimensions: 1\n"
                "  action_dimensions: 1\n"
                "  number_of_wires: 3\n"
                "  min_action: [0.0]\n"
                "  max_action: [1.0]\n"
                "task:\n"
                "  target: [0.8]\n",
                encoding="utf-8",
            )
            data = load_config(path)
            cfg = LearnerConfig.from_dict(data["learner"])
            self.assertEqual(cfg.number_of_wires, 3)
            self.assertEqual(data["task"]["target"], [0.8])

            empty = Path(td) / "empty.yaml"
            empty.write_text("", encoding="utf-8")
            self.assertEqual(load_config(empty), {})


if __name__ == "__main__":
    unittest.main()
