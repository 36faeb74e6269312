import unittest

import numpy as np

from wirefit_rl.errors import ConfigurationError, DimensionMismatchError, NumericDegeneracyError
from wirefit_rl.interpolator import WireFitInterpolator, available_interpolators, make_interpolator
from wirefit_rl.types import Wire


def _random_wires(rng: np.random.Generator, n: int, dim: int) -> list[Wire]:
    actions = rng.uniform(-1.0, 1.0, (n, dim))
    rewards = rng.permutation(np.linspace(-1.0, 1.0, n)) + rng.uniform(-0.05, 0.05, n)
    return [Wire(action=a, reward=r) for a, r in zip(actions, rewards)]


class TestWireFitSurface(unittest.TestCase):
    def setUp(self):
        self.interp = WireFitInterpolator()

    def test_single_wire_is_constant(self):
        wires = [Wire(action=[0.2, -0.4], reward=3.5)]
        for action in ([0.0, 0.0], [0.2, -0.4], [5.0, 5.0]):
            self.assertAlmostEqual(self.interp.get_reward(wires, action), 3.5, places=12)

    def test_action_on_highest_wire_returns_its_reward(self):
        wires = [
            Wire(action=[0.1], reward=0.2),
            Wire(action=[0.5], reward=1.7),
            Wire(action=[0.9], reward=-0.3),
        ]
        self.assertEqual(self.interp.get_reward(wires, [0.5]), 1.7)

    def test_surface_peaks_on_highest_wire(self):
        wires = [
            Wire(action=[0.0], reward=0.0),
            Wire(action=[0.4], reward=1.0),
            Wire(action=[1.0], reward=0.5),
        ]
        grid = np.linspace(-0.5, 1.5, 201)
        values = np.array([self.interp.get_reward(wires, [a]) for a in grid])
        self.assertLessEqual(values.max(), 1.0 + 1e-12)
        self.assertAlmostEqual(float(grid[int(np.argmax(values))]), 0.4, places=6)

    def test_surface_stays_within_wire_rewards(self):
        rng = np.random.default_rng(3)
        for _ in range(20):
            wires = _random_wires(rng, n=4, dim=2)
            lo = min(w.reward for w in wires)
            hi = max(w.reward for w in wires)
            for action in rng.uniform(-2.0, 2.0, (10, 2)):
                q = self.interp.get_reward(wires, action)
                self.assertGreaterEqual(q, lo - 1e-12)
                self.assertLessEqual(q, hi + 1e-12)

    def test_mismatched_action_raises(self):
        wires = [Wire(action=[0.0, 0.0], reward=1.0)]
        with self.assertRaises(DimensionMismatchError):
            self.interp.get_reward(wires, [0.0])

    def test_empty_wires_raise(self):
        with self.assertRaises(ValueError):
            self.interp.get_reward([], [0.0])

    def test_distances_favour_high_reward_wires(self):
        wires = [Wire(action=[0.0], reward=0.0), Wire(action=[1.0], reward=1.0)]
        d = self.interp.distances(wires, [0.5])
        self.assertGreater(d[0], d[1])
        self.assertAlmostEqual(float(d[1]), 0.25, places=12)


class TestWireFitDerivatives(unittest.TestCase):
    def setUp(self):
        self.interp = WireFitInterpolator()
        self.eps = 1e-6

    def _numeric_reward_partial(self, wires, action, j):
        up = [w.copy() for w in wires]
        down = [w.copy() for w in wires]
        up[j].reward += self.eps
        down[j].reward -= self.eps
        return (self.interp.get_reward(up, action) - self.interp.get_reward(down, action)) / (2 * self.eps)

    def _numeric_action_partial(self, wires, action, j, k):
        up = [w.copy() for w in wires]
        down = [w.copy() for w in wires]
        up[j].action[k] += self.eps
        down[j].action[k] -= self.eps
        return (self.interp.get_reward(up, action) - self.interp.get_reward(down, action)) / (2 * self.eps)

    def test_reward_derivative_matches_finite_difference(self):
        rng = np.random.default_rng(0)
        for _ in range(10):
            wires = _random_wires(rng, n=4, dim=2)
            action = rng.uniform(-1.0, 1.0, 2)
            for j, wire in enumerate(wires):
                analytic = self.interp.reward_derivative(action, wire, wires)
                numeric = self._numeric_reward_partial(wires, action, j)
                self.assertAlmostEqual(analytic, numeric, delta=1e-5 * max(1.0, abs(numeric)))

    def test_action_term_derivative_matches_finite_difference(self):
        rng = np.random.default_rng(1)
        for _ in range(10):
            wires = _random_wires(rng, n=3, dim=2)
            action = rng.uniform(-1.0, 1.0, 2)
            for j, wire in enumerate(wires):
                for k in range(2):
                    analytic = self.interp.action_term_derivative(action[k], wire.action[k], action, wire, wires)
                    numeric = self._numeric_action_partial(wires, action, j, k)
                    self.assertAlmostEqual(analytic, numeric, delta=1e-5 * max(1.0, abs(numeric)))

    def test_vectorized_gradients_match_per_wire_calls(self):
        rng = np.random.default_rng(2)
        wires = _random_wires(rng, n=5, dim=3)
        action = rng.uniform(-1.0, 1.0, 3)
        d_rewards, d_actions = self.interp.gradients(wires, action)
        for j, wire in enumerate(wires):
            self.assertAlmostEqual(d_rewards[j], self.interp.reward_derivative(action, wire, wires), places=12)
            for k in range(3):
                expected = self.interp.action_term_derivative(action[k], wire.action[k], action, wire, wires)
                self.assertAlmostEqual(d_actions[j, k], expected, places=12)

    def test_action_gradient_matches_finite_difference(self):
        rng = np.random.default_rng(4)
        for _ in range(10):
            wires = _random_wires(rng, n=4, dim=2)
            action = rng.uniform(-1.0, 1.0, 2)
            grad = self.interp.action_gradient(wires, action)
            for k in range(2):
                up = action.copy()
                down = action.copy()
                up[k] += self.eps
                down[k] -= self.eps
                numeric = (self.interp.get_reward(wires, up) - self.interp.get_reward(wires, down)) / (2 * self.eps)
                self.assertAlmostEqual(grad[k], numeric, delta=1e-5 * max(1.0, abs(numeric)))

    def test_reward_derivatives_sum_to_one(self):
        rng = np.random.default_rng(5)
        wires = _random_wires(rng, n=4, dim=1)
        d_rewards, _ = self.interp.gradients(wires, [0.3])
        self.assertAlmostEqual(float(np.sum(d_rewards)), 1.0, places=9)

    def test_coincident_action_gradients(self):
        wires = [Wire(action=[0.0], reward=0.0), Wire(action=[0.5], reward=1.0)]
        d_rewards, d_actions = self.interp.gradients(wires, [0.5])
        np.testing.assert_array_equal(d_rewards, [0.0, 1.0])
        np.testing.assert_array_equal(d_actions, np.zeros((2, 1)))

    def test_unknown_wire_raises(self):
        wires = [Wire(action=[0.0], reward=0.0)]
        with self.assertRaises(ValueError):
            self.interp.reward_derivative([0.1], Wire(action=[9.0], reward=9.0), wires)


class TestInterpolatorRegistry(unittest.TestCase):
    def test_make_by_name(self):
        interp = make_interpolator("WireFit", smoothing=0.01)
        self.assertIsInstance(interp, WireFitInterpolator)
        self.assertEqual(interp.name(), "wirefit")
        self.assertAlmostEqual(interp.smoothing, 0.01)
        self.assertIn("wirefit", available_interpolators())

    def test_unknown_name_raises(self):
        with self.assertRaises(ConfigurationError):
            make_interpolator("spline")

    def test_non_positive_smoothing_raises(self):
        for value in (0.0, -1e-3):
            with self.assertRaises(NumericDegeneracyError):
                WireFitInterpolator(smoothing=value)


if __name__ == "__main__":
    unittest.main()
