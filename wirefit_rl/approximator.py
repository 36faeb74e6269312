"""Numpy function approximator (state -> raw wire data) with manual back-propagation."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import numpy as np

from .errors import ConfigurationError, DimensionMismatchError

RESET_MODES = ("random", "zeros", "initial")


@runtime_checkable
class Approximator(Protocol):
    """Maps a state vector to ``output_dim`` raw outputs. Deterministic for fixed parameters."""

    output_dim: int

    def predict(self, state: np.ndarray) -> np.ndarray:
        ...

    def reset(self, mode: str = "random") -> None:
        ...


@runtime_checkable
class Trainer(Protocol):
    """Moves the parameters of the approximator it was built for toward ``target_output`` for ``state``."""

    def train(self, state: np.ndarray, target_output: np.ndarray) -> None:
        ...


def check_reset_mode(mode: str) -> str:
    if mode not in RESET_MODES:
        raise ConfigurationError(f"reset mode must be one of {RESET_MODES}, got '{mode}'")
    return mode


class MLPApproximator:
    """Feed-forward regressor: x(input_dim) -> [linear -> ELU] x hidden_layers -> linear(output_dim).

    The output layer is linear so wire actions and rewards can take any real value.
    Parameters are kept as ``weights[i]`` / ``biases[i]`` per layer, input layer first.
    """

    def __init__(
        self,
        input_dim: int,
        output_dim: int,
        hidden_dim: int = 16,
        hidden_layers: int = 1,
        weights: Sequence[np.ndarray] | None = None,
        biases: Sequence[np.ndarray] | None = None,
        seed: int | None = None,
        init_scale: float = 0.1,
    ):
        if input_dim < 1 or output_dim < 1 or hidden_dim < 1 or hidden_layers < 1:
            raise ConfigurationError(
                "input_dim, output_dim, hidden_dim and hidden_layers must be >= 1, "
                f"got {(input_dim, output_dim, hidden_dim, hidden_layers)}"
            )
        self.input_dim = int(input_dim)
        self.output_dim = int(output_dim)
        self.hidden_dim = int(hidden_dim)
        self.hidden_layers = int(hidden_layers)
        self._init_scale = float(init_scale)
        self.rng = np.random.default_rng(seed)

        sizes = [self.input_dim] + [self.hidden_dim] * self.hidden_layers + [self.output_dim]
        self.shapes = list(zip(sizes[:-1], sizes[1:]))
        if weights is None or biases is None:
            self._init_random()
        if weights is not None:
            self.weights = [np.asarray(W, dtype=np.float64) for W in weights]
        if biases is not None:
            self.biases = [np.asarray(b, dtype=np.float64) for b in biases]
        self._validate_shapes()
        self._initial = self.get_params()

    def _init_random(self) -> None:
        self.weights = []
        self.biases = []
        for fan_in, fan_out in self.shapes:
            self.weights.append(self.rng.normal(0.0, self._init_scale, (fan_in, fan_out)))
            self.biases.append(np.zeros((fan_out,), dtype=np.float64))

    def _validate_shapes(self) -> None:
        if len(self.weights) != len(self.shapes) or len(self.biases) != len(self.shapes):
            raise ValueError(
                f"expected {len(self.shapes)} weight and bias arrays, got {len(self.weights)} and {len(self.biases)}"
            )
        for i, ((fan_in, fan_out), W, b) in enumerate(zip(self.shapes, self.weights, self.biases)):
            if W.shape != (fan_in, fan_out):
                raise ValueError(f"weights[{i}] must have shape {(fan_in, fan_out)}, got {W.shape}")
            if b.shape != (fan_out,):
                raise ValueError(f"biases[{i}] must have shape {(fan_out,)}, got {b.shape}")

    @staticmethod
    def elu(x: np.ndarray) -> np.ndarray:
        return np.where(x > 0.0, x, np.expm1(x))

    @staticmethod
    def elu_prime(x: np.ndarray) -> np.ndarray:
        return np.where(x > 0.0, 1.0, np.exp(x))

    def _input(self, state: np.ndarray) -> np.ndarray:
        x = np.asarray(state, dtype=np.float64).reshape(-1)
        if x.shape != (self.input_dim,):
            raise DimensionMismatchError(f"state must have shape ({self.input_dim},), got {x.shape}")
        return x

    def _forward(self, x: np.ndarray) -> tuple[list[np.ndarray], list[np.ndarray], np.ndarray]:
        """Returns (layer inputs, hidden pre-activations, output)."""
        inputs: list[np.ndarray] = []
        pre: list[np.ndarray] = []
        h = x
        for W, b in zip(self.weights[:-1], self.biases[:-1]):
            inputs.append(h)
            z = h @ W + b
            pre.append(z)
            h = self.elu(z)
        inputs.append(h)
        y = h @ self.weights[-1] + self.biases[-1]
        return inputs, pre, y

    def predict(self, state: np.ndarray) -> np.ndarray:
        _, _, y = self._forward(self._input(state))
        return y

    def output_gradients(self, state: np.ndarray, d_output: np.ndarray) -> list[np.ndarray]:
        """Parameter gradients of a loss whose derivative w.r.t. the output is ``d_output``.

        Ordered like ``get_params``: W0, b0, W1, b1, ...
        """
        x = self._input(state)
        delta = np.asarray(d_output, dtype=np.float64).reshape(-1)
        if delta.shape != (self.output_dim,):
            raise DimensionMismatchError(f"d_output must have shape ({self.output_dim},), got {delta.shape}")
        inputs, pre, _ = self._forward(x)

        grads: list[np.ndarray] = []
        for layer in range(len(self.weights) - 1, -1, -1):
            grads.append(delta)
            grads.append(np.outer(inputs[layer], delta))
            if layer > 0:
                delta = (self.weights[layer] @ delta) * self.elu_prime(pre[layer - 1])
        grads.reverse()
        return grads

    def params(self) -> list[np.ndarray]:
        """Live parameter arrays: W0, b0, W1, b1, ..."""
        out: list[np.ndarray] = []
        for W, b in zip(self.weights, self.biases):
            out.extend((W, b))
        return out

    def apply_gradients(self, grads: Sequence[np.ndarray], lr: float) -> None:
        for p, g in zip(self.params(), grads):
            p += lr * np.asarray(g, dtype=np.float64)

    def get_params(self) -> list[np.ndarray]:
        return [p.copy() for p in self.params()]

    def reset(self, mode: str = "random") -> None:
        """Reinitialize parameters.

        ``random`` draws fresh weights from this approximator's RNG, ``zeros`` zeroes every
        parameter (only the output bias can learn afterwards), ``initial`` restores the
        parameters drawn at construction.
        """
        check_reset_mode(mode)
        if mode == "random":
            self._init_random()
        elif mode == "zeros":
            self.weights = [np.zeros_like(W) for W in self.weights]
            self.biases = [np.zeros_like(b) for b in self.biases]
        else:
            self.weights = [p.copy() for p in self._initial[0::2]]
            self.biases = [p.copy() for p in self._initial[1::2]]


class BackpropTrainer:
    """Repeats back-propagation steps of its approximator on one (state, target) pair.

    Stops once the half squared error reaches ``error_target`` or after ``max_epochs``
    steps, whichever comes first.
    """

    def __init__(
        self,
        approximator: MLPApproximator,
        learning_rate: float = 0.1,
        momentum: float = 0.0,
        error_target: float = 1e-4,
        max_epochs: int = 200,
    ):
        if learning_rate <= 0.0:
            raise ConfigurationError("learning_rate must be > 0")
        if not 0.0 <= momentum < 1.0:
            raise ConfigurationError("momentum must be in [0, 1)")
        if error_target < 0.0:
            raise ConfigurationError("error_target must be >= 0")
        if max_epochs < 1:
            raise ConfigurationError("max_epochs must be >= 1")
        self.approximator = approximator
        self.learning_rate = float(learning_rate)
        self.momentum = float(momentum)
        self.error_target = float(error_target)
        self.max_epochs = int(max_epochs)
        self._velocity: list[np.ndarray] | None = None
        self.last_epochs = 0
        self.last_error = float("nan")

    def _error(self, state: np.ndarray, target: np.ndarray) -> float:
        delta = self.approximator.predict(state) - target
        return 0.5 * float(delta @ delta)

    def train(self, state: np.ndarray, target_output: np.ndarray) -> None:
        net = self.approximator
        target = np.asarray(target_output, dtype=np.float64).reshape(-1)
        if target.shape != (net.output_dim,):
            raise DimensionMismatchError(f"target output must have shape ({net.output_dim},), got {target.shape}")

        epochs = 0
        error = self._error(state, target)
        while error > self.error_target and epochs < self.max_epochs:
            grads = net.output_gradients(state, net.predict(state) - target)
            if self.momentum > 0.0:
                if self._velocity is None or any(v.shape != g.shape for v, g in zip(self._velocity, grads)):
                    self._velocity = [np.zeros_like(g) for g in grads]
                self._velocity = [self.momentum * v - self.learning_rate * g for v, g in zip(self._velocity, grads)]
                net.apply_gradients(self._velocity, lr=1.0)
            else:
                net.apply_gradients(grads, lr=-self.learning_rate)
            epochs += 1
            error = self._error(state, target)

        self.last_epochs = epochs
        self.last_error = error
