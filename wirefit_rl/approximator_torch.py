"""PyTorch function approximator and trainer implementing the same protocols as the numpy pair."""

from __future__ import annotations

import numpy as np
import torch
import torch.nn as nn

from .approximator import check_reset_mode
from .errors import ConfigurationError, DimensionMismatchError

HIDDEN_DIM = 64
HIDDEN_LAYERS = 2


class TorchMLPApproximator(nn.Module):
    """x(input_dim) -> [hidden -> ELU] x hidden_layers -> output_dim (linear)."""

    def __init__(
        self,
        input_dim: int,
        output_dim: int,
        hidden_dim: int = HIDDEN_DIM,
        hidden_layers: int = HIDDEN_LAYERS,
        seed: int | None = None,
    ):
        super().__init__()
        if input_dim < 1 or output_dim < 1 or hidden_dim < 1 or hidden_layers < 1:
            raise ConfigurationError(
                "input_dim, output_dim, hidden_dim and hidden_layers must be >= 1, "
                f"got {(input_dim, output_dim, hidden_dim, hidden_layers)}"
            )
        self._generator = torch.Generator()
        if seed is not None:
            self._generator.manual_seed(seed)
        self.input_dim = int(input_dim)
        self.output_dim = int(output_dim)
        self.hidden_dim = int(hidden_dim)
        self.hidden_layers = int(hidden_layers)
        sizes = [self.input_dim] + [self.hidden_dim] * self.hidden_layers + [self.output_dim]
        self.layers = nn.ModuleList(nn.Linear(n_in, n_out) for n_in, n_out in zip(sizes[:-1], sizes[1:]))
        self.activation = nn.ELU()
        self._init_random()
        self._initial = {k: v.detach().clone() for k, v in self.state_dict().items()}

    def _init_random(self) -> None:
        with torch.no_grad():
            for layer in self.layers:
                bound = 1.0 / float(np.sqrt(layer.in_features))
                layer.weight.copy_(torch.rand(layer.weight.shape, generator=self._generator) * 2.0 * bound - bound)
                layer.bias.zero_()

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """x: [B, input_dim] -> [B, output_dim]."""
        for layer in self.layers[:-1]:
            x = self.activation(layer(x))
        return self.layers[-1](x)

    def state_tensor(self, state: np.ndarray) -> torch.Tensor:
        arr = np.asarray(state, dtype=np.float32).reshape(-1)
        if arr.shape != (self.input_dim,):
            raise DimensionMismatchError(f"state must have shape ({self.input_dim},), got {arr.shape}")
        device = next(self.parameters()).device
        return torch.from_numpy(arr).unsqueeze(0).to(device)

    def predict(self, state: np.ndarray) -> np.ndarray:
        with torch.no_grad():
            out = self.forward(self.state_tensor(state)).squeeze(0).cpu().numpy()
        return out.astype(np.float64)

    def reset(self, mode: str = "random") -> None:
        check_reset_mode(mode)
        if mode == "random":
            self._init_random()
        elif mode == "zeros":
            with torch.no_grad():
                for p in self.parameters():
                    p.zero_()
        else:
            self.load_state_dict(self._initial)


class TorchTrainer:
    """Adam steps on the mean squared error of one (state, target) pair for its approximator."""

    def __init__(
        self,
        approximator: TorchMLPApproximator,
        learning_rate: float = 1e-2,
        error_target: float = 1e-4,
        max_epochs: int = 200,
    ):
        if learning_rate <= 0.0:
            raise ConfigurationError("learning_rate must be > 0")
        if error_target < 0.0:
            raise ConfigurationError("error_target must be >= 0")
        if max_epochs < 1:
            raise ConfigurationError("max_epochs must be >= 1")
        self.approximator = approximator
        self.learning_rate = float(learning_rate)
        self.error_target = float(error_target)
        self.max_epochs = int(max_epochs)
        # Parameters are reset in place, so the optimizer keeps valid references.
        self.optimizer = torch.optim.Adam(approximator.parameters(), lr=self.learning_rate)
        self.last_epochs = 0
        self.last_error = float("nan")

    def train(self, state: np.ndarray, target_output: np.ndarray) -> None:
        model = self.approximator
        target_arr = np.asarray(target_output, dtype=np.float32).reshape(-1)
        if target_arr.shape != (model.output_dim,):
            raise DimensionMismatchError(
                f"target output must have shape ({model.output_dim},), got {target_arr.shape}"
            )
        x = model.state_tensor(state)
        target = torch.from_numpy(target_arr).unsqueeze(0).to(x.device)

        model.train()
        epochs = 0
        with torch.no_grad():
            error = float(torch.mean((model(x) - target) ** 2).item())
        while error > self.error_target and epochs < self.max_epochs:
            loss = torch.mean((model(x) - target) ** 2)
            self.optimizer.zero_grad()
            loss.backward()
            self.optimizer.step()
            epochs += 1
            with torch.no_grad():
                error = float(torch.mean((model(x) - target) ** 2).item())
        model.eval()

        self.last_epochs = epochs
        self.last_error = error
