"""Action-value function: MLP from state to one value per action."""

from __future__ import annotations

from typing import Any

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F

from .types import FreshTopology, ModelSource, Pretrained, as_model_source

NUM_STATES = 2
NUM_ACTIONS = 3
BATCH_SIZE = 100


def build_network(hidden_layer_sizes: list[int], num_states: int, num_actions: int) -> nn.Sequential:
    """ReLU hidden layers followed by a linear head of `num_actions` units."""
    layers: list[nn.Module] = []
    in_features = num_states
    for size in hidden_layer_sizes:
        layers.append(nn.Linear(in_features, int(size)))
        layers.append(nn.ReLU())
        in_features = int(size)
    layers.append(nn.Linear(in_features, num_actions))
    return nn.Sequential(*layers)


def linear_layers(network: nn.Module) -> list[nn.Linear]:
    return [m for m in network.modules() if isinstance(m, nn.Linear)]


# Parameter-free modules a stored network may contain, by name.
ACTIVATIONS: dict[str, type[nn.Module]] = {
    "relu": nn.ReLU,
    "tanh": nn.Tanh,
    "sigmoid": nn.Sigmoid,
    "elu": nn.ELU,
}


def describe_network(network: nn.Module) -> list[dict[str, Any]]:
    """Layer-by-layer layout of a flat Sequential, enough to rebuild it.

    Raises ValueError for modules that cannot be described.
    """
    if not isinstance(network, nn.Sequential):
        raise ValueError(f"network must be an nn.Sequential, got {type(network).__name__}")
    names = {cls: name for name, cls in ACTIVATIONS.items()}
    layout: list[dict[str, Any]] = []
    for module in network:
        if isinstance(module, nn.Linear):
            layout.append(
                {
                    "type": "linear",
                    "in_features": module.in_features,
                    "out_features": module.out_features,
                    "bias": module.bias is not None,
                }
            )
        elif isinstance(module, nn.Dropout):
            layout.append({"type": "dropout", "p": float(module.p)})
        elif type(module) in names:
            entry: dict[str, Any] = {"type": names[type(module)]}
            if isinstance(module, nn.ELU):
                entry["alpha"] = float(module.alpha)
            layout.append(entry)
        else:
            raise ValueError(f"unsupported module in network: {type(module).__name__}")
    return layout


def network_from_layout(layout: list[dict[str, Any]]) -> nn.Sequential:
    layers: list[nn.Module] = []
    for entry in layout:
        kind = entry["type"]
        if kind == "linear":
            layers.append(nn.Linear(int(entry["in_features"]), int(entry["out_features"]), bias=bool(entry["bias"])))
        elif kind == "dropout":
            layers.append(nn.Dropout(float(entry["p"])))
        elif kind == "elu":
            layers.append(nn.ELU(alpha=float(entry.get("alpha", 1.0))))
        elif kind in ACTIVATIONS:
            layers.append(ACTIVATIONS[kind]())
        else:
            raise ValueError(f"unknown layer type in layout: {kind!r}")
    return nn.Sequential(*layers)


class ValueFunction:
    """Q-network with its optimizer and the exploration policy.

    `train()` is the only method that changes the network's parameters.
    """

    def __init__(
        self,
        model_source: int | list[int] | ModelSource,
        num_states: int = NUM_STATES,
        num_actions: int = NUM_ACTIONS,
        batch_size: int = BATCH_SIZE,
        learning_rate: float = 1e-3,
        seed: int | None = None,
    ):
        if num_states < 1:
            raise ValueError("num_states must be >= 1")
        if num_actions < 1:
            raise ValueError("num_actions must be >= 1")
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        self.num_states = int(num_states)
        self.num_actions = int(num_actions)
        self.batch_size = int(batch_size)
        # Network output index i maps to action i - offset (-1, 0, 1 for three actions).
        self.action_offset = (self.num_actions - 1) // 2

        if seed is not None:
            torch.manual_seed(seed)
        self.rng = np.random.default_rng(seed)

        source = as_model_source(model_source)
        if isinstance(source, Pretrained):
            self.network = source.network
            describe_network(self.network)
            layers = linear_layers(self.network)
            if not layers:
                raise ValueError("pretrained network has no linear layers")
            if layers[0].in_features != self.num_states or layers[-1].out_features != self.num_actions:
                raise ValueError(
                    f"pretrained network maps {layers[0].in_features} -> {layers[-1].out_features}, "
                    f"expected {self.num_states} -> {self.num_actions}"
                )
        elif isinstance(source, FreshTopology):
            self.network = build_network(list(source.sizes), self.num_states, self.num_actions)
        else:
            raise TypeError(f"unsupported model source: {type(source).__name__}")

        self.optimizer = torch.optim.Adam(self.network.parameters(), lr=learning_rate)
        self.loss_fn = nn.MSELoss()

    def hidden_layer_sizes(self) -> int | list[int]:
        """A single int for one hidden layer, else the list of sizes."""
        sizes = [layer.out_features for layer in linear_layers(self.network)[:-1]]
        return sizes[0] if len(sizes) == 1 else sizes

    def _to_tensor(self, states: np.ndarray) -> torch.Tensor:
        device = next(self.network.parameters()).device
        return torch.as_tensor(np.asarray(states, dtype=np.float32), device=device)

    def predict(self, states: np.ndarray) -> np.ndarray:
        """(num_states,) -> (num_actions,) or (B, num_states) -> (B, num_actions)."""
        x = self._to_tensor(states)
        single = x.dim() == 1
        if single:
            x = x.unsqueeze(0)
        if x.shape[-1] != self.num_states:
            raise ValueError(f"states must have {self.num_states} features, got shape {tuple(x.shape)}")
        self.network.eval()
        with torch.no_grad():
            q = self.network(x).cpu().numpy()
        return q[0] if single else q

    def train(self, x_batch: np.ndarray, y_batch: np.ndarray) -> float:
        """One optimizer step on the MSE between predictions and targets."""
        x = self._to_tensor(x_batch)
        y = self._to_tensor(y_batch)
        if x.dim() != 2 or x.shape[1] != self.num_states:
            raise ValueError(f"x_batch must have shape (B, {self.num_states}), got {tuple(x.shape)}")
        if y.shape != (x.shape[0], self.num_actions):
            raise ValueError(f"y_batch must have shape ({x.shape[0]}, {self.num_actions}), got {tuple(y.shape)}")

        self.network.train()
        self.optimizer.zero_grad()
        loss = self.loss_fn(self.network(x), y)
        loss.backward()
        self.optimizer.step()
        return float(loss.detach().item())

    @staticmethod
    def sigmoid_probs(logits: np.ndarray) -> np.ndarray:
        """sigmoid(x) / sum(sigmoid(x)), computed as softmax(logsigmoid(x)) so it stays finite."""
        x = torch.as_tensor(np.asarray(logits, dtype=np.float64)).reshape(-1)
        return torch.softmax(F.logsigmoid(x), dim=-1).numpy()

    def action_probabilities(self, state: np.ndarray) -> np.ndarray:
        return self.sigmoid_probs(self.predict(state).reshape(-1))

    def choose_action(self, state: np.ndarray, eps: float) -> int:
        """Epsilon-random, otherwise sampled from the sigmoid-normalized values (not argmax)."""
        if self.rng.random() < eps:
            return int(np.floor(self.rng.random() * self.num_actions)) - self.action_offset
        probs = self.action_probabilities(state)
        return int(self.rng.choice(self.num_actions, p=probs)) - self.action_offset
