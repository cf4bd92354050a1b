"""Keyed model store for value-function networks."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import torch

from .model import build_network, describe_network, linear_layers, network_from_layout
from .policy import PolicyNetwork
from .types import Pretrained

DEFAULT_MODEL_KEY = "mountain-car-v0"


class ModelNotFoundError(LookupError):
    """No model is stored under the requested key."""

    def __init__(self, key: str):
        super().__init__(f"Cannot find model at {key!r}")
        self.key = key


class FileModelStore:
    """One `<key>.pt` payload plus a `<key>.json` metadata sidecar per key."""

    KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")

    def __init__(self, model_dir: str | Path = "models"):
        self.dir = Path(model_dir)
        self.dir.mkdir(parents=True, exist_ok=True)

    def _check_key(self, key: str) -> str:
        if not isinstance(key, str) or not self.KEY_PATTERN.match(key) or key in (".", ".."):
            raise ValueError(f"invalid model key: {key!r}")
        return key

    def _model_path(self, key: str) -> Path:
        return self.dir / f"{self._check_key(key)}.pt"

    def _meta_path(self, key: str) -> Path:
        return self.dir / f"{self._check_key(key)}.json"

    def list(self) -> dict[str, dict[str, Any]]:
        out: dict[str, dict[str, Any]] = {}
        for meta_path in sorted(self.dir.glob("*.json")):
            key = meta_path.stem
            if not self.KEY_PATTERN.match(key) or not (self.dir / f"{key}.pt").exists():
                continue
            with open(meta_path, "r", encoding="utf-8") as f:
                out[key] = json.load(f)
        return out

    def save(self, network: torch.nn.Module, key: str, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
        layout = describe_network(network)
        layers = linear_layers(network)
        if not layers:
            raise ValueError("network has no linear layers")
        hidden = [layer.out_features for layer in layers[:-1]]
        info: dict[str, Any] = {
            "key": key,
            "date_saved": datetime.now(timezone.utc).isoformat(),
            "hidden_layer_sizes": hidden,
            "num_states": int(layers[0].in_features),
            "num_actions": int(layers[-1].out_features),
            "metadata": metadata or {},
        }
        payload = {
            "model_state_dict": network.state_dict(),
            "layout": layout,
            "hidden_layer_sizes": hidden,
            "num_states": info["num_states"],
            "num_actions": info["num_actions"],
        }
        torch.save(payload, self._model_path(key))
        with open(self._meta_path(key), "w", encoding="utf-8") as f:
            json.dump(info, f, indent=2)
        return info

    def load(self, key: str) -> Pretrained:
        path = self._model_path(key)
        if not path.exists():
            raise ModelNotFoundError(key)

        data = torch.load(path, map_location="cpu")
        if not isinstance(data, dict) or "model_state_dict" not in data:
            raise ValueError(f"Model file {path} is not a valid PyTorch checkpoint")

        if "layout" in data:
            network = network_from_layout(data["layout"])
        else:
            # Older payloads only carry the sizes of a ReLU network.
            network = build_network(
                [int(s) for s in data["hidden_layer_sizes"]],
                int(data["num_states"]),
                int(data["num_actions"]),
            )
        network.load_state_dict(data["model_state_dict"])
        return Pretrained(network)

    def remove(self, key: str) -> None:
        path = self._model_path(key)
        if not path.exists():
            raise ModelNotFoundError(key)
        path.unlink()
        self._meta_path(key).unlink(missing_ok=True)


class PolicyPersistence:
    """Save/load/remove a policy's network under one configured key."""

    def __init__(self, store: FileModelStore, key: str):
        self.store = store
        self.key = key

    def save(self, policy: PolicyNetwork, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.store.save(policy.model.network, self.key, metadata)

    def load(self, **policy_kwargs: Any) -> PolicyNetwork:
        """Build a policy around the stored network; raises ModelNotFoundError."""
        source = self.store.load(self.key)
        return PolicyNetwork(source, persistence=self, **policy_kwargs)

    def check_status(self) -> dict[str, Any] | None:
        return self.store.list().get(self.key)

    def remove(self) -> None:
        self.store.remove(self.key)
