"""Shared dataclasses for RL pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

import numpy as np
import torch.nn as nn


@dataclass
class Transition:
    state: np.ndarray  # shape (num_states,)
    action: int  # -1, 0 or 1
    reward: float
    next_state: np.ndarray | None  # None marks the step that ended the episode

    @property
    def terminal(self) -> bool:
        return self.next_state is None


@dataclass(frozen=True)
class EpisodeStats:
    total_reward: float
    max_position: float
    steps: int
    done: bool


@dataclass(frozen=True)
class FreshTopology:
    sizes: list[int] = field(default_factory=lambda: [128])

    def __post_init__(self):
        if not self.sizes:
            raise ValueError("at least one hidden layer size is required")
        if any(int(s) < 1 for s in self.sizes):
            raise ValueError(f"hidden layer sizes must be >= 1, got {self.sizes}")


@dataclass(frozen=True)
class Pretrained:
    network: nn.Sequential


ModelSource = Union[FreshTopology, Pretrained]


def as_model_source(value: int | list[int] | tuple[int, ...] | FreshTopology | Pretrained) -> ModelSource:
    if isinstance(value, (FreshTopology, Pretrained)):
        return value
    if isinstance(value, nn.Sequential):
        return Pretrained(value)
    if isinstance(value, int):
        return FreshTopology([value])
    if isinstance(value, (list, tuple)):
        return FreshTopology([int(v) for v in value])
    raise TypeError(f"unsupported model source: {type(value).__name__}")
