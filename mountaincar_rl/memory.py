"""Bounded experience replay memory."""

from __future__ import annotations

import random
from collections import deque

from .types import Transition

MAX_MEMORY = 500


class ReplayMemory:
    """FIFO buffer of transitions; the oldest one is dropped once full."""

    def __init__(self, max_memory: int = MAX_MEMORY, seed: int | None = None):
        if max_memory < 1:
            raise ValueError("max_memory must be >= 1")
        self._samples: deque[Transition] = deque(maxlen=int(max_memory))
        self._rng = random.Random(seed)

    @property
    def max_memory(self) -> int:
        return self._samples.maxlen

    @property
    def samples(self) -> list[Transition]:
        return list(self._samples)

    def add_sample(self, sample: Transition) -> None:
        self._samples.append(sample)

    def sample(self, n_samples: int) -> list[Transition]:
        """Draw `n_samples` distinct transitions uniformly at random."""
        if n_samples < 0:
            raise ValueError("n_samples must be >= 0")
        if n_samples > len(self._samples):
            raise ValueError(f"cannot sample {n_samples} transitions from a memory holding {len(self._samples)}")
        return self._rng.sample(list(self._samples), n_samples)

    def __len__(self) -> int:
        return len(self._samples)
