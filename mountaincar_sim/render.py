"""Headless trajectory recording, usable as the per-step render hook."""

from __future__ import annotations

from pathlib import Path

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

from .engine import MountainCar

matplotlib.use("Agg")


class TrajectoryRecorder:
    """Collects `(position, velocity)` every time it is called with the environment."""

    def __init__(self, every: int = 1):
        if every < 1:
            raise ValueError("every must be >= 1")
        self.every = int(every)
        self._calls = 0
        self.positions: list[float] = []
        self.velocities: list[float] = []

    def __call__(self, env: MountainCar) -> None:
        self._calls += 1
        if (self._calls - 1) % self.every != 0:
            return
        self.positions.append(float(env.position))
        self.velocities.append(float(env.velocity))

    def __len__(self) -> int:
        return len(self.positions)

    def clear(self) -> None:
        self._calls = 0
        self.positions.clear()
        self.velocities.clear()

    def plot(self, env: MountainCar, path: str | Path, title: str = "Mountain car trajectory") -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        xs = np.linspace(env.min_position, env.max_position, 200)
        pos = np.asarray(self.positions, dtype=np.float64)

        fig = plt.figure(figsize=(11, 5))
        ax1 = fig.add_subplot(121)
        ax1.plot(xs, env.height(xs), color="black", linewidth=1.5)
        if pos.size:
            ax1.scatter(pos, env.height(pos), c=np.arange(pos.size), cmap="viridis", s=8)
        ax1.axvline(env.goal_position, color="green", linestyle="--", alpha=0.7, label="Goal")
        ax1.set_title(title)
        ax1.set_xlabel("Position")
        ax1.set_ylabel("Height")
        ax1.legend(loc="best")

        ax2 = fig.add_subplot(122)
        ax2.plot(pos, marker=".", linewidth=1.0)
        ax2.set_title("Position per recorded step")
        ax2.set_xlabel("Step")
        ax2.set_ylabel("Position")
        ax2.set_ylim(env.min_position, env.max_position)
        ax2.grid(True, alpha=0.3)

        fig.tight_layout()
        fig.savefig(path, dpi=120)
        plt.close(fig)
        return path
