"""Mountain car system simulator."""

from __future__ import annotations

import math
from typing import Any

import numpy as np

ACTIONS = (-1, 0, 1)


def spawn_seed(seed: int | None) -> np.random.SeedSequence | None:
    """Child seed for the simulator, independent of generators seeded with `seed` itself."""
    if seed is None:
        return None
    return np.random.SeedSequence(seed).spawn(1)[0]


class MountainCar:
    """Car in a valley, driven by a leftward, rightward or no force.

    State is `(position, velocity)`; only the sign of the action matters.
    """

    def __init__(self, seed: int | np.random.SeedSequence | None = None):
        # Constants that characterize the system.
        self.min_position = -1.2
        self.max_position = 0.6
        self.max_speed = 0.07
        self.goal_position = 0.5
        self.goal_velocity = 0.0
        self.gravity = 0.0025
        self.force = 0.0013
        self.car_width = 0.2
        self.car_height = 0.1

        self._rng = np.random.default_rng(seed)
        self.position = 0.0
        self.velocity = 0.0
        self.set_random_state()

    def set_random_state(self) -> None:
        self.position = float(self._rng.random()) / 5 - 0.6
        self.velocity = 0.0

    def reset(self) -> np.ndarray:
        self.set_random_state()
        return self.get_state()

    def set_state(self, position: float, velocity: float = 0.0) -> np.ndarray:
        self.position = min(max(float(position), self.min_position), self.max_position)
        self.velocity = min(max(float(velocity), -self.max_speed), self.max_speed)
        return self.get_state()

    def get_state(self) -> np.ndarray:
        """Current state as a float32 vector of shape (2,)."""
        return np.array([self.position, self.velocity], dtype=np.float32)

    def step(self, action: int) -> bool:
        """Advance one tick. Returns whether the simulation is done."""
        if action not in ACTIONS:
            raise ValueError(f"action must be one of {ACTIONS}, got {action!r}")

        self.velocity += action * self.force - math.cos(3 * self.position) * self.gravity
        self.velocity = min(max(self.velocity, -self.max_speed), self.max_speed)

        self.position += self.velocity
        self.position = min(max(self.position, self.min_position), self.max_position)

        # Inelastic wall on the left.
        if self.position == self.min_position and self.velocity < 0:
            self.velocity = 0.0

        return self.is_done()

    def is_done(self) -> bool:
        return self.position >= self.goal_position and self.velocity >= self.goal_velocity

    @staticmethod
    def height(position: float | np.ndarray) -> float | np.ndarray:
        return np.sin(3 * np.asarray(position)) * 0.45 + 0.55

    def state_payload(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "velocity": self.velocity,
            "done": self.is_done(),
        }
