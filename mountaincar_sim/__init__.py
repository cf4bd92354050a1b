"""Mountain car simulator package."""

from .engine import ACTIONS, MountainCar, spawn_seed

__all__ = ["ACTIONS", "MountainCar", "spawn_seed"]
