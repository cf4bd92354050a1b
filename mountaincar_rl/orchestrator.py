"""Single-episode driver: environment interaction, memory, and one replay update."""

from __future__ import annotations

import math
from typing import Callable

import numpy as np

from mountaincar_sim.engine import MountainCar

from .memory import ReplayMemory
from .model import ValueFunction
from .reward import compute_reward
from .types import EpisodeStats, Transition

MIN_EPSILON = 0.01
MAX_EPSILON = 0.2
LAMBDA = 0.01

RenderHook = Callable[[MountainCar], None]
StopRequested = Callable[[], bool]


def epsilon_after(steps: int) -> float:
    """Exploration rate after `steps` environment steps."""
    return MIN_EPSILON + (MAX_EPSILON - MIN_EPSILON) * math.exp(-LAMBDA * steps)


def _never() -> bool:
    return False


class Orchestrator:
    def __init__(
        self,
        mountain_car: MountainCar,
        model: ValueFunction,
        memory: ReplayMemory,
        discount_rate: float,
        max_steps_per_game: int,
        stop_requested: StopRequested | None = None,
        render_hook: RenderHook | None = None,
    ):
        if not 0.0 <= discount_rate <= 1.0:
            raise ValueError("discount_rate must be in [0, 1]")
        if max_steps_per_game < 1:
            raise ValueError("max_steps_per_game must be >= 1")

        self.mountain_car = mountain_car
        self.model = model
        self.memory = memory
        self.discount_rate = float(discount_rate)
        self.max_steps_per_game = int(max_steps_per_game)
        self.stop_requested = stop_requested or _never
        self.render_hook = render_hook

        self.eps = MAX_EPSILON
        self.steps = 0

        self.reward_store: list[float] = []
        self.max_position_store: list[float] = []
        self.last_loss: float | None = None

    def run(self) -> EpisodeStats | None:
        """Play one episode, then replay once.

        Returns the episode's stats, or None if cancellation stopped it
        before it reached a terminal state or the step limit.
        """
        self.mountain_car.set_random_state()
        state = self.mountain_car.get_state()
        total_reward = 0.0
        max_position = -100.0
        step = 0
        stats: EpisodeStats | None = None

        while step < self.max_steps_per_game and not self.stop_requested():
            if self.render_hook is not None:
                self.render_hook(self.mountain_car)

            action = self.model.choose_action(state, self.eps)
            done = self.mountain_car.step(action)
            position = self.mountain_car.position
            reward = compute_reward(position)

            next_state = None if done else self.mountain_car.get_state()
            max_position = max(max_position, position)

            self.memory.add_sample(Transition(state, action, reward, next_state))

            self.steps += 1
            self.eps = epsilon_after(self.steps)

            if next_state is not None:
                state = next_state
            total_reward += reward
            step += 1

            if done or step == self.max_steps_per_game:
                self.reward_store.append(total_reward)
                self.max_position_store.append(max_position)
                stats = EpisodeStats(total_reward=total_reward, max_position=max_position, steps=step, done=done)
                break

        self.last_loss = self.replay()
        return stats

    def build_targets(self, batch: list[Transition]) -> tuple[np.ndarray, np.ndarray]:
        """TD targets: X of shape (n, num_states), Y of shape (n, num_actions)."""
        num_states = self.model.num_states
        states = np.stack([np.asarray(t.state, dtype=np.float32).reshape(num_states) for t in batch])
        next_states = np.stack(
            [
                np.zeros(num_states, dtype=np.float32)
                if t.terminal
                else np.asarray(t.next_state, dtype=np.float32).reshape(num_states)
                for t in batch
            ]
        )

        qsa = self.model.predict(states)
        qsad = self.model.predict(next_states)

        targets = qsa.copy()
        for i, t in enumerate(batch):
            index = t.action + self.model.action_offset
            if t.terminal:
                targets[i, index] = t.reward
            else:
                targets[i, index] = t.reward + self.discount_rate * float(np.max(qsad[i]))
        return states, targets.astype(np.float32)

    def replay(self) -> float | None:
        """One gradient update from a sampled batch; None when memory is empty."""
        n_samples = min(self.model.batch_size, len(self.memory))
        if n_samples == 0:
            return None
        batch = self.memory.sample(n_samples)
        x, y = self.build_targets(batch)
        return self.model.train(x, y)
