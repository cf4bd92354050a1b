"""Policy network: value function plus replay memory, trained over many episodes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from mountaincar_sim.engine import MountainCar

from .memory import MAX_MEMORY, ReplayMemory
from .model import BATCH_SIZE, NUM_ACTIONS, NUM_STATES, ValueFunction
from .orchestrator import Orchestrator, RenderHook, StopRequested
from .types import EpisodeStats, ModelSource

if TYPE_CHECKING:
    from .checkpoint import PolicyPersistence

EpisodeCallback = Callable[[int, int], None]


class PolicyNetwork:
    """Owns one replay memory and one value function shared by every episode.

    `model_source` is a hidden layer size, a list of sizes, or a
    `FreshTopology` / `Pretrained` source. Saving and loading go through an
    injected `PolicyPersistence`.
    """

    def __init__(
        self,
        model_source: int | list[int] | ModelSource,
        max_memory: int = MAX_MEMORY,
        num_states: int = NUM_STATES,
        num_actions: int = NUM_ACTIONS,
        batch_size: int = BATCH_SIZE,
        learning_rate: float = 1e-3,
        seed: int | None = None,
        persistence: PolicyPersistence | None = None,
    ):
        self.memory = ReplayMemory(max_memory, seed=seed)
        self.model = ValueFunction(
            model_source,
            num_states=num_states,
            num_actions=num_actions,
            batch_size=batch_size,
            learning_rate=learning_rate,
            seed=seed,
        )
        self.persistence = persistence

        self.episode_stats: list[EpisodeStats] = []
        self.losses: list[float | None] = []

    @property
    def reward_history(self) -> list[float]:
        return [s.total_reward for s in self.episode_stats]

    @property
    def max_position_history(self) -> list[float]:
        return [s.max_position for s in self.episode_stats]

    def hidden_layer_sizes(self) -> int | list[int]:
        return self.model.hidden_layer_sizes()

    def train(
        self,
        mountain_car: MountainCar,
        discount_rate: float,
        num_games: int,
        max_steps_per_game: int,
        stop_requested: StopRequested | None = None,
        render_hook: RenderHook | None = None,
        on_episode_end: EpisodeCallback | None = None,
    ) -> float:
        """Play up to `num_games` episodes, one replay update after each.

        Returns the best max position reached across the episodes played,
        or -inf if none completed.
        """
        if num_games < 0:
            raise ValueError("num_games must be >= 0")
        should_stop = stop_requested or (lambda: False)

        max_position_store: list[float] = []
        if on_episode_end is not None:
            on_episode_end(0, num_games)
        for i in range(num_games):
            if should_stop():
                break
            orchestrator = Orchestrator(
                mountain_car,
                self.model,
                self.memory,
                discount_rate,
                max_steps_per_game,
                stop_requested=should_stop,
                render_hook=render_hook,
            )
            stats = orchestrator.run()
            self.losses.append(orchestrator.last_loss)
            if stats is not None:
                self.episode_stats.append(stats)
                max_position_store.append(stats.max_position)
            if on_episode_end is not None:
                on_episode_end(i + 1, num_games)

        return max(max_position_store, default=float("-inf"))

    def _require_persistence(self) -> PolicyPersistence:
        if self.persistence is None:
            raise RuntimeError("This policy has no persistence configured")
        return self.persistence

    def save_model(self, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
        return self._require_persistence().save(self, metadata)

    def remove_model(self) -> None:
        self._require_persistence().remove()

    def check_stored_model_status(self) -> dict[str, Any] | None:
        return self._require_persistence().check_status()
