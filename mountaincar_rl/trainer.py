"""DQN trainer for the mountain car with experience replay."""

from __future__ import annotations

import argparse
import time
from datetime import datetime
from pathlib import Path

import matplotlib
import matplotlib.pyplot as plt
import numpy as np
import torch
from torch.utils.tensorboard import SummaryWriter
from tqdm import tqdm

from mountaincar_sim.engine import MountainCar, spawn_seed
from mountaincar_sim.render import TrajectoryRecorder

from .checkpoint import DEFAULT_MODEL_KEY, FileModelStore, PolicyPersistence
from .memory import MAX_MEMORY
from .model import BATCH_SIZE
from .policy import PolicyNetwork

matplotlib.use("Agg")


class Trainer:
    def __init__(self, args: argparse.Namespace):
        self.args = args
        if args.iterations < 1:
            raise ValueError("--iterations must be >= 1")
        if args.games_per_iteration < 1:
            raise ValueError("--games-per-iteration must be >= 1")
        if args.max_steps_per_game < 1:
            raise ValueError("--max-steps-per-game must be >= 1")
        if not 0.0 <= args.discount_rate <= 1.0:
            raise ValueError("--discount-rate must be in [0, 1]")
        if args.time_limit is not None and args.time_limit <= 0:
            raise ValueError("--time-limit must be > 0")

        if args.seed is not None:
            torch.manual_seed(args.seed)

        self.env = MountainCar(seed=spawn_seed(args.seed))
        self.persistence = PolicyPersistence(FileModelStore(args.model_dir), key=args.model_key)
        self._episode_bar: tqdm | None = None
        self._deadline: float | None = None
        self._episodes_logged = 0
        self.recorder = TrajectoryRecorder(every=10) if args.plot_dir else None

        self.policy, resumed = self._load_or_init_policy()

        self.run_timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.exp_name = getattr(args, "exp_name", None)
        if self.exp_name:
            self.tb_logdir = str(Path(args.tensorboard_logdir) / self.exp_name / f"run_{self.run_timestamp}")
        else:
            self.tb_logdir = str(Path(args.tensorboard_logdir) / f"run_{self.run_timestamp}")
        self.tb_writer = SummaryWriter(log_dir=self.tb_logdir)

        self._log(
            "trainer_init "
            f"iterations={args.iterations} games_per_iteration={args.games_per_iteration} "
            f"max_steps_per_game={args.max_steps_per_game} discount_rate={args.discount_rate} "
            f"lr={args.lr} hidden_layers={self.policy.hidden_layer_sizes()} "
            f"max_memory={args.max_memory} batch_size={args.batch_size} "
            f"model_dir={args.model_dir} model_key={args.model_key} "
            f"tensorboard_logdir={self.tb_logdir}"
        )
        if resumed:
            self._log(f"checkpoint_status resumed from key={args.model_key}")
        else:
            self._log("checkpoint_status initialized fresh network")

    def _load_or_init_policy(self) -> tuple[PolicyNetwork, bool]:
        kwargs = dict(
            max_memory=self.args.max_memory,
            batch_size=self.args.batch_size,
            learning_rate=self.args.lr,
            seed=self.args.seed,
        )
        if self.args.resume:
            return self.persistence.load(**kwargs), True
        return PolicyNetwork(list(self.args.hidden_layers), persistence=self.persistence, **kwargs), False

    def _log(self, message: str) -> None:
        ts = datetime.now().strftime("%H:%M:%S")
        text = f"[{ts}] {message}"
        if self._episode_bar is not None:
            self._episode_bar.write(text)
        else:
            print(text, flush=True)

    def _stop_requested(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def _on_episode_end(self, index: int, total: int) -> None:
        # index 0 is the call made before the first episode of an iteration.
        if index == 0 or self._episode_bar is None:
            return
        while self._episodes_logged < len(self.policy.episode_stats):
            stats = self.policy.episode_stats[self._episodes_logged]
            loss = self.policy.losses[-1]
            ep = self._episodes_logged
            self.tb_writer.add_scalar("train/total_reward", stats.total_reward, ep)
            self.tb_writer.add_scalar("train/max_position", stats.max_position, ep)
            self.tb_writer.add_scalar("train/steps", stats.steps, ep)
            if loss is not None:
                self.tb_writer.add_scalar("train/replay_loss", loss, ep)
            self._episodes_logged += 1

            if self.args.log_interval > 0 and self._episodes_logged % self.args.log_interval == 0:
                self._log(
                    "episode_stats "
                    f"episode={self._episodes_logged} steps={stats.steps} done={stats.done} "
                    f"total_reward={stats.total_reward:.1f} max_position={stats.max_position:.4f} "
                    f"loss={'N/A' if loss is None else f'{loss:.4f}'}"
                )
            self._episode_bar.set_postfix(
                {
                    "steps": stats.steps,
                    "done": stats.done,
                    "ret": f"{stats.total_reward:.1f}",
                    "max_pos": f"{stats.max_position:.3f}",
                }
            )
        self._episode_bar.update(1)

    def _plot_history(self, output_dir: Path) -> Path:
        rewards = np.asarray(self.policy.reward_history, dtype=np.float64)
        positions = np.asarray(self.policy.max_position_history, dtype=np.float64)
        episodes = np.arange(1, rewards.size + 1)

        fig = plt.figure(figsize=(11, 5))
        ax1 = fig.add_subplot(121)
        ax1.plot(episodes, rewards, marker="o", linewidth=1.5)
        ax1.set_title("Total reward per episode")
        ax1.set_xlabel("Episode")
        ax1.set_ylabel("Total reward")
        ax1.grid(True, alpha=0.3)

        ax2 = fig.add_subplot(122)
        ax2.plot(episodes, positions, marker="o", linewidth=1.5)
        ax2.axhline(self.env.goal_position, color="green", linestyle="--", alpha=0.7, label="Goal")
        ax2.set_title("Max position per episode")
        ax2.set_xlabel("Episode")
        ax2.set_ylabel("Max position")
        ax2.grid(True, alpha=0.3)
        ax2.legend(loc="best")

        path = output_dir / f"{self.exp_name or 'run'}_{self.run_timestamp}_history.png"
        fig.tight_layout()
        fig.savefig(path, dpi=160)
        plt.close(fig)
        return path

    def run(self) -> float:
        """Train for all iterations; returns the best max position reached."""
        args = self.args
        total_games = int(args.iterations) * int(args.games_per_iteration)
        if args.time_limit is not None:
            self._deadline = time.monotonic() + float(args.time_limit)

        best = float("-inf")
        try:
            self._episode_bar = tqdm(
                total=total_games,
                desc="DQN episodes",
                unit="ep",
                mininterval=1.0,
                maxinterval=5.0,
            )

            for iteration in range(1, int(args.iterations) + 1):
                if self._stop_requested():
                    self._log(f"time_limit reached before iteration={iteration}")
                    break
                iteration_best = self.policy.train(
                    self.env,
                    args.discount_rate,
                    args.games_per_iteration,
                    args.max_steps_per_game,
                    stop_requested=self._stop_requested,
                    render_hook=self.recorder,
                    on_episode_end=self._on_episode_end,
                )
                best = max(best, iteration_best)
                self.tb_writer.add_scalar("train/iteration_best_max_position", iteration_best, iteration)
                self._log(
                    f"iteration_done iteration={iteration} best_max_position={iteration_best:.4f} "
                    f"memory={len(self.policy.memory)}"
                )

                if not args.no_save:
                    info = self.policy.save_model(
                        metadata={
                            "iteration": iteration,
                            "episodes": len(self.policy.episode_stats),
                            "discount_rate": args.discount_rate,
                            "lr": args.lr,
                            "best_max_position": best,
                        }
                    )
                    self._log(f"checkpoint_saved key={info['key']} date_saved={info['date_saved']}")

            if args.plot_dir:
                plot_dir = Path(args.plot_dir)
                plot_dir.mkdir(parents=True, exist_ok=True)
                self._log(f"plot_saved path={self._plot_history(plot_dir)}")
                if self.recorder is not None and len(self.recorder):
                    path = self.recorder.plot(self.env, plot_dir / f"{self.exp_name or 'run'}_{self.run_timestamp}_trajectory.png")
                    self._log(f"plot_saved path={path}")
        finally:
            self.tb_writer.flush()
            self.tb_writer.close()
            if self._episode_bar is not None:
                self._episode_bar.close()
                self._episode_bar = None

        self._log(f"training_done episodes={len(self.policy.episode_stats)} best_max_position={best:.4f}")
        return best


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Train a DQN policy for the mountain car")
    p.add_argument("--hidden-layers", type=int, nargs="+", default=[128], help="Hidden layer sizes of a fresh network")
    p.add_argument("--iterations", type=int, default=20, help="Training iterations; the model is saved after each")
    p.add_argument("--games-per-iteration", type=int, default=20)
    p.add_argument("--max-steps-per-game", type=int, default=500)
    p.add_argument("--discount-rate", type=float, default=0.95)
    p.add_argument("--lr", type=float, default=1e-3)
    p.add_argument("--max-memory", type=int, default=MAX_MEMORY)
    p.add_argument("--batch-size", type=int, default=BATCH_SIZE)
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--model-dir", default="models")
    p.add_argument("--model-key", default=DEFAULT_MODEL_KEY)
    p.add_argument("--resume", action="store_true", help="Continue from the stored model at --model-key; fails if none is stored")
    p.add_argument("--no-save", action="store_true", help="Do not save the model after each iteration")
    p.add_argument("--time-limit", type=float, default=None, help="Stop training after this many seconds")
    p.add_argument("--tensorboard-logdir", default="runs/mountain_car")
    p.add_argument("--exp-name", type=str, default=None, help="Optional experiment name for TensorBoard log grouping")
    p.add_argument("--plot-dir", default=None, help="Write reward/position plots here at the end of training")
    p.add_argument("--log-interval", type=int, default=10)
    return p


def main() -> None:
    args = build_parser().parse_args()
    trainer = Trainer(args)
    trainer.run()


if __name__ == "__main__":
    main()
