"""Run a stored policy on the mountain car without training it."""

from __future__ import annotations

import argparse

from tqdm import tqdm

from mountaincar_sim.engine import MountainCar, spawn_seed
from mountaincar_sim.render import TrajectoryRecorder

from .checkpoint import DEFAULT_MODEL_KEY, FileModelStore, PolicyPersistence
from .reward import compute_reward
from .types import EpisodeStats


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Run inference with a stored mountain car policy")
    p.add_argument("--model-dir", default="models")
    p.add_argument("--model-key", default=DEFAULT_MODEL_KEY)
    p.add_argument("--max-steps", type=int, default=500)
    p.add_argument("--eps", type=float, default=0.0, help="Exploration rate used while acting")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--plot-path", default=None, help="Write the visited trajectory to this PNG")
    p.add_argument("--verbose", action="store_true")
    return p


def run_inference(args: argparse.Namespace) -> EpisodeStats:
    """Raises ModelNotFoundError when nothing is stored at --model-key."""
    persistence = PolicyPersistence(FileModelStore(args.model_dir), key=args.model_key)
    policy = persistence.load(seed=args.seed)
    model = policy.model

    env = MountainCar(seed=spawn_seed(args.seed))
    recorder = TrajectoryRecorder() if args.plot_path else None
    state = env.reset()

    print(
        f"inference_init model_key={args.model_key} hidden_layers={policy.hidden_layer_sizes()} "
        f"start_position={env.position:.4f}",
        flush=True,
    )

    total_reward = 0.0
    max_position = -100.0
    done = False
    step = 0
    for step in tqdm(range(1, args.max_steps + 1), desc="Inference steps", unit="step", disable=not args.verbose):
        if recorder is not None:
            recorder(env)
        action = model.choose_action(state, args.eps)
        done = env.step(action)
        reward = compute_reward(env.position)
        total_reward += reward
        max_position = max(max_position, env.position)
        state = env.get_state()
        if args.verbose:
            payload = env.state_payload()
            tqdm.write(
                f"step={step} action={action} position={payload['position']:.4f} "
                f"velocity={payload['velocity']:.4f} reward={reward:.0f} done={payload['done']}"
            )
        if done:
            break

    if recorder is not None:
        recorder(env)
        print(f"plot_saved path={recorder.plot(env, args.plot_path)}", flush=True)

    stats = EpisodeStats(total_reward=total_reward, max_position=max_position, steps=step, done=done)
    print(
        f"inference_done done={stats.done} steps={stats.steps} total_reward={stats.total_reward:.1f} "
        f"max_position={stats.max_position:.4f}",
        flush=True,
    )
    return stats


def main() -> None:
    args = build_parser().parse_args()
    run_inference(args)


if __name__ == "__main__":
    main()
