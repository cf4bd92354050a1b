import math
import unittest

import numpy as np

from mountaincar_rl.memory import ReplayMemory
from mountaincar_rl.model import ValueFunction
from mountaincar_rl.orchestrator import LAMBDA, MAX_EPSILON, MIN_EPSILON, Orchestrator, epsilon_after
from mountaincar_rl.types import Transition
from mountaincar_sim.engine import MountainCar


class RecordingValueFunction(ValueFunction):
    """Keeps the batches handed to train()."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.batches = []

    def train(self, x_batch, y_batch):
        self.batches.append((np.array(x_batch), np.array(y_batch)))
        return super().train(x_batch, y_batch)


class TestEpsilonSchedule(unittest.TestCase):
    def test_formula(self):
        for k in (0, 1, 10, 250):
            expected = MIN_EPSILON + (MAX_EPSILON - MIN_EPSILON) * math.exp(-LAMBDA * k)
            self.assertAlmostEqual(epsilon_after(k), expected, places=12)

    def test_strictly_decreasing_towards_min(self):
        values = [epsilon_after(k) for k in range(2000)]
        self.assertEqual(values[0], MAX_EPSILON)
        for a, b in zip(values[:-1], values[1:]):
            self.assertLess(b, a)
        self.assertGreater(values[-1], MIN_EPSILON)
        self.assertAlmostEqual(values[-1], MIN_EPSILON, places=6)

    def test_orchestrator_eps_follows_steps(self):
        env = MountainCar(seed=0)
        orch = Orchestrator(env, ValueFunction(8, seed=0), ReplayMemory(500), 0.95, 30)
        self.assertEqual(orch.eps, MAX_EPSILON)
        orch.run()
        self.assertEqual(orch.steps, 30)
        self.assertAlmostEqual(orch.eps, epsilon_after(30), places=12)


class TestOrchestratorEpisode(unittest.TestCase):
    def test_fifty_step_episode(self):
        env = MountainCar(seed=42)
        memory = ReplayMemory(max_memory=500, seed=42)
        model = RecordingValueFunction(16, batch_size=100, seed=42)
        orch = Orchestrator(env, model, memory, discount_rate=0.95, max_steps_per_game=50)

        stats = orch.run()

        self.assertIsNotNone(stats)
        self.assertTrue(stats.done or stats.steps == 50)
        self.assertEqual(len(memory), stats.steps)
        self.assertEqual(orch.reward_store, [stats.total_reward])
        self.assertEqual(orch.max_position_store, [stats.max_position])
        # Memory held fewer transitions than batch_size, so replay used all of them.
        self.assertEqual(len(model.batches), 1)
        x, y = model.batches[0]
        self.assertEqual(x.shape, (stats.steps, 2))
        self.assertEqual(y.shape, (stats.steps, 3))
        self.assertIsNotNone(orch.last_loss)

    def test_transitions_chain_states(self):
        env = MountainCar(seed=5)
        memory = ReplayMemory(max_memory=500)
        orch = Orchestrator(env, ValueFunction(8, seed=5), memory, 0.9, 20)
        orch.run()
        samples = memory.samples
        for prev, nxt in zip(samples[:-1], samples[1:]):
            self.assertIsNotNone(prev.next_state)
            self.assertTrue(np.array_equal(prev.next_state, nxt.state))
        for t in samples:
            self.assertIn(t.action, (-1, 0, 1))

    def test_render_hook_called_every_step(self):
        env = MountainCar(seed=1)
        seen = []
        orch = Orchestrator(
            env, ValueFunction(8, seed=1), ReplayMemory(500), 0.9, 15, render_hook=lambda e: seen.append(e.position)
        )
        stats = orch.run()
        self.assertEqual(len(seen), stats.steps)

    def test_episode_ends_when_done(self):
        env = MountainCar(seed=0)
        memory = ReplayMemory(500)
        orch = Orchestrator(env, ValueFunction(8, seed=0), memory, 0.9, 100)
        orch.mountain_car.set_random_state = lambda: env.set_state(0.49, 0.07)
        stats = orch.run()
        self.assertTrue(stats.done)
        self.assertEqual(stats.steps, 1)
        self.assertIsNone(memory.samples[-1].next_state)
        self.assertEqual(stats.total_reward, 5.0)

    def test_cancellation_still_replays(self):
        env = MountainCar(seed=3)
        memory = ReplayMemory(500)
        model = RecordingValueFunction(8, batch_size=10, seed=3)
        calls = {"n": 0}

        def stop():
            calls["n"] += 1
            return calls["n"] > 5

        orch = Orchestrator(env, model, memory, 0.9, 100, stop_requested=stop)
        stats = orch.run()
        self.assertIsNone(stats)
        self.assertEqual(len(memory), 5)
        self.assertEqual(orch.reward_store, [])
        self.assertEqual(len(model.batches), 1)

    def test_replay_skipped_on_empty_memory(self):
        model = RecordingValueFunction(8, seed=0)
        orch = Orchestrator(MountainCar(seed=0), model, ReplayMemory(500), 0.9, 10, stop_requested=lambda: True)
        self.assertIsNone(orch.run())
        self.assertIsNone(orch.last_loss)
        self.assertEqual(model.batches, [])

    def test_replay_uses_full_batch_when_available(self):
        memory = ReplayMemory(500, seed=0)
        for i in range(300):
            s = np.array([-0.5 + i * 1e-3, 0.0], dtype=np.float32)
            memory.add_sample(Transition(s, 0, 0.0, s.copy()))
        model = RecordingValueFunction(8, batch_size=100, seed=0)
        orch = Orchestrator(MountainCar(seed=0), model, memory, 0.9, 10)
        orch.replay()
        x, y = model.batches[0]
        self.assertEqual(x.shape, (100, 2))
        self.assertEqual(y.shape, (100, 3))


class TestBuildTargets(unittest.TestCase):
    def setUp(self):
        self.model = ValueFunction(8, seed=0)
        self.orch = Orchestrator(MountainCar(seed=0), self.model, ReplayMemory(500), 0.9, 10)

    def test_terminal_target_is_reward(self):
        s = np.array([0.45, 0.02], dtype=np.float32)
        batch = [Transition(s, 1, 5.0, None)]
        x, y = self.orch.build_targets(batch)
        q = self.model.predict(s)
        self.assertEqual(float(y[0, 2]), 5.0)
        self.assertAlmostEqual(float(y[0, 0]), float(q[0]), places=6)
        self.assertAlmostEqual(float(y[0, 1]), float(q[1]), places=6)
        self.assertTrue(np.array_equal(x[0], s))

    def test_non_terminal_target_is_discounted(self):
        s = np.array([-0.5, 0.0], dtype=np.float32)
        ns = np.array([-0.49, 0.01], dtype=np.float32)
        batch = [Transition(s, -1, 0.0, ns), Transition(s, 0, 5.0, ns)]
        _, y = self.orch.build_targets(batch)
        q = self.model.predict(s)
        q_next = self.model.predict(ns)
        expected = 0.9 * float(np.max(q_next))
        self.assertAlmostEqual(float(y[0, 0]), expected, places=5)
        self.assertAlmostEqual(float(y[0, 1]), float(q[1]), places=6)
        self.assertAlmostEqual(float(y[1, 1]), 5.0 + expected, places=5)
        self.assertAlmostEqual(float(y[1, 2]), float(q[2]), places=6)


if __name__ == "__main__":
    unittest.main()
