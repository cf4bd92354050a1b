import json
import tempfile
import unittest
from pathlib import Path

import numpy as np
import torch
import torch.nn as nn

from mountaincar_rl.checkpoint import DEFAULT_MODEL_KEY, FileModelStore, ModelNotFoundError, PolicyPersistence
from mountaincar_rl.model import build_network
from mountaincar_rl.policy import PolicyNetwork
from mountaincar_rl.types import Pretrained


class TestCheckpoint(unittest.TestCase):
    def test_save_load_roundtrip_keeps_topology_and_weights(self):
        with tempfile.TemporaryDirectory() as td:
            persistence = PolicyPersistence(FileModelStore(td), key=DEFAULT_MODEL_KEY)
            policy = PolicyNetwork([32, 16], seed=42, persistence=persistence)
            with torch.no_grad():
                for param in policy.model.network.parameters():
                    param.add_(0.123)
            policy.save_model(metadata={"foo": 1})

            loaded = persistence.load()
            self.assertEqual(loaded.hidden_layer_sizes(), policy.hidden_layer_sizes())
            self.assertIs(loaded.persistence, persistence)
            for p_ref, p_loaded in zip(policy.model.network.parameters(), loaded.model.network.parameters()):
                self.assertTrue(torch.allclose(p_ref, p_loaded))
            states = np.array([[-0.5, 0.0], [0.2, 0.03]], dtype=np.float32)
            self.assertTrue(np.allclose(policy.model.predict(states), loaded.model.predict(states)))

    def test_single_hidden_layer_roundtrip(self):
        with tempfile.TemporaryDirectory() as td:
            persistence = PolicyPersistence(FileModelStore(td), key="single")
            PolicyNetwork(64, persistence=persistence).save_model()
            self.assertEqual(persistence.load().hidden_layer_sizes(), 64)

    def test_load_missing_key_raises_not_found(self):
        with tempfile.TemporaryDirectory() as td:
            persistence = PolicyPersistence(FileModelStore(td), key=DEFAULT_MODEL_KEY)
            with self.assertRaises(ModelNotFoundError):
                persistence.load()
            self.assertIsNone(persistence.check_status())

    def test_status_and_remove(self):
        with tempfile.TemporaryDirectory() as td:
            store = FileModelStore(td)
            persistence = PolicyPersistence(store, key="mc")
            policy = PolicyNetwork([8, 8], persistence=persistence)
            policy.save_model(metadata={"iteration": 3})

            status = policy.check_stored_model_status()
            self.assertIsNotNone(status)
            self.assertEqual(status["hidden_layer_sizes"], [8, 8])
            self.assertEqual(status["metadata"], {"iteration": 3})
            self.assertIn("mc", store.list())

            policy.remove_model()
            self.assertIsNone(persistence.check_status())
            self.assertFalse((Path(td) / "mc.pt").exists())
            with self.assertRaises(ModelNotFoundError):
                persistence.remove()

    def test_list_ignores_orphan_metadata(self):
        with tempfile.TemporaryDirectory() as td:
            with open(Path(td) / "orphan.json", "w", encoding="utf-8") as f:
                json.dump({"key": "orphan"}, f)
            self.assertEqual(FileModelStore(td).list(), {})

    def test_store_returns_pretrained_source(self):
        with tempfile.TemporaryDirectory() as td:
            store = FileModelStore(td)
            policy = PolicyNetwork(8)
            store.save(policy.model.network, "k")
            self.assertIsInstance(store.load("k"), Pretrained)

    def test_invalid_key_rejected(self):
        with tempfile.TemporaryDirectory() as td:
            store = FileModelStore(td)
            with self.assertRaises(ValueError):
                store.load("../escape")
            with self.assertRaises(ValueError):
                store.save(PolicyNetwork(8).model.network, "a/b")


    def test_tanh_network_roundtrip_keeps_activation_and_predictions(self):
        torch.manual_seed(0)
        net = nn.Sequential(nn.Linear(2, 16), nn.Tanh(), nn.Linear(16, 3))
        with tempfile.TemporaryDirectory() as td:
            persistence = PolicyPersistence(FileModelStore(td), key="tanh")
            policy = PolicyNetwork(Pretrained(net), persistence=persistence)
            policy.save_model()

            loaded = persistence.load()
            self.assertEqual([type(m) for m in loaded.model.network], [nn.Linear, nn.Tanh, nn.Linear])
            states = np.array([[-0.5, 0.0], [0.2, 0.03], [-1.1, -0.05]], dtype=np.float32)
            self.assertTrue(np.allclose(policy.model.predict(states), loaded.model.predict(states)))

    def test_dropout_and_elu_network_roundtrip(self):
        torch.manual_seed(1)
        net = nn.Sequential(nn.Linear(2, 8), nn.ELU(alpha=0.5), nn.Dropout(0.2), nn.Linear(8, 3))
        with tempfile.TemporaryDirectory() as td:
            store = FileModelStore(td)
            store.save(net, "drop")
            loaded = store.load("drop").network
            self.assertEqual([type(m) for m in loaded], [nn.Linear, nn.ELU, nn.Dropout, nn.Linear])
            self.assertEqual(loaded[1].alpha, 0.5)
            self.assertEqual(loaded[2].p, 0.2)
            net.eval()
            loaded.eval()
            x = torch.tensor([[-0.4, 0.01], [0.3, -0.02]])
            with torch.no_grad():
                self.assertTrue(torch.allclose(net(x), loaded(x)))

    def test_unsupported_module_rejected(self):
        net = nn.Sequential(nn.Linear(2, 8), nn.Softplus(), nn.Linear(8, 3))
        with self.assertRaises(ValueError):
            PolicyNetwork(Pretrained(net))
        with tempfile.TemporaryDirectory() as td:
            store = FileModelStore(td)
            with self.assertRaises(ValueError):
                store.save(net, "softplus")
            self.assertEqual(store.list(), {})

    def test_payload_without_layout_loads_as_relu_network(self):
        net = build_network([8], 2, 3)
        with tempfile.TemporaryDirectory() as td:
            torch.save(
                {
                    "model_state_dict": net.state_dict(),
                    "hidden_layer_sizes": [8],
                    "num_states": 2,
                    "num_actions": 3,
                },
                Path(td) / "legacy.pt",
            )
            loaded = FileModelStore(td).load("legacy").network
            self.assertEqual([type(m) for m in loaded], [nn.Linear, nn.ReLU, nn.Linear])
            x = torch.tensor([[0.1, 0.0]])
            with torch.no_grad():
                self.assertTrue(torch.allclose(net(x), loaded(x)))


if __name__ == "__main__":
    unittest.main()
