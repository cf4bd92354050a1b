"""DQN training/inference package for the mountain car."""

from .checkpoint import DEFAULT_MODEL_KEY, FileModelStore, ModelNotFoundError, PolicyPersistence
from .memory import ReplayMemory
from .model import ValueFunction
from .orchestrator import Orchestrator
from .policy import PolicyNetwork
from .types import EpisodeStats, FreshTopology, Pretrained, Transition

__all__ = [
    "DEFAULT_MODEL_KEY",
    "EpisodeStats",
    "FileModelStore",
    "FreshTopology",
    "ModelNotFoundError",
    "Orchestrator",
    "PolicyNetwork",
    "PolicyPersistence",
    "Pretrained",
    "ReplayMemory",
    "Transition",
    "ValueFunction",
]
