"""
Imperative shell: configuration, the engine and its CLI
"""

from .config import EngineConfig, config_from_mapping, load_config
from .engine import StabilityEngine, initial_state
from .notify import Notifier

__all__ = [
    "EngineConfig",
    "config_from_mapping",
    "load_config",
    "StabilityEngine",
    "initial_state",
    "Notifier",
]
