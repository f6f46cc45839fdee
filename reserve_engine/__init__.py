"""
Price-stabilization reserve engine for a utility token.
"""

from .integration.config import EngineConfig, load_config
from .integration.engine import StabilityEngine

__all__ = [
    "EngineConfig",
    "load_config",
    "StabilityEngine",
]
