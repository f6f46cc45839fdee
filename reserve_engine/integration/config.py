"""
Engine configuration.

Every tunable constant lives in `EngineConfig` and is passed to the engine's
constructor; nothing reads module globals at runtime. Configs can be built in
code or loaded from a YAML mapping (see `config/engine.example.yaml`).
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from ..core.math import BPS_SCALE, PRICE_SCALE


@dataclass(frozen=True)
class EngineConfig:
    # Prices (1e18-scaled stable per token)
    initial_price: int = PRICE_SCALE
    baseline_price: int = PRICE_SCALE

    # Observation ring / TWAP
    ring_size: int = 24
    twap_window_size: int = 12
    observation_interval: int = 3600
    twap_enabled: bool = True
    twap_deviation_bps: int = 2000
    max_price_change_bps: int = 1000

    # Fee curve
    base_fee_bps: int = 300
    max_fee_bps: int = 500
    min_fee_bps: int = 100
    fee_adjustment_factor: int = 100
    drop_threshold_bps: int = 1000
    max_drop_threshold_bps: int = 3000

    # Reserve ledger
    initial_reserves: int = 0
    reserve_ratio_target_bps: int = 5000
    min_reserve_ratio_bps: int = 2000
    value_threshold_bps: int = 1000
    burn_to_reserve_bps: int = 1000
    platform_fee_to_reserve_bps: int = 2000

    # Circuit breaker
    critical_threshold_percent: int = 50
    required_approvals: int = 3

    # Flash-loan guard
    max_daily_volume: int = 1_000_000 * PRICE_SCALE
    max_single_amount: int = 100_000 * PRICE_SCALE
    min_action_interval: int = 60
    cooldown_period: int = 86_400
    flash_loan_protection: bool = True

    def __post_init__(self) -> None:
        for f in fields(self):
            v = getattr(self, f.name)
            if f.type in ("bool", bool):
                if not isinstance(v, bool):
                    raise TypeError(f"{f.name} must be a bool")
                continue
            if not isinstance(v, int) or isinstance(v, bool):
                raise TypeError(f"{f.name} must be an int")
            if v < 0:
                raise ValueError(f"{f.name} must be non-negative: {v}")
        for name in ("initial_price", "baseline_price", "ring_size", "observation_interval",
                     "twap_window_size", "required_approvals", "critical_threshold_percent"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        for name in ("twap_deviation_bps", "max_price_change_bps", "base_fee_bps", "max_fee_bps",
                     "min_fee_bps", "drop_threshold_bps", "max_drop_threshold_bps",
                     "reserve_ratio_target_bps", "min_reserve_ratio_bps", "value_threshold_bps",
                     "burn_to_reserve_bps", "platform_fee_to_reserve_bps"):
            v = getattr(self, name)
            if v > BPS_SCALE:
                raise ValueError(f"{name} must be in [0, {BPS_SCALE}]: {v}")
        if self.twap_window_size > self.ring_size:
            raise ValueError(
                f"twap_window_size ({self.twap_window_size}) must be <= ring_size ({self.ring_size})"
            )
        if not (self.max_fee_bps >= self.base_fee_bps >= self.min_fee_bps):
            raise ValueError("fees must satisfy max_fee_bps >= base_fee_bps >= min_fee_bps")
        if self.max_drop_threshold_bps <= self.drop_threshold_bps:
            raise ValueError("max_drop_threshold_bps must exceed drop_threshold_bps")
        if self.min_reserve_ratio_bps > self.reserve_ratio_target_bps:
            raise ValueError("min_reserve_ratio_bps must be <= reserve_ratio_target_bps")


_FIELD_NAMES = frozenset(f.name for f in fields(EngineConfig))


def config_from_mapping(raw: Mapping[str, Any]) -> EngineConfig:
    """Build an `EngineConfig` from a mapping; unknown keys are rejected."""
    if not isinstance(raw, Mapping):
        raise TypeError("config must be a mapping")
    unknown = sorted(set(raw) - _FIELD_NAMES)
    if unknown:
        raise ValueError(f"unknown config keys: {', '.join(unknown)}")
    return EngineConfig(**dict(raw))


def load_config(path: str | Path) -> EngineConfig:
    """Load an `EngineConfig` from a YAML file (top-level mapping, optional `engine:` section)."""
    obj = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if obj is None:
        return EngineConfig()
    if not isinstance(obj, Mapping):
        raise TypeError("config YAML must be a mapping")
    section = obj.get("engine", obj)
    if not isinstance(section, Mapping):
        raise TypeError("config `engine` section must be a mapping")
    return config_from_mapping(section)
