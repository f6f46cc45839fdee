"""Data types for the reserve engine.

All types are frozen dataclasses (immutable). The shell replaces the whole
`EngineState` on every accepted operation, so a rejected operation always
leaves the previous state object untouched.

Units/conventions:
- `*_e18` prices are stable-per-token scaled by 1e18.
- `*_bps` rates are basis points (1/10_000).
- timestamps are integer seconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Mapping

from .math import BPS_SCALE, PERCENT_SCALE, require_int


@dataclass(frozen=True)
class PriceObservation:
    """One ring slot. `timestamp == 0` marks a slot that was never written."""

    timestamp: int = 0
    price_e18: int = 0

    def __post_init__(self) -> None:
        require_int(self.timestamp, name="timestamp")
        require_int(self.price_e18, name="price_e18")

    @property
    def written(self) -> bool:
        return self.timestamp > 0


@dataclass(frozen=True)
class OracleState:
    """Current price plus the fixed-capacity observation ring."""

    current_price: int
    last_update_time: int = 0
    observations: tuple[PriceObservation, ...] = ()
    write_cursor: int = 0
    last_observation_time: int = 0
    window_size: int = 12
    interval: int = 3600
    twap_enabled: bool = True
    twap_deviation_bps: int = 2000
    max_price_change_bps: int = 1000

    def __post_init__(self) -> None:
        require_int(self.current_price, name="current_price", minimum=1)
        require_int(self.last_update_time, name="last_update_time")
        require_int(self.last_observation_time, name="last_observation_time")
        require_int(self.interval, name="interval", minimum=1)
        require_int(self.twap_deviation_bps, name="twap_deviation_bps", minimum=1)
        require_int(self.max_price_change_bps, name="max_price_change_bps", minimum=1)
        if not isinstance(self.twap_enabled, bool):
            raise TypeError("twap_enabled must be a bool")
        require_int(self.window_size, name="window_size", minimum=1)
        capacity = len(self.observations)
        if capacity == 0:
            raise ValueError("observation ring must have at least one slot")
        if not (0 <= self.write_cursor < capacity):
            raise ValueError(f"write_cursor must be in [0, {capacity}): {self.write_cursor}")
        if not (1 <= self.window_size <= capacity):
            raise ValueError(f"window_size must be in [1, {capacity}]: {self.window_size}")

    @property
    def capacity(self) -> int:
        return len(self.observations)


@dataclass(frozen=True)
class FeeParameters:
    base_fee_bps: int = 300
    max_fee_bps: int = 500
    min_fee_bps: int = 100
    adjustment_factor: int = 100
    drop_threshold_bps: int = 1000
    max_drop_threshold_bps: int = 3000

    def __post_init__(self) -> None:
        for name, v in (
            ("base_fee_bps", self.base_fee_bps),
            ("max_fee_bps", self.max_fee_bps),
            ("min_fee_bps", self.min_fee_bps),
            ("drop_threshold_bps", self.drop_threshold_bps),
            ("max_drop_threshold_bps", self.max_drop_threshold_bps),
        ):
            require_int(v, name=name)
            if v > BPS_SCALE:
                raise ValueError(f"{name} must be in [0, {BPS_SCALE}]: {v}")
        require_int(self.adjustment_factor, name="adjustment_factor", minimum=1)
        if not (self.max_fee_bps >= self.base_fee_bps >= self.min_fee_bps):
            raise ValueError(
                f"fees must be ordered: max={self.max_fee_bps} >= base={self.base_fee_bps} "
                f">= min={self.min_fee_bps}"
            )
        if not self.max_drop_threshold_bps > self.drop_threshold_bps:
            raise ValueError(
                f"max_drop_threshold_bps ({self.max_drop_threshold_bps}) must exceed "
                f"drop_threshold_bps ({self.drop_threshold_bps})"
            )


@dataclass(frozen=True)
class ReserveState:
    baseline_price: int
    total_reserves: int = 0
    total_conversions: int = 0
    total_stabilized: int = 0
    reserve_ratio_target_bps: int = 5000
    min_reserve_ratio_bps: int = 2000
    current_fee_bps: int = 300
    low_value_mode: bool = False
    value_threshold_bps: int = 1000
    burn_to_reserve_bps: int = 1000
    platform_fee_to_reserve_bps: int = 2000

    def __post_init__(self) -> None:
        require_int(self.baseline_price, name="baseline_price", minimum=1)
        require_int(self.total_reserves, name="total_reserves")
        require_int(self.total_conversions, name="total_conversions")
        require_int(self.total_stabilized, name="total_stabilized")
        require_int(self.current_fee_bps, name="current_fee_bps")
        for name, v in (
            ("reserve_ratio_target_bps", self.reserve_ratio_target_bps),
            ("min_reserve_ratio_bps", self.min_reserve_ratio_bps),
            ("value_threshold_bps", self.value_threshold_bps),
            ("burn_to_reserve_bps", self.burn_to_reserve_bps),
            ("platform_fee_to_reserve_bps", self.platform_fee_to_reserve_bps),
        ):
            require_int(v, name=name)
            if v > BPS_SCALE:
                raise ValueError(f"{name} must be in [0, {BPS_SCALE}]: {v}")
        if self.min_reserve_ratio_bps > self.reserve_ratio_target_bps:
            raise ValueError("min_reserve_ratio_bps must be <= reserve_ratio_target_bps")
        if not isinstance(self.low_value_mode, bool):
            raise TypeError("low_value_mode must be a bool")


@dataclass(frozen=True)
class RateLimitConfig:
    max_daily_volume: int
    max_single_amount: int
    min_interval: int = 60
    cooldown_period: int = 86_400
    enabled: bool = True

    def __post_init__(self) -> None:
        require_int(self.max_daily_volume, name="max_daily_volume", minimum=1)
        require_int(self.max_single_amount, name="max_single_amount", minimum=1)
        require_int(self.min_interval, name="min_interval")
        require_int(self.cooldown_period, name="cooldown_period", minimum=1)
        if not isinstance(self.enabled, bool):
            raise TypeError("enabled must be a bool")


@dataclass(frozen=True)
class RateLimitEntry:
    """Per-caller guard state. `last_action_time == 0` means the caller never acted."""

    last_action_time: int = 0
    daily_volume: int = 0
    day_anchor: int = 0
    cooldown_until: int = 0

    def __post_init__(self) -> None:
        for name, v in (
            ("last_action_time", self.last_action_time),
            ("daily_volume", self.daily_volume),
            ("day_anchor", self.day_anchor),
            ("cooldown_until", self.cooldown_until),
        ):
            require_int(v, name=name)


@unique
class BreakerStatus(Enum):
    NORMAL = "normal"
    PAUSED = "paused"
    IN_RECOVERY = "in_recovery"


@dataclass(frozen=True)
class BreakerState:
    status: BreakerStatus = BreakerStatus.NORMAL
    paused_at: int = 0
    recovery_approvals: frozenset[str] = frozenset()
    required_approvals: int = 3
    critical_threshold_percent: int = 50

    def __post_init__(self) -> None:
        if not isinstance(self.status, BreakerStatus):
            raise TypeError("status must be a BreakerStatus")
        require_int(self.paused_at, name="paused_at")
        require_int(self.required_approvals, name="required_approvals", minimum=1)
        require_int(self.critical_threshold_percent, name="critical_threshold_percent", minimum=1)
        if self.critical_threshold_percent > 10 * PERCENT_SCALE:
            raise ValueError(
                f"critical_threshold_percent must be <= {10 * PERCENT_SCALE}: "
                f"{self.critical_threshold_percent}"
            )


@dataclass(frozen=True)
class EngineState:
    """Complete engine state. Owned exclusively by `StabilityEngine`."""

    oracle: OracleState
    fees: FeeParameters
    reserve: ReserveState
    rate_limit_config: RateLimitConfig
    breaker: BreakerState = BreakerState()
    rate_limits: Mapping[str, RateLimitEntry] = field(default_factory=dict)


@unique
class Event(Enum):
    PRICE_UPDATED = "PriceUpdated"
    OBSERVATION_RECORDED = "ObservationRecorded"
    FEE_UPDATED = "FeeUpdated"
    LOW_VALUE_MODE_CHANGED = "LowValueModeChanged"
    CONVERTED = "Converted"
    SWAPPED = "Swapped"
    RESERVES_ADDED = "ReservesAdded"
    RESERVES_WITHDRAWN = "ReservesWithdrawn"
    BURN_PROCESSED = "BurnProcessed"
    PLATFORM_FEES_PROCESSED = "PlatformFeesProcessed"
    SUSPICIOUS_ACTIVITY = "SuspiciousActivity"
    CIRCUIT_BREAKER_TRIGGERED = "CircuitBreakerTriggered"
    EMERGENCY_PAUSED = "EmergencyPaused"
    RESUMED = "Resumed"
    RECOVERY_INITIATED = "RecoveryInitiated"
    RECOVERY_APPROVED = "RecoveryApproved"
    RECOVERY_COMPLETED = "RecoveryCompleted"
    PARAMETERS_UPDATED = "ParametersUpdated"
    COOLDOWN_SET = "CooldownSet"


@dataclass(frozen=True)
class EngineEvent:
    event: Event
    timestamp: int
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConversionQuote:
    """Result of the conversion formula. Shared by `simulate_conversion` and `convert`."""

    expected_value: int
    fee_amount: int
    after_fee: int
    baseline_value: int
    subsidy: int
    final_amount: int
    fee_bps: int
    price_e18: int


@dataclass(frozen=True)
class Transition:
    """An accepted pure transition: the next state plus the events it emits."""

    state: EngineState
    events: tuple[EngineEvent, ...] = ()
