"""
Engine state snapshots.

Goals:
- Deterministic JSON serialization of the full `EngineState` (price ring,
  reserve ledger, rate limits, breaker) so nothing lives only in memory.
- Round-trippable: `state_from_dict(state_to_dict(s)) == s`.
- Explicit versioning and a content commitment checked on load.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping

from ..core.types import (
    BreakerState,
    BreakerStatus,
    EngineState,
    FeeParameters,
    OracleState,
    PriceObservation,
    RateLimitConfig,
    RateLimitEntry,
    ReserveState,
)
from .canonical import canonical_json_bytes, domain_sep_bytes, sha256_hex


ENGINE_SNAPSHOT_VERSION = 1


def _require_mapping(value: Any, *, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise TypeError(f"{name} must be an object")
    return value


def _require_int(value: Any, *, name: str, non_negative: bool = True) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")
    if non_negative and value < 0:
        raise ValueError(f"{name} must be non-negative")
    return int(value)


def _require_bool(value: Any, *, name: str) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"{name} must be a bool")
    return value


def _ints(obj: Mapping[str, Any], names: tuple[str, ...], *, section: str) -> Dict[str, int]:
    return {n: _require_int(obj[n], name=f"{section}.{n}") for n in names}


# ---------------------------------------------------------------------------
# Dict encoding
# ---------------------------------------------------------------------------

def state_to_dict(state: EngineState) -> Dict[str, Any]:
    """Serialize an `EngineState` to plain JSON-compatible data."""
    o = state.oracle
    r = state.reserve
    f = state.fees
    c = state.rate_limit_config
    b = state.breaker
    return {
        "oracle": {
            "current_price": o.current_price,
            "last_update_time": o.last_update_time,
            "observations": [[obs.timestamp, obs.price_e18] for obs in o.observations],
            "write_cursor": o.write_cursor,
            "last_observation_time": o.last_observation_time,
            "window_size": o.window_size,
            "interval": o.interval,
            "twap_enabled": o.twap_enabled,
            "twap_deviation_bps": o.twap_deviation_bps,
            "max_price_change_bps": o.max_price_change_bps,
        },
        "fees": {
            "base_fee_bps": f.base_fee_bps,
            "max_fee_bps": f.max_fee_bps,
            "min_fee_bps": f.min_fee_bps,
            "adjustment_factor": f.adjustment_factor,
            "drop_threshold_bps": f.drop_threshold_bps,
            "max_drop_threshold_bps": f.max_drop_threshold_bps,
        },
        "reserve": {
            "baseline_price": r.baseline_price,
            "total_reserves": r.total_reserves,
            "total_conversions": r.total_conversions,
            "total_stabilized": r.total_stabilized,
            "reserve_ratio_target_bps": r.reserve_ratio_target_bps,
            "min_reserve_ratio_bps": r.min_reserve_ratio_bps,
            "current_fee_bps": r.current_fee_bps,
            "low_value_mode": r.low_value_mode,
            "value_threshold_bps": r.value_threshold_bps,
            "burn_to_reserve_bps": r.burn_to_reserve_bps,
            "platform_fee_to_reserve_bps": r.platform_fee_to_reserve_bps,
        },
        "rate_limit_config": {
            "max_daily_volume": c.max_daily_volume,
            "max_single_amount": c.max_single_amount,
            "min_interval": c.min_interval,
            "cooldown_period": c.cooldown_period,
            "enabled": c.enabled,
        },
        "rate_limits": [
            {
                "address": address,
                "last_action_time": e.last_action_time,
                "daily_volume": e.daily_volume,
                "day_anchor": e.day_anchor,
                "cooldown_until": e.cooldown_until,
            }
            for address, e in sorted(state.rate_limits.items())
        ],
        "breaker": {
            "status": b.status.value,
            "paused_at": b.paused_at,
            "recovery_approvals": sorted(b.recovery_approvals),
            "required_approvals": b.required_approvals,
            "critical_threshold_percent": b.critical_threshold_percent,
        },
    }


def state_from_dict(d: Mapping[str, Any]) -> EngineState:
    """Deserialize a dict produced by `state_to_dict`. Raises KeyError on missing fields."""
    o = _require_mapping(d["oracle"], name="oracle")
    raw_obs = o["observations"]
    if not isinstance(raw_obs, list) or not raw_obs:
        raise TypeError("oracle.observations must be a non-empty list")
    observations = []
    for i, item in enumerate(raw_obs):
        if not isinstance(item, list) or len(item) != 2:
            raise TypeError(f"oracle.observations[{i}] must be [timestamp, price]")
        observations.append(
            PriceObservation(
                timestamp=_require_int(item[0], name=f"oracle.observations[{i}].timestamp"),
                price_e18=_require_int(item[1], name=f"oracle.observations[{i}].price"),
            )
        )
    oracle = OracleState(
        observations=tuple(observations),
        twap_enabled=_require_bool(o["twap_enabled"], name="oracle.twap_enabled"),
        **_ints(
            o,
            (
                "current_price", "last_update_time", "write_cursor", "last_observation_time",
                "window_size", "interval", "twap_deviation_bps", "max_price_change_bps",
            ),
            section="oracle",
        ),
    )

    f = _require_mapping(d["fees"], name="fees")
    fees = FeeParameters(
        **_ints(
            f,
            (
                "base_fee_bps", "max_fee_bps", "min_fee_bps", "adjustment_factor",
                "drop_threshold_bps", "max_drop_threshold_bps",
            ),
            section="fees",
        )
    )

    r = _require_mapping(d["reserve"], name="reserve")
    reserve = ReserveState(
        low_value_mode=_require_bool(r["low_value_mode"], name="reserve.low_value_mode"),
        **_ints(
            r,
            (
                "baseline_price", "total_reserves", "total_conversions", "total_stabilized",
                "reserve_ratio_target_bps", "min_reserve_ratio_bps", "current_fee_bps",
                "value_threshold_bps", "burn_to_reserve_bps", "platform_fee_to_reserve_bps",
            ),
            section="reserve",
        ),
    )

    c = _require_mapping(d["rate_limit_config"], name="rate_limit_config")
    config = RateLimitConfig(
        enabled=_require_bool(c["enabled"], name="rate_limit_config.enabled"),
        **_ints(
            c,
            ("max_daily_volume", "max_single_amount", "min_interval", "cooldown_period"),
            section="rate_limit_config",
        ),
    )

    limits: Dict[str, RateLimitEntry] = {}
    for i, item in enumerate(d["rate_limits"]):
        entry = _require_mapping(item, name=f"rate_limits[{i}]")
        address = entry["address"]
        if not isinstance(address, str) or not address:
            raise TypeError(f"rate_limits[{i}].address must be a non-empty string")
        if address in limits:
            raise ValueError(f"duplicate rate limit entry for {address}")
        limits[address] = RateLimitEntry(
            **_ints(
                entry,
                ("last_action_time", "daily_volume", "day_anchor", "cooldown_until"),
                section=f"rate_limits[{i}]",
            )
        )

    b = _require_mapping(d["breaker"], name="breaker")
    approvals = b["recovery_approvals"]
    if not isinstance(approvals, list) or not all(isinstance(a, str) for a in approvals):
        raise TypeError("breaker.recovery_approvals must be a list of strings")
    breaker = BreakerState(
        status=BreakerStatus(b["status"]),
        recovery_approvals=frozenset(approvals),
        **_ints(b, ("paused_at", "required_approvals", "critical_threshold_percent"), section="breaker"),
    )

    return EngineState(
        oracle=oracle,
        fees=fees,
        reserve=reserve,
        rate_limit_config=config,
        breaker=breaker,
        rate_limits=limits,
    )


# ---------------------------------------------------------------------------
# Versioned snapshot + file persistence
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EngineSnapshot:
    """
    Deterministic, versioned snapshot of `EngineState`.

    The commitment is *not* included inside `data` to avoid self-reference.
    """

    version: int
    data: Dict[str, Any]

    def canonical_bytes(self) -> bytes:
        return canonical_json_bytes(self.data)

    def commitment_hex(self) -> str:
        payload = domain_sep_bytes("engine_snapshot", version=self.version) + self.canonical_bytes()
        return sha256_hex(payload)


def snapshot_from_state(state: EngineState, *, version: int = ENGINE_SNAPSHOT_VERSION) -> EngineSnapshot:
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise ValueError("version must be a positive int")
    return EngineSnapshot(version=version, data=state_to_dict(state))


def state_from_snapshot(snapshot: EngineSnapshot) -> EngineState:
    if snapshot.version != ENGINE_SNAPSHOT_VERSION:
        raise ValueError(f"unsupported snapshot version: {snapshot.version}")
    return state_from_dict(snapshot.data)


def save_snapshot(state: EngineState, path: str | os.PathLike[str]) -> str:
    """Atomically write the state to *path*. Returns the commitment hex."""
    snapshot = snapshot_from_state(state)
    commitment = snapshot.commitment_hex()
    envelope = {
        "version": snapshot.version,
        "commitment": commitment,
        "state": snapshot.data,
    }
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(canonical_json_bytes(envelope))
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return commitment


def load_snapshot(path: str | os.PathLike[str]) -> EngineState:
    """Read a snapshot written by `save_snapshot`, verifying its commitment."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    envelope = _require_mapping(raw, name="snapshot")
    version = _require_int(envelope.get("version"), name="version")
    data = _require_mapping(envelope.get("state"), name="state")
    snapshot = EngineSnapshot(version=version, data=dict(data))
    expected = envelope.get("commitment")
    if expected != snapshot.commitment_hex():
        raise ValueError("snapshot commitment mismatch")
    return state_from_snapshot(snapshot)
