"""Invariant checkers for the reserve engine.

Each function returns True when the invariant holds, and `check_all()` returns
the list of violated invariant IDs (empty = all pass). The shell runs
`check_all()` on every candidate post-state before committing it.
"""

from __future__ import annotations

from typing import Callable

from .types import BreakerStatus, EngineState


def inv_reserves_nonneg(s: EngineState) -> bool:
    return s.reserve.total_reserves >= 0


def inv_stabilized_nonneg(s: EngineState) -> bool:
    return s.reserve.total_stabilized >= 0


def inv_fee_params_ordered(s: EngineState) -> bool:
    f = s.fees
    return f.max_fee_bps >= f.base_fee_bps >= f.min_fee_bps


def inv_drop_thresholds_ordered(s: EngineState) -> bool:
    return s.fees.max_drop_threshold_bps > s.fees.drop_threshold_bps


def inv_current_fee_in_curve_range(s: EngineState) -> bool:
    return s.fees.min_fee_bps <= s.reserve.current_fee_bps <= s.fees.base_fee_bps


def inv_cursor_in_ring(s: EngineState) -> bool:
    return 0 <= s.oracle.write_cursor < s.oracle.capacity


def inv_observations_not_from_future(s: EngineState) -> bool:
    latest = s.oracle.last_observation_time
    return all(obs.timestamp <= latest for obs in s.oracle.observations)


def inv_newest_slot_behind_cursor(s: EngineState) -> bool:
    o = s.oracle
    if o.last_observation_time == 0:
        return True
    newest = o.observations[(o.write_cursor + o.capacity - 1) % o.capacity]
    return newest.timestamp == o.last_observation_time


def inv_approvals_only_in_recovery(s: EngineState) -> bool:
    if s.breaker.status is BreakerStatus.IN_RECOVERY:
        return True
    return not s.breaker.recovery_approvals


def inv_approvals_below_quorum(s: EngineState) -> bool:
    return len(s.breaker.recovery_approvals) < s.breaker.required_approvals


def inv_min_ratio_below_target(s: EngineState) -> bool:
    return s.reserve.min_reserve_ratio_bps <= s.reserve.reserve_ratio_target_bps


# ---------------------------------------------------------------------------
# Registry + check_all
# ---------------------------------------------------------------------------

INVARIANT_REGISTRY: dict[str, Callable[[EngineState], bool]] = {
    "inv_reserves_nonneg": inv_reserves_nonneg,
    "inv_stabilized_nonneg": inv_stabilized_nonneg,
    "inv_fee_params_ordered": inv_fee_params_ordered,
    "inv_drop_thresholds_ordered": inv_drop_thresholds_ordered,
    "inv_current_fee_in_curve_range": inv_current_fee_in_curve_range,
    "inv_cursor_in_ring": inv_cursor_in_ring,
    "inv_observations_not_from_future": inv_observations_not_from_future,
    "inv_newest_slot_behind_cursor": inv_newest_slot_behind_cursor,
    "inv_approvals_only_in_recovery": inv_approvals_only_in_recovery,
    "inv_approvals_below_quorum": inv_approvals_below_quorum,
    "inv_min_ratio_below_target": inv_min_ratio_below_target,
}


def check_all(state: EngineState) -> list[str]:
    """Return list of violated invariant IDs (empty = all pass)."""
    return [
        inv_id
        for inv_id, check_fn in INVARIANT_REGISTRY.items()
        if not check_fn(state)
    ]
