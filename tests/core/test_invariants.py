"""Tests for reserve_engine/core/invariants.py."""

from __future__ import annotations

from dataclasses import replace

from reserve_engine.core.invariants import INVARIANT_REGISTRY, check_all
from reserve_engine.core.types import BreakerStatus, PriceObservation
from reserve_engine.integration.config import EngineConfig
from reserve_engine.integration.engine import initial_state


def _state():
    return initial_state(EngineConfig(), 1_000_000)


def test_fresh_state_passes() -> None:
    assert check_all(_state()) == []


def test_registry_covers_every_checker() -> None:
    assert len(INVARIANT_REGISTRY) == 11


def test_current_fee_out_of_range() -> None:
    s = _state()
    bad = replace(s, reserve=replace(s.reserve, current_fee_bps=50))
    assert check_all(bad) == ["inv_current_fee_in_curve_range"]


def test_future_observation() -> None:
    s = _state()
    slots = list(s.oracle.observations)
    slots[5] = PriceObservation(timestamp=2_000_000, price_e18=1)
    bad = replace(s, oracle=replace(s.oracle, observations=tuple(slots)))
    assert "inv_observations_not_from_future" in check_all(bad)


def test_stale_cursor() -> None:
    s = _state()
    bad = replace(s, oracle=replace(s.oracle, write_cursor=3))
    assert check_all(bad) == ["inv_newest_slot_behind_cursor"]


def test_approvals_outside_recovery() -> None:
    s = _state()
    bad = replace(s, breaker=replace(s.breaker, recovery_approvals=frozenset({"a"})))
    assert check_all(bad) == ["inv_approvals_only_in_recovery"]


def test_approvals_at_quorum() -> None:
    s = _state()
    bad = replace(
        s,
        breaker=replace(
            s.breaker,
            status=BreakerStatus.IN_RECOVERY,
            required_approvals=2,
            recovery_approvals=frozenset({"a", "b"}),
        ),
    )
    assert check_all(bad) == ["inv_approvals_below_quorum"]
