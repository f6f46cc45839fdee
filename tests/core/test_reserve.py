"""Tests for reserve ledger transitions and the health check."""

from __future__ import annotations

from dataclasses import replace

import pytest

from reserve_engine.core import reserve
from reserve_engine.core.errors import EnginePausedError, ExceedsAvailableReservesError, ValidationError
from reserve_engine.core.math import PRICE_SCALE, RATIO_UNBOUNDED
from reserve_engine.core.types import BreakerStatus, EngineState, Event
from reserve_engine.integration.config import EngineConfig
from reserve_engine.integration.engine import initial_state

E = PRICE_SCALE
T0 = 1_000_000
SUPPLY = 100_000 * E


def _state(**overrides) -> EngineState:
    opts = dict(initial_price=8 * 10**17, initial_reserves=20_000 * E)
    opts.update(overrides)
    return initial_state(EngineConfig(**opts), T0)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def test_ratio_health() -> None:
    # 20_000 / (100_000 * 0.8)
    assert reserve.reserve_ratio_health(_state(), SUPPLY, T0) == 2500


def test_ratio_unbounded_without_supply() -> None:
    assert reserve.reserve_ratio_health(_state(), 0, T0) == RATIO_UNBOUNDED


def test_critical_ratio_default() -> None:
    assert reserve.critical_ratio(_state()) == 1000


def test_withdrawable() -> None:
    # minimum is 20% of 80_000 = 16_000
    assert reserve.withdrawable_reserves(_state(), SUPPLY, T0) == 4000 * E


def test_withdrawable_never_negative() -> None:
    assert reserve.withdrawable_reserves(_state(initial_reserves=E), SUPPLY, T0) == 0


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------

class TestWithdraw:
    def test_bounded_by_min_ratio(self):
        with pytest.raises(ExceedsAvailableReservesError) as exc:
            reserve.apply_withdraw_reserves(_state(), "treasury", 4000 * E + 1, SUPPLY, T0)
        assert exc.value.available == 4000 * E

    def test_full_available_withdrawal(self):
        t = reserve.apply_withdraw_reserves(_state(), "treasury", 4000 * E, SUPPLY, T0)
        assert t.state.reserve.total_reserves == 16_000 * E
        assert reserve.reserve_ratio_health(t.state, SUPPLY, T0) == 2000
        assert [e.event for e in t.events] == [Event.RESERVES_WITHDRAWN]

    def test_requires_normal(self):
        s = _state()
        paused = replace(s, breaker=replace(s.breaker, status=BreakerStatus.PAUSED))
        with pytest.raises(EnginePausedError):
            reserve.apply_withdraw_reserves(paused, "treasury", 1, SUPPLY, T0)

    def test_rejects_zero(self):
        with pytest.raises(ValidationError):
            reserve.apply_withdraw_reserves(_state(), "treasury", 0, SUPPLY, T0)


# ---------------------------------------------------------------------------
# Replenishment
# ---------------------------------------------------------------------------

class TestReplenish:
    def test_add_reserves(self):
        t = reserve.apply_add_reserves(_state(), "donor", 500 * E, SUPPLY, T0)
        assert t.state.reserve.total_reserves == 20_500 * E
        assert t.events[0].data["contributor"] == "donor"

    def test_burn_credit(self):
        # 1000 tokens at 0.8 = 800; 10% to reserves
        t = reserve.apply_burned_tokens(_state(), 1000 * E, SUPPLY, T0)
        assert t.state.reserve.total_reserves == 20_080 * E
        assert t.events[0].data["reserve_credit"] == 80 * E

    def test_platform_fee_share(self):
        t = reserve.apply_platform_fees(_state(), "dex", 1000 * E, SUPPLY, T0)
        assert t.state.reserve.total_reserves == 20_200 * E
        assert t.events[0].data["to_reserves"] == 200 * E

    def test_zero_burn_rejected(self):
        with pytest.raises(ValidationError):
            reserve.apply_burned_tokens(_state(), 0, SUPPLY, T0)


# ---------------------------------------------------------------------------
# Health / fee refresh
# ---------------------------------------------------------------------------

class TestHealth:
    def test_trips_when_critical(self):
        s = _state(initial_reserves=7000 * E)  # 875 bps < 1000
        checked, events = reserve.check_health(s, SUPPLY, T0 + 1)
        assert checked.breaker.status is BreakerStatus.PAUSED
        assert checked.breaker.paused_at == T0 + 1
        assert events[0].data["ratio_bps"] == 875

    def test_healthy_is_identity(self):
        s = _state()
        assert reserve.check_health(s, SUPPLY, T0) == (s, ())

    def test_refresh_fee_is_idempotent(self):
        s = _state()
        assert reserve.refresh_fee(s, T0) == (s, ())
