"""Tests for the flash-loan guard."""

from __future__ import annotations

import hypothesis.strategies as st
import pytest
from hypothesis import given, settings

from reserve_engine.core.errors import (
    ActionTooSoonError,
    AddressInCooldownError,
    AmountExceedsMaxConversionError,
    DailyVolumeLimitExceededError,
    EconomicGuardError,
)
from reserve_engine.core.math import SECONDS_PER_DAY
from reserve_engine.core.rate_limit import (
    check_and_record,
    clear_cooldown,
    is_in_cooldown,
    place_in_cooldown,
    roll_day,
)
from reserve_engine.core.types import RateLimitConfig, RateLimitEntry

CFG = RateLimitConfig(max_daily_volume=1000, max_single_amount=400, min_interval=60)
T0 = 10_000


def test_first_action_is_recorded() -> None:
    entry, reasons = check_and_record(CFG, RateLimitEntry(), "alice", 100, T0)
    assert entry == RateLimitEntry(last_action_time=T0, daily_volume=100, day_anchor=T0)
    assert reasons == ()


def test_action_too_soon() -> None:
    entry, _ = check_and_record(CFG, RateLimitEntry(), "alice", 100, T0)
    with pytest.raises(ActionTooSoonError) as exc:
        check_and_record(CFG, entry, "alice", 100, T0 + 59)
    assert exc.value.next_allowed == T0 + 60


def test_action_at_interval_boundary_passes() -> None:
    entry, _ = check_and_record(CFG, RateLimitEntry(), "alice", 100, T0)
    entry, _ = check_and_record(CFG, entry, "alice", 100, T0 + 60)
    assert entry.daily_volume == 200


def test_single_cap() -> None:
    with pytest.raises(AmountExceedsMaxConversionError):
        check_and_record(CFG, RateLimitEntry(), "alice", 401, T0)


def test_daily_cap() -> None:
    entry, _ = check_and_record(CFG, RateLimitEntry(), "alice", 400, T0)
    entry, _ = check_and_record(CFG, entry, "alice", 400, T0 + 60)
    with pytest.raises(DailyVolumeLimitExceededError) as exc:
        check_and_record(CFG, entry, "alice", 400, T0 + 120)
    assert exc.value.attempted == 1200


def test_day_rollover_resets_volume() -> None:
    entry, _ = check_and_record(CFG, RateLimitEntry(), "alice", 400, T0)
    entry, _ = check_and_record(CFG, entry, "alice", 400, T0 + 60)
    entry, _ = check_and_record(CFG, entry, "alice", 400, T0 + SECONDS_PER_DAY)
    assert entry.daily_volume == 400
    assert entry.day_anchor == T0 + SECONDS_PER_DAY


def test_roll_day_keeps_volume_within_day() -> None:
    entry = RateLimitEntry(last_action_time=T0, daily_volume=500, day_anchor=T0)
    assert roll_day(entry, T0 + SECONDS_PER_DAY - 1) is entry


def test_cooldown_blocks_even_when_disabled() -> None:
    disabled = RateLimitConfig(max_daily_volume=1000, max_single_amount=400, enabled=False)
    entry = place_in_cooldown(RateLimitEntry(), T0, 100)
    assert is_in_cooldown(entry, T0 + 99)
    with pytest.raises(AddressInCooldownError):
        check_and_record(disabled, entry, "alice", 1, T0 + 50)


def test_cooldown_expires_and_clears() -> None:
    entry = place_in_cooldown(RateLimitEntry(), T0, 100)
    assert not is_in_cooldown(entry, T0 + 100)
    assert clear_cooldown(entry).cooldown_until == 0


def test_disabled_guard_skips_limits() -> None:
    disabled = RateLimitConfig(max_daily_volume=1000, max_single_amount=400, enabled=False)
    entry = RateLimitEntry()
    out, reasons = check_and_record(disabled, entry, "alice", 10_000, T0)
    assert out is entry
    assert reasons == ()


class TestSuspicious:
    def test_large_first_action(self):
        _, reasons = check_and_record(CFG, RateLimitEntry(), "alice", 200, T0)
        assert reasons == ("large_first_action",)

    def test_near_daily_cap(self):
        entry, _ = check_and_record(CFG, RateLimitEntry(), "alice", 100, T0)
        entry, _ = check_and_record(CFG, entry, "alice", 400, T0 + 60)
        _, reasons = check_and_record(CFG, entry, "alice", 400, T0 + 120)
        assert reasons == ("near_daily_cap",)

    def test_advisory_only(self):
        entry, reasons = check_and_record(CFG, RateLimitEntry(), "alice", 399, T0)
        assert "large_first_action" in reasons
        assert entry.daily_volume == 399


class TestBoundedness:
    @given(
        actions=st.lists(
            st.tuples(st.integers(min_value=0, max_value=30_000), st.integers(min_value=1, max_value=500)),
            min_size=1,
            max_size=40,
        )
    )
    @settings(max_examples=300, deadline=2000)
    def test_accepted_actions_respect_limits(self, actions):
        entry = RateLimitEntry()
        now = T0
        accepted: list[tuple[int, int]] = []
        for dt, amount in actions:
            now += dt
            try:
                entry, _ = check_and_record(CFG, entry, "alice", amount, now)
            except EconomicGuardError:
                continue
            accepted.append((now, amount))
            assert amount <= CFG.max_single_amount
            assert entry.daily_volume <= CFG.max_daily_volume
            day_end = entry.day_anchor + SECONDS_PER_DAY
            day_volume = sum(a for t, a in accepted if entry.day_anchor <= t < day_end)
            assert day_volume == entry.daily_volume

        for (t_prev, _), (t_next, _) in zip(accepted, accepted[1:]):
            assert t_next - t_prev >= CFG.min_interval
