"""Tests for reserve_engine/core/math.py: pure arithmetic functions."""

import pytest

from reserve_engine.core.math import (
    PRICE_SCALE,
    RATIO_UNBOUNDED,
    abs_val,
    apply_bps,
    critical_ratio_bps,
    deviation_bps,
    drop_below_baseline_bps,
    exceeds_deviation,
    min_reserve_required,
    require_int,
    reserve_ratio_bps,
    token_value,
)

E = PRICE_SCALE


class TestAbsVal:
    def test_positive(self):
        assert abs_val(7) == 7

    def test_negative(self):
        assert abs_val(-7) == 7


class TestRequireInt:
    def test_accepts_int(self):
        assert require_int(5, name="x") == 5

    def test_rejects_bool(self):
        with pytest.raises(TypeError):
            require_int(True, name="x")

    def test_rejects_below_minimum(self):
        with pytest.raises(ValueError):
            require_int(0, name="x", minimum=1)

    def test_no_minimum(self):
        assert require_int(-3, name="x", minimum=None) == -3


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

class TestValue:
    def test_token_value(self):
        assert token_value(1000 * E, 8 * 10**17) == 800 * E

    def test_token_value_floors(self):
        # 3 units at 0.5 -> 1.5 -> 1
        assert token_value(3, E // 2) == 1

    def test_apply_bps(self):
        assert apply_bps(10_000, 300) == 300
        assert apply_bps(999, 1) == 0


class TestDeviation:
    def test_deviation_bps(self):
        assert deviation_bps(110, 100) == 1000
        assert deviation_bps(90, 100) == 1000

    def test_deviation_rejects_zero_reference(self):
        with pytest.raises(ValueError):
            deviation_bps(1, 0)

    def test_exact_bound_passes(self):
        assert exceeds_deviation(110, 100, 1000) is False

    def test_one_past_bound_fails(self):
        assert exceeds_deviation(111, 100, 1000) is True

    def test_downward(self):
        assert exceeds_deviation(89, 100, 1000) is True


class TestDropBelowBaseline:
    def test_twenty_percent(self):
        assert drop_below_baseline_bps(8 * 10**17, E) == 2000

    def test_above_baseline_is_zero(self):
        assert drop_below_baseline_bps(2 * E, E) == 0


# ---------------------------------------------------------------------------
# Reserve ratio
# ---------------------------------------------------------------------------

class TestReserveRatio:
    def test_ratio(self):
        assert reserve_ratio_bps(5000 * E, 10_000 * E, E) == 5000

    def test_zero_supply_is_unbounded(self):
        assert reserve_ratio_bps(1, 0, E) == RATIO_UNBOUNDED

    def test_min_reserve_required(self):
        assert min_reserve_required(100_000 * E, 8 * 10**17, 2000) == 16_000 * E

    def test_critical_ratio(self):
        assert critical_ratio_bps(2000, 50) == 1000
        assert critical_ratio_bps(2000, 150) == 3000
