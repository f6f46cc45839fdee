"""
Adaptive fee curve (deterministic, integer-only).

Maps how far the verified price sits below the baseline to a fee in bps:

    drop <= drop_threshold      -> base fee
    drop >= max_drop_threshold  -> min fee
    otherwise                   -> linear interpolation, scaled by
                                   adjustment_factor / 100 and clamped

The fee never leaves `[min_fee_bps, base_fee_bps]` and is non-increasing as
the price falls away from the baseline.
"""

from __future__ import annotations

from .math import BPS_SCALE, PERCENT_SCALE, drop_below_baseline_bps
from .types import FeeParameters


def fee_bps_for_drop(drop_bps: int, params: FeeParameters) -> int:
    """Fee for a given drop below baseline, in bps."""
    if drop_bps <= params.drop_threshold_bps:
        return params.base_fee_bps
    if drop_bps >= params.max_drop_threshold_bps:
        return params.min_fee_bps

    span = params.max_drop_threshold_bps - params.drop_threshold_bps
    position_bps = ((drop_bps - params.drop_threshold_bps) * BPS_SCALE) // span
    position_bps = (position_bps * params.adjustment_factor) // PERCENT_SCALE
    position_bps = max(0, min(BPS_SCALE, position_bps))

    reduction = ((params.base_fee_bps - params.min_fee_bps) * position_bps) // BPS_SCALE
    return params.base_fee_bps - reduction


def fee_bps(price_e18: int, baseline_e18: int, params: FeeParameters) -> int:
    """Fee for converting at *price_e18* against *baseline_e18*."""
    return fee_bps_for_drop(drop_below_baseline_bps(price_e18, baseline_e18), params)


def is_low_value(price_e18: int, baseline_e18: int, value_threshold_bps: int) -> bool:
    """True when the price sits more than `value_threshold_bps` below the baseline."""
    return price_e18 * BPS_SCALE < baseline_e18 * (BPS_SCALE - value_threshold_bps)
