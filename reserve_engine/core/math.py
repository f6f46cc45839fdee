"""Pure arithmetic for the reserve engine.

Every function is stateless and operates on plain Python ints.

Conventions:
- `*_e18` prices are stable-asset-per-token scaled by 1e18.
- token amounts and stable amounts are integer base units; a stable value is
  `amount * price_e18 // 1e18`.
- `*_bps` rates are basis points (1/10_000).

Rounding is floor division throughout so that quotes and executions computed
from the same inputs always agree.
"""

from __future__ import annotations

PRICE_SCALE: int = 10**18
BPS_SCALE: int = 10_000
PERCENT_SCALE: int = 100
SECONDS_PER_DAY: int = 86_400

# Reported when the token side of the ratio is worth nothing.
RATIO_UNBOUNDED: int = 2**63 - 1


def abs_val(x: int) -> int:
    """Absolute value of *x*."""
    return x if x >= 0 else -x


def require_int(value: object, *, name: str, minimum: int | None = 0) -> int:
    """Return *value* if it is a plain int (not bool) and >= *minimum*."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}: {value}")
    return value


# -- Value helpers -----------------------------------------------------------

def token_value(amount: int, price_e18: int) -> int:
    """Stable-asset value of *amount* tokens at *price_e18*."""
    return (amount * price_e18) // PRICE_SCALE


def apply_bps(amount: int, bps: int) -> int:
    """``amount * bps / 10000`` (floor)."""
    return (amount * bps) // BPS_SCALE


def deviation_bps(value: int, reference: int) -> int:
    """``|value - reference| * 10000 / reference`` (floor). *reference* must be > 0."""
    if reference <= 0:
        raise ValueError(f"reference must be positive: {reference}")
    return (abs_val(value - reference) * BPS_SCALE) // reference


def exceeds_deviation(value: int, reference: int, max_bps: int) -> bool:
    """True when *value* is more than *max_bps* away from *reference*.

    Uses cross-multiplication so that a move of exactly *max_bps* passes:
    ``|value - reference| * 10000 > max_bps * reference``.
    """
    return abs_val(value - reference) * BPS_SCALE > max_bps * reference


def drop_below_baseline_bps(price_e18: int, baseline_e18: int) -> int:
    """Percentage drop of *price_e18* below *baseline_e18*, in bps, floored at 0."""
    if baseline_e18 <= 0 or price_e18 >= baseline_e18:
        return 0
    return ((baseline_e18 - price_e18) * BPS_SCALE) // baseline_e18


# -- Reserve ratio helpers ---------------------------------------------------

def reserve_ratio_bps(total_reserves: int, token_supply: int, price_e18: int) -> int:
    """``total_reserves * 10000 / (supply * price)``; unbounded when the supply is worthless."""
    supply_value = token_value(token_supply, price_e18)
    if supply_value == 0:
        return RATIO_UNBOUNDED
    return (total_reserves * BPS_SCALE) // supply_value


def min_reserve_required(token_supply: int, price_e18: int, min_reserve_ratio_bps: int) -> int:
    """Reserve balance needed to sit exactly at the minimum reserve ratio."""
    return apply_bps(token_value(token_supply, price_e18), min_reserve_ratio_bps)


def critical_ratio_bps(min_reserve_ratio_bps: int, critical_threshold_percent: int) -> int:
    """Ratio below which the circuit breaker trips."""
    return (min_reserve_ratio_bps * critical_threshold_percent) // PERCENT_SCALE
