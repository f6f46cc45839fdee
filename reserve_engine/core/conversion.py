"""Conversion engine: quotes, guarded conversions and swaps, price updates.

`quote_conversion` is the single implementation of the conversion formula.
`simulate_conversion` in the shell and `apply_convert` here both call it, so a
quote and an execution taken from the same state can never disagree.
"""

from __future__ import annotations

from dataclasses import replace

from . import breaker, oracle, rate_limit
from .errors import BelowMinReturnError, ExceedsAvailableReservesError, ValidationError
from .fee_curve import fee_bps
from .math import apply_bps, token_value
from .reserve import check_health, refresh_fee, require_positive
from .types import ConversionQuote, EngineEvent, EngineState, Event, RateLimitEntry, Transition


def _require_min_return(min_return: object) -> int:
    if not isinstance(min_return, int) or isinstance(min_return, bool) or min_return < 0:
        raise ValidationError(f"min_return must be a non-negative int: {min_return!r}")
    return min_return


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------

def quote_conversion(state: EngineState, amount: int, now: int) -> ConversionQuote:
    """Baseline-protected quote: fee from the curve, subsidy capped at reserves."""
    price = oracle.verified_price(state.oracle, now)
    reserve = state.reserve
    fee_rate = fee_bps(price, reserve.baseline_price, state.fees)

    expected_value = token_value(amount, price)
    fee_amount = apply_bps(expected_value, fee_rate)
    after_fee = expected_value - fee_amount
    baseline_value = token_value(amount, reserve.baseline_price)
    subsidy = min(max(0, baseline_value - after_fee), reserve.total_reserves)
    return ConversionQuote(
        expected_value=expected_value,
        fee_amount=fee_amount,
        after_fee=after_fee,
        baseline_value=baseline_value,
        subsidy=subsidy,
        final_amount=after_fee + subsidy,
        fee_bps=fee_rate,
        price_e18=price,
    )


def quote_swap(state: EngineState, amount: int, now: int) -> ConversionQuote:
    """Current-price quote with no baseline protection."""
    price = oracle.verified_price(state.oracle, now)
    fee_rate = fee_bps(price, state.reserve.baseline_price, state.fees)
    expected_value = token_value(amount, price)
    fee_amount = apply_bps(expected_value, fee_rate)
    after_fee = expected_value - fee_amount
    return ConversionQuote(
        expected_value=expected_value,
        fee_amount=fee_amount,
        after_fee=after_fee,
        baseline_value=0,
        subsidy=0,
        final_amount=after_fee,
        fee_bps=fee_rate,
        price_e18=price,
    )


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------

def apply_guard(
    state: EngineState, caller: str, amount: int, now: int
) -> tuple[EngineState, tuple[EngineEvent, ...]]:
    """Run the flash-loan guard for *caller* and store the updated entry."""
    entry = state.rate_limits.get(caller, RateLimitEntry())
    next_entry, reasons = rate_limit.check_and_record(state.rate_limit_config, entry, caller, amount, now)
    limits = dict(state.rate_limits)
    limits[caller] = next_entry
    events: tuple[EngineEvent, ...] = ()
    if reasons:
        events = (
            EngineEvent(
                Event.SUSPICIOUS_ACTIVITY, now,
                {"address": caller, "amount": amount, "reasons": list(reasons), "daily_volume": next_entry.daily_volume},
            ),
        )
    return replace(state, rate_limits=limits), events


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------

def apply_convert(
    state: EngineState,
    caller: str,
    project: str,
    amount: int,
    min_return: int,
    token_supply: int,
    now: int,
) -> tuple[Transition, ConversionQuote]:
    """Convert *amount* tokens into stable for *project*, topped up toward baseline.

    Raises:
        ValidationError, EnginePausedError, rate-limit errors, BelowMinReturnError.
    """
    require_positive(amount, name="amount")
    _require_min_return(min_return)
    if not project:
        raise ValidationError("project address must be non-empty")
    breaker.require_normal(state.breaker)

    guarded, guard_events = apply_guard(state, caller, amount, now)
    quote = quote_conversion(guarded, amount, now)
    if quote.final_amount < min_return:
        raise BelowMinReturnError(quote.final_amount, min_return)

    reserve = guarded.reserve
    next_reserve = replace(
        reserve,
        total_reserves=reserve.total_reserves - quote.subsidy,
        total_stabilized=reserve.total_stabilized + quote.subsidy,
        total_conversions=reserve.total_conversions + 1,
    )
    converted = replace(guarded, reserve=next_reserve)
    event = EngineEvent(
        Event.CONVERTED, now,
        {
            "caller": caller,
            "project": project,
            "amount": amount,
            "price": quote.price_e18,
            "fee": quote.fee_amount,
            "subsidy": quote.subsidy,
            "payout": quote.final_amount,
        },
    )
    checked, breaker_events = check_health(converted, token_supply, now)
    return Transition(state=checked, events=(*guard_events, event, *breaker_events)), quote


def apply_swap(
    state: EngineState,
    caller: str,
    amount: int,
    min_return: int,
    token_supply: int,
    now: int,
) -> tuple[Transition, ConversionQuote]:
    """Swap at the verified price against reserves, without subsidy."""
    require_positive(amount, name="amount")
    _require_min_return(min_return)
    breaker.require_normal(state.breaker)

    guarded, guard_events = apply_guard(state, caller, amount, now)
    quote = quote_swap(guarded, amount, now)
    if quote.final_amount > guarded.reserve.total_reserves:
        raise ExceedsAvailableReservesError(quote.final_amount, guarded.reserve.total_reserves)
    if quote.final_amount < min_return:
        raise BelowMinReturnError(quote.final_amount, min_return)

    reserve = guarded.reserve
    next_reserve = replace(reserve, total_reserves=reserve.total_reserves - quote.final_amount)
    swapped = replace(guarded, reserve=next_reserve)
    event = EngineEvent(
        Event.SWAPPED, now,
        {
            "caller": caller,
            "amount": amount,
            "price": quote.price_e18,
            "fee": quote.fee_amount,
            "payout": quote.final_amount,
        },
    )
    checked, breaker_events = check_health(swapped, token_supply, now)
    return Transition(state=checked, events=(*guard_events, event, *breaker_events)), quote


# ---------------------------------------------------------------------------
# Price updates
# ---------------------------------------------------------------------------

def apply_price_update(state: EngineState, new_price: int, token_supply: int, now: int) -> Transition:
    """Oracle write: TWAP and step-size guards, ring record, fee refresh, health check.

    A higher price raises the value of the outstanding supply and so lowers the
    reserve ratio; the breaker trips here when that crosses the critical ratio.
    """
    previous = state.oracle.current_price
    next_oracle, recorded = oracle.apply_price_update(state.oracle, new_price, now)
    events = [EngineEvent(Event.PRICE_UPDATED, now, {"old_price": previous, "new_price": new_price})]
    if recorded:
        events.append(EngineEvent(Event.OBSERVATION_RECORDED, now, {"price": new_price}))
    refreshed, fee_events = refresh_fee(replace(state, oracle=next_oracle), now)
    checked, breaker_events = check_health(refreshed, token_supply, now)
    return Transition(state=checked, events=(*events, *fee_events, *breaker_events))


def apply_record_observation(state: EngineState, token_supply: int, now: int) -> Transition:
    """Record the current raw price into the ring (no-op inside an interval)."""
    next_oracle, recorded = oracle.record_observation(state.oracle, state.oracle.current_price, now)
    if not recorded:
        return Transition(state=state)
    event = EngineEvent(Event.OBSERVATION_RECORDED, now, {"price": state.oracle.current_price})
    checked, breaker_events = check_health(replace(state, oracle=next_oracle), token_supply, now)
    return Transition(state=checked, events=(event, *breaker_events))
