"""Reserve ledger transitions.

Pure functions over `EngineState` for everything that moves `total_reserves`
outside of conversions: contributions, bounded withdrawals, burn and
platform-fee replenishment, plus the solvency view and the post-operation
health check that drives the circuit breaker.

Each `apply_*` function returns a `Transition` or raises; nothing is mutated.
"""

from __future__ import annotations

from dataclasses import replace

from . import breaker
from .errors import ExceedsAvailableReservesError, ValidationError
from .fee_curve import fee_bps, is_low_value
from .math import (
    apply_bps,
    critical_ratio_bps,
    min_reserve_required,
    reserve_ratio_bps,
    token_value,
)
from .oracle import verified_price
from .types import EngineEvent, EngineState, Event, Transition


def require_positive(value: object, *, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError(f"{name} must be a positive int: {value!r}")
    return value


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def reserve_ratio_health(state: EngineState, token_supply: int, now: int) -> int:
    """Current reserve ratio in bps, valued at the verified price."""
    price = verified_price(state.oracle, now)
    return reserve_ratio_bps(state.reserve.total_reserves, token_supply, price)


def critical_ratio(state: EngineState) -> int:
    return critical_ratio_bps(
        state.reserve.min_reserve_ratio_bps, state.breaker.critical_threshold_percent
    )


def withdrawable_reserves(state: EngineState, token_supply: int, now: int) -> int:
    """Reserves above the minimum reserve ratio; the most a withdrawal may take."""
    price = verified_price(state.oracle, now)
    required = min_reserve_required(token_supply, price, state.reserve.min_reserve_ratio_bps)
    return max(0, state.reserve.total_reserves - required)


# ---------------------------------------------------------------------------
# Shared post-steps
# ---------------------------------------------------------------------------

def check_health(state: EngineState, token_supply: int, now: int) -> tuple[EngineState, tuple[EngineEvent, ...]]:
    """Re-evaluate the reserve ratio and trip the breaker when it is critical."""
    ratio = reserve_ratio_health(state, token_supply, now)
    critical = critical_ratio(state)
    next_breaker, tripped = breaker.check_and_pause_if_critical(state.breaker, ratio, critical, now)
    if not tripped:
        return state, ()
    event = EngineEvent(
        Event.CIRCUIT_BREAKER_TRIGGERED,
        now,
        {"ratio_bps": ratio, "critical_bps": critical, "total_reserves": state.reserve.total_reserves},
    )
    return replace(state, breaker=next_breaker), (event,)


def refresh_fee(state: EngineState, now: int) -> tuple[EngineState, tuple[EngineEvent, ...]]:
    """Recompute the current fee and low-value mode from the verified price."""
    price = verified_price(state.oracle, now)
    reserve = state.reserve
    new_fee = fee_bps(price, reserve.baseline_price, state.fees)
    low_value = is_low_value(price, reserve.baseline_price, reserve.value_threshold_bps)

    events: list[EngineEvent] = []
    if new_fee != reserve.current_fee_bps:
        events.append(EngineEvent(Event.FEE_UPDATED, now, {"old_bps": reserve.current_fee_bps, "new_bps": new_fee}))
    if low_value != reserve.low_value_mode:
        events.append(EngineEvent(Event.LOW_VALUE_MODE_CHANGED, now, {"low_value_mode": low_value, "price": price}))
    if not events:
        return state, ()
    next_reserve = replace(reserve, current_fee_bps=new_fee, low_value_mode=low_value)
    return replace(state, reserve=next_reserve), tuple(events)


def _finish(state: EngineState, token_supply: int, now: int, event: EngineEvent) -> Transition:
    checked, breaker_events = check_health(state, token_supply, now)
    return Transition(state=checked, events=(event, *breaker_events))


# ---------------------------------------------------------------------------
# Ledger operations
# ---------------------------------------------------------------------------

def apply_add_reserves(
    state: EngineState, contributor: str, amount: int, token_supply: int, now: int
) -> Transition:
    require_positive(amount, name="amount")
    reserve = replace(state.reserve, total_reserves=state.reserve.total_reserves + amount)
    event = EngineEvent(
        Event.RESERVES_ADDED, now,
        {"contributor": contributor, "amount": amount, "total_reserves": reserve.total_reserves},
    )
    return _finish(replace(state, reserve=reserve), token_supply, now, event)


def apply_withdraw_reserves(
    state: EngineState, recipient: str, amount: int, token_supply: int, now: int
) -> Transition:
    """Withdraw reserves above the minimum ratio. Requires a NORMAL breaker."""
    require_positive(amount, name="amount")
    breaker.require_normal(state.breaker)
    available = withdrawable_reserves(state, token_supply, now)
    if amount > available:
        raise ExceedsAvailableReservesError(amount, available)
    reserve = replace(state.reserve, total_reserves=state.reserve.total_reserves - amount)
    event = EngineEvent(
        Event.RESERVES_WITHDRAWN, now,
        {"recipient": recipient, "amount": amount, "total_reserves": reserve.total_reserves},
    )
    return _finish(replace(state, reserve=reserve), token_supply, now, event)


def burn_reserve_credit(state: EngineState, burned_amount: int, now: int) -> int:
    """Reserve credit for a burn: `burn value * burn_to_reserve_bps`."""
    value = token_value(burned_amount, verified_price(state.oracle, now))
    return apply_bps(value, state.reserve.burn_to_reserve_bps)


def apply_burned_tokens(
    state: EngineState, burned_amount: int, token_supply: int, now: int
) -> Transition:
    require_positive(burned_amount, name="burned_amount")
    credit = burn_reserve_credit(state, burned_amount, now)
    reserve = replace(state.reserve, total_reserves=state.reserve.total_reserves + credit)
    event = EngineEvent(
        Event.BURN_PROCESSED, now,
        {"burned_amount": burned_amount, "reserve_credit": credit, "total_reserves": reserve.total_reserves},
    )
    return _finish(replace(state, reserve=reserve), token_supply, now, event)


def platform_fee_share(state: EngineState, fee_amount: int) -> int:
    """Portion of a collaborator's fee that flows into the reserve."""
    return apply_bps(fee_amount, state.reserve.platform_fee_to_reserve_bps)


def apply_platform_fees(
    state: EngineState, source: str, fee_amount: int, token_supply: int, now: int
) -> Transition:
    require_positive(fee_amount, name="fee_amount")
    share = platform_fee_share(state, fee_amount)
    reserve = replace(state.reserve, total_reserves=state.reserve.total_reserves + share)
    event = EngineEvent(
        Event.PLATFORM_FEES_PROCESSED, now,
        {"source": source, "fee_amount": fee_amount, "to_reserves": share, "total_reserves": reserve.total_reserves},
    )
    return _finish(replace(state, reserve=reserve), token_supply, now, event)
