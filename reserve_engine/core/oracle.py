"""
Price observation ring + TWAP kernel.

This module is intentionally small and pure:
- The functional core stores observations, computes the TWAP and decides which
  price every other component is allowed to read (`verified_price`).
- The imperative shell supplies the timestamps and commits the returned state.

The ring is a fixed-length tuple plus a write cursor. The cursor always points
at the next slot to overwrite; the newest sample sits at `(cursor + N - 1) % N`.
"""

from __future__ import annotations

from dataclasses import replace

from .errors import PriceChangeTooLargeError, PriceDeviatesFromTWAPError, ValidationError
from .math import exceeds_deviation
from .types import OracleState, PriceObservation


DEFAULT_RING_SIZE = 24


def init_oracle_state(
    initial_price: int,
    now: int,
    *,
    ring_size: int = DEFAULT_RING_SIZE,
    window_size: int = 12,
    interval: int = 3600,
    twap_enabled: bool = True,
    twap_deviation_bps: int = 2000,
    max_price_change_bps: int = 1000,
) -> OracleState:
    """Create the oracle with *initial_price* recorded as the first observation."""
    if not isinstance(ring_size, int) or isinstance(ring_size, bool) or ring_size <= 0:
        raise ValueError(f"ring_size must be a positive int: {ring_size}")
    state = OracleState(
        current_price=initial_price,
        last_update_time=now,
        observations=(PriceObservation(),) * ring_size,
        write_cursor=0,
        last_observation_time=0,
        window_size=window_size,
        interval=interval,
        twap_enabled=twap_enabled,
        twap_deviation_bps=twap_deviation_bps,
        max_price_change_bps=max_price_change_bps,
    )
    state, _ = record_observation(state, initial_price, now)
    return state


def record_observation(state: OracleState, price: int, now: int) -> tuple[OracleState, bool]:
    """Write `(now, price)` into the ring if a full interval has passed.

    Returns `(next_state, recorded)`. Sub-interval calls return the state unchanged.
    """
    if now <= 0 or price <= 0:
        return state, False
    if state.last_observation_time and now < state.last_observation_time + state.interval:
        return state, False

    slots = list(state.observations)
    slots[state.write_cursor] = PriceObservation(timestamp=now, price_e18=price)
    next_state = replace(
        state,
        observations=tuple(slots),
        write_cursor=(state.write_cursor + 1) % state.capacity,
        last_observation_time=now,
    )
    return next_state, True


def latest_observation(state: OracleState) -> PriceObservation:
    return state.observations[(state.write_cursor + state.capacity - 1) % state.capacity]


def calculate_twap(state: OracleState, now: int, window_size: int | None = None) -> int:
    """Time-weighted average price over the trailing window, or 0 when unavailable.

    Walks backward from the newest slot collecting up to `window_size` samples
    that were written and are no older than `now - window_size * interval`.
    Each sample is weighted by the time until the next newer retained sample
    (or until `now` for the newest one). Fewer than `window_size // 2` samples
    means there is not enough history and 0 is returned.
    """
    window = state.window_size if window_size is None else window_size
    if window <= 0:
        raise ValueError(f"window_size must be positive: {window}")

    n = state.capacity
    cutoff = now - window * state.interval
    weighted = 0
    total_dt = 0
    found = 0
    newest_price = 0
    newer_ts = now
    idx = state.write_cursor
    for _ in range(n):
        idx = (idx + n - 1) % n
        obs = state.observations[idx]
        if not obs.written or obs.timestamp < cutoff or obs.timestamp > now:
            continue
        if found == 0:
            newest_price = obs.price_e18
        dt = newer_ts - obs.timestamp
        weighted += obs.price_e18 * dt
        total_dt += dt
        newer_ts = obs.timestamp
        found += 1
        if found >= window:
            break

    if found == 0 or found < window // 2:
        return 0
    if total_dt == 0:
        # Every retained sample was taken at `now`.
        return newest_price
    return weighted // total_dt


def verified_price(state: OracleState, now: int) -> int:
    """The canonical price: the TWAP when the raw price strays too far from it."""
    if not state.twap_enabled:
        return state.current_price
    twap = calculate_twap(state, now)
    if twap == 0:
        return state.current_price
    if exceeds_deviation(state.current_price, twap, state.twap_deviation_bps):
        return twap
    return state.current_price


def apply_price_update(state: OracleState, new_price: int, now: int) -> tuple[OracleState, bool]:
    """Validate and commit an oracle price write.

    Returns `(next_state, observation_recorded)`.

    Raises:
        ValidationError: `new_price` is not positive.
        PriceDeviatesFromTWAPError: more than `twap_deviation_bps` away from the TWAP.
        PriceChangeTooLargeError: more than `max_price_change_bps` away from the verified price.
    """
    if not isinstance(new_price, int) or isinstance(new_price, bool) or new_price <= 0:
        raise ValidationError(f"price must be a positive int: {new_price!r}")

    reference = verified_price(state, now)
    if state.twap_enabled:
        twap = calculate_twap(state, now)
        if twap > 0 and exceeds_deviation(new_price, twap, state.twap_deviation_bps):
            raise PriceDeviatesFromTWAPError(new_price, twap)
    if exceeds_deviation(new_price, reference, state.max_price_change_bps):
        raise PriceChangeTooLargeError(new_price, reference)

    updated = replace(state, current_price=new_price, last_update_time=now)
    return record_observation(updated, new_price, now)


def configure_twap(state: OracleState, window_size: int, interval: int, enabled: bool) -> OracleState:
    """Reconfigure the TWAP window; stored observations are kept."""
    if not isinstance(window_size, int) or isinstance(window_size, bool):
        raise ValidationError("window_size must be an int")
    if not (1 <= window_size <= state.capacity):
        raise ValidationError(f"window_size must be in [1, {state.capacity}]: {window_size}")
    if not isinstance(interval, int) or isinstance(interval, bool) or interval <= 0:
        raise ValidationError(f"interval must be a positive int: {interval!r}")
    if not isinstance(enabled, bool):
        raise ValidationError("enabled must be a bool")
    return replace(state, window_size=window_size, interval=interval, twap_enabled=enabled)
