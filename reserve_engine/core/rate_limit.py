"""Flash-loan / rate-limit guard.

Pure functions over one caller's `RateLimitEntry`. The guard order is fixed:

1. cooldown blacklist
2. day rollover (volume reset, anchor moves to `now`)
3. minimum interval between actions
4. single-action cap
5. daily volume cap

The suspicious-activity heuristic is advisory only: it returns reasons for the
shell to publish and never rejects anything.
"""

from __future__ import annotations

from dataclasses import replace

from .errors import (
    ActionTooSoonError,
    AddressInCooldownError,
    AmountExceedsMaxConversionError,
    DailyVolumeLimitExceededError,
)
from .math import SECONDS_PER_DAY
from .types import RateLimitConfig, RateLimitEntry


SUSPICIOUS_DAILY_SHARE_PERCENT = 90
SUSPICIOUS_FIRST_ACTION_DIVISOR = 2


def is_in_cooldown(entry: RateLimitEntry, now: int) -> bool:
    return now < entry.cooldown_until


def roll_day(entry: RateLimitEntry, now: int) -> RateLimitEntry:
    """Reset the daily counter once a full day has passed since `day_anchor`."""
    if entry.day_anchor == 0 or now >= entry.day_anchor + SECONDS_PER_DAY:
        return replace(entry, daily_volume=0, day_anchor=now)
    return entry


def suspicious_reasons(
    entry: RateLimitEntry, config: RateLimitConfig, amount: int, volume_after: int
) -> tuple[str, ...]:
    reasons: list[str] = []
    if entry.last_action_time == 0 and amount * SUSPICIOUS_FIRST_ACTION_DIVISOR >= config.max_single_amount:
        reasons.append("large_first_action")
    if volume_after * 100 >= config.max_daily_volume * SUSPICIOUS_DAILY_SHARE_PERCENT:
        reasons.append("near_daily_cap")
    return tuple(reasons)


def check_and_record(
    config: RateLimitConfig,
    entry: RateLimitEntry,
    address: str,
    amount: int,
    now: int,
) -> tuple[RateLimitEntry, tuple[str, ...]]:
    """Apply the guard for one action.

    Returns `(next_entry, suspicious_reasons)`.

    Raises:
        AddressInCooldownError, ActionTooSoonError,
        AmountExceedsMaxConversionError, DailyVolumeLimitExceededError.
    """
    if is_in_cooldown(entry, now):
        raise AddressInCooldownError(address, entry.cooldown_until)
    if not config.enabled:
        return entry, ()

    rolled = roll_day(entry, now)
    if rolled.last_action_time and now < rolled.last_action_time + config.min_interval:
        raise ActionTooSoonError(address, rolled.last_action_time + config.min_interval)
    if amount > config.max_single_amount:
        raise AmountExceedsMaxConversionError(amount, config.max_single_amount)
    volume_after = rolled.daily_volume + amount
    if volume_after > config.max_daily_volume:
        raise DailyVolumeLimitExceededError(address, volume_after, config.max_daily_volume)

    reasons = suspicious_reasons(rolled, config, amount, volume_after)
    return replace(rolled, last_action_time=now, daily_volume=volume_after), reasons


def place_in_cooldown(entry: RateLimitEntry, now: int, period: int) -> RateLimitEntry:
    return replace(entry, cooldown_until=now + period)


def clear_cooldown(entry: RateLimitEntry) -> RateLimitEntry:
    return replace(entry, cooldown_until=0)
