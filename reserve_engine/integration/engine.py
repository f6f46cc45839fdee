"""
Stability engine: the imperative shell around the pure reserve kernel.

Each public operation:
1. rejects re-entrant calls,
2. checks the caller's capability and the external system pause signal,
3. reads the clock and token supply once and runs a pure transition on the
   current `EngineState`,
4. checks every invariant on the candidate state,
5. performs the collaborator transfers (rolled back if any of them fails),
6. commits the new state and publishes its events.

Any failure before step 6 leaves the committed state object untouched.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

from ..core import breaker, conversion, oracle, rate_limit, reserve
from ..core.errors import (
    InvariantViolationError,
    ReentrantCallError,
    StabilizerError,
    SystemPausedError,
    UnauthorizedError,
    ValidationError,
)
from ..core.invariants import check_all
from ..core.types import (
    BreakerState,
    BreakerStatus,
    ConversionQuote,
    EngineEvent,
    EngineState,
    Event,
    FeeParameters,
    RateLimitConfig,
    RateLimitEntry,
    ReserveState,
    Transition,
)
from ..state.ledger import BurnListener, TokenContract
from ..state.roles import Capability, RoleRegistry
from ..state.snapshot import load_snapshot, save_snapshot
from .config import EngineConfig
from .notify import Notifier

logger = logging.getLogger(__name__)

Clock = Callable[[], int]
# (ledger, sender, recipient, amount)
Move = Tuple[TokenContract, str, str, int]


def _wall_clock() -> int:
    return int(time.time())


def initial_state(config: EngineConfig, now: int, token_supply: int = 0) -> EngineState:
    """Build the engine state described by *config*, seeded at time *now*.

    The breaker starts Paused when the seeded reserves are already below the
    critical ratio for *token_supply*.
    """
    oracle_state = oracle.init_oracle_state(
        config.initial_price,
        now,
        ring_size=config.ring_size,
        window_size=config.twap_window_size,
        interval=config.observation_interval,
        twap_enabled=config.twap_enabled,
        twap_deviation_bps=config.twap_deviation_bps,
        max_price_change_bps=config.max_price_change_bps,
    )
    state = EngineState(
        oracle=oracle_state,
        fees=FeeParameters(
            base_fee_bps=config.base_fee_bps,
            max_fee_bps=config.max_fee_bps,
            min_fee_bps=config.min_fee_bps,
            adjustment_factor=config.fee_adjustment_factor,
            drop_threshold_bps=config.drop_threshold_bps,
            max_drop_threshold_bps=config.max_drop_threshold_bps,
        ),
        reserve=ReserveState(
            baseline_price=config.baseline_price,
            total_reserves=config.initial_reserves,
            reserve_ratio_target_bps=config.reserve_ratio_target_bps,
            min_reserve_ratio_bps=config.min_reserve_ratio_bps,
            current_fee_bps=config.base_fee_bps,
            value_threshold_bps=config.value_threshold_bps,
            burn_to_reserve_bps=config.burn_to_reserve_bps,
            platform_fee_to_reserve_bps=config.platform_fee_to_reserve_bps,
        ),
        rate_limit_config=RateLimitConfig(
            max_daily_volume=config.max_daily_volume,
            max_single_amount=config.max_single_amount,
            min_interval=config.min_action_interval,
            cooldown_period=config.cooldown_period,
            enabled=config.flash_loan_protection,
        ),
        breaker=BreakerState(
            required_approvals=config.required_approvals,
            critical_threshold_percent=config.critical_threshold_percent,
        ),
        rate_limits={},
    )
    refreshed, _ = reserve.refresh_fee(state, now)
    checked, _ = reserve.check_health(refreshed, token_supply, now)
    return checked


def _validated(build: Callable[[], Any]) -> Any:
    """Run a dataclass constructor, surfacing its TypeError/ValueError as ValidationError."""
    try:
        return build()
    except (TypeError, ValueError) as exc:
        raise ValidationError(str(exc)) from exc


class StabilityEngine:
    """Price-stabilization reserve engine for one token / stable-asset pair."""

    def __init__(
        self,
        config: EngineConfig,
        *,
        token: TokenContract,
        stable: TokenContract,
        roles: RoleRegistry,
        clock: Optional[Clock] = None,
        system_paused: Optional[Callable[[], bool]] = None,
        address: str = "stability-engine",
        state: Optional[EngineState] = None,
    ):
        if not address:
            raise ValueError("engine address must be non-empty")
        self.config = config
        self.address = address
        self._token = token
        self._stable = stable
        self._roles = roles
        self._clock: Clock = clock or _wall_clock
        self._system_paused = system_paused
        self._entered = False
        self._events: List[EngineEvent] = []
        self.emergency_notifier = Notifier("emergency")
        if state is None:
            state = initial_state(config, self._now(), token.total_supply())
        self._state = state

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _now(self) -> int:
        now = self._clock()
        if not isinstance(now, int) or isinstance(now, bool) or now <= 0:
            raise ValueError(f"clock must return a positive int, got {now!r}")
        return now

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        if self._entered:
            raise ReentrantCallError(f"{name} called while another engine operation is running")
        self._entered = True
        try:
            yield
        except StabilizerError as exc:
            logger.info("%s rejected: %s: %s", name, exc.code, exc)
            raise
        finally:
            self._entered = False

    def _require(self, caller: str, capability: Capability) -> None:
        self._require_caller(caller)
        if not self._roles.has_capability(caller, capability):
            raise UnauthorizedError(caller, capability.value)

    def _require_caller(self, caller: str) -> None:
        if not isinstance(caller, str) or not caller:
            raise ValidationError("caller must be a non-empty string")

    def _require_system_live(self) -> None:
        if self._system_paused is not None and self._system_paused():
            raise SystemPausedError("system-wide pause is active")

    def _settle(self, moves: Sequence[Move]) -> None:
        """Run transfers in order; on failure, reverse the ones already done."""
        done: List[Move] = []
        try:
            for ledger, sender, recipient, amount in moves:
                if amount <= 0:
                    continue
                ledger.transfer(sender, recipient, amount)
                done.append((ledger, sender, recipient, amount))
        except Exception:
            for ledger, sender, recipient, amount in reversed(done):
                ledger.transfer(recipient, sender, amount)
            raise

    def _commit(self, transition: Transition, moves: Sequence[Move] = ()) -> None:
        violations = check_all(transition.state)
        if violations:
            raise InvariantViolationError(violations)
        self._settle(moves)
        self._state = transition.state
        self._publish(transition.events)

    def _publish(self, events: Sequence[EngineEvent]) -> None:
        for event in events:
            self._events.append(event)
            if event.event is Event.SUSPICIOUS_ACTIVITY:
                logger.warning("suspicious activity: %s", dict(event.data))
            elif event.event in (Event.CIRCUIT_BREAKER_TRIGGERED, Event.EMERGENCY_PAUSED):
                logger.warning("%s: %s", event.event.value, dict(event.data))
                self.notify_emergency(event)
            else:
                logger.info("%s: %s", event.event.value, dict(event.data))

    def _refresh(self, state: EngineState, now: int) -> Tuple[EngineState, Tuple[EngineEvent, ...]]:
        """Fee refresh followed by the health check against the live supply."""
        refreshed, fee_events = reserve.refresh_fee(state, now)
        checked, breaker_events = reserve.check_health(refreshed, self._token.total_supply(), now)
        return checked, (*fee_events, *breaker_events)

    def _replace_state(self, name: str, state: EngineState, now: int, data: dict) -> None:
        event = EngineEvent(Event.PARAMETERS_UPDATED, now, {"operation": name, **data})
        refreshed, events = self._refresh(state, now)
        self._commit(Transition(state=refreshed, events=(event, *events)))

    # ------------------------------------------------------------------
    # Oracle
    # ------------------------------------------------------------------

    def update_price(self, caller: str, new_price: int) -> None:
        with self._operation("update_price"):
            self._require(caller, Capability.ORACLE)
            now = self._now()
            transition = conversion.apply_price_update(
                self._state, new_price, self._token.total_supply(), now
            )
            self._commit(transition)

    def record_price_observation(self, caller: str) -> bool:
        """Record the current price into the ring. Returns False inside an interval."""
        with self._operation("record_price_observation"):
            self._require(caller, Capability.ORACLE)
            transition = conversion.apply_record_observation(
                self._state, self._token.total_supply(), self._now()
            )
            self._commit(transition)
            return bool(transition.events)

    def configure_twap(self, caller: str, window_size: int, interval: int, enabled: bool) -> None:
        with self._operation("configure_twap"):
            self._require(caller, Capability.ADMIN)
            now = self._now()
            next_oracle = oracle.configure_twap(self._state.oracle, window_size, interval, enabled)
            self._replace_state(
                "configure_twap",
                replace(self._state, oracle=next_oracle),
                now,
                {"window_size": window_size, "interval": interval, "enabled": enabled},
            )

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    def convert(self, caller: str, project: str, amount: int, min_return: int) -> int:
        """Convert *caller*'s tokens into stable paid to *project*. Returns the payout."""
        with self._operation("convert"):
            self._require(caller, Capability.CONVERTER)
            self._require_system_live()
            now = self._now()
            transition, quote = conversion.apply_convert(
                self._state, caller, project, amount, min_return, self._token.total_supply(), now
            )
            payout = quote.final_amount
            self._commit(
                transition,
                [
                    (self._token, caller, self.address, amount),
                    (self._stable, self.address, project, payout),
                ],
            )
            return payout

    def swap(self, caller: str, amount: int, min_return: int) -> int:
        """Swap tokens for stable at the verified price. Returns the payout."""
        with self._operation("swap"):
            self._require_caller(caller)
            self._require_system_live()
            now = self._now()
            transition, quote = conversion.apply_swap(
                self._state, caller, amount, min_return, self._token.total_supply(), now
            )
            payout = quote.final_amount
            self._commit(
                transition,
                [
                    (self._token, caller, self.address, amount),
                    (self._stable, self.address, caller, payout),
                ],
            )
            return payout

    def quote(self, amount: int) -> ConversionQuote:
        reserve.require_positive(amount, name="amount")
        return conversion.quote_conversion(self._state, amount, self._now())

    def simulate_conversion(self, amount: int) -> Tuple[int, int, int, int]:
        """Read-only projection of `convert`: (expected_value, subsidy, final_amount, fee)."""
        q = self.quote(amount)
        return q.expected_value, q.subsidy, q.final_amount, q.fee_amount

    # ------------------------------------------------------------------
    # Reserve ledger
    # ------------------------------------------------------------------

    def add_reserves(self, caller: str, amount: int) -> None:
        with self._operation("add_reserves"):
            self._require_caller(caller)
            self._require_system_live()
            now = self._now()
            transition = reserve.apply_add_reserves(
                self._state, caller, amount, self._token.total_supply(), now
            )
            self._commit(transition, [(self._stable, caller, self.address, amount)])

    def withdraw_reserves(self, caller: str, amount: int, recipient: Optional[str] = None) -> None:
        with self._operation("withdraw_reserves"):
            self._require(caller, Capability.ADMIN)
            self._require_system_live()
            to = recipient or caller
            now = self._now()
            transition = reserve.apply_withdraw_reserves(
                self._state, to, amount, self._token.total_supply(), now
            )
            self._commit(transition, [(self._stable, self.address, to, amount)])

    def process_burned_tokens(self, caller: str, burned_amount: int) -> int:
        """Credit reserves with a share of the burned tokens' value. Returns the credit."""
        with self._operation("process_burned_tokens"):
            self._require(caller, Capability.BURNER)
            self._require_system_live()
            now = self._now()
            transition = reserve.apply_burned_tokens(
                self._state, burned_amount, self._token.total_supply(), now
            )
            credit = reserve.burn_reserve_credit(self._state, burned_amount, now)
            self._commit(transition)
            return credit

    def burn_listener(self, caller: str) -> BurnListener:
        """Listener for `TokenLedger.add_burn_listener` acting as *caller*."""

        def _on_burn(_holder: str, amount: int) -> None:
            self.process_burned_tokens(caller, amount)

        return _on_burn

    def process_platform_fees(self, caller: str, fee_amount: int) -> int:
        """Pull the reserve share of a collaborator's fee. Returns that share."""
        with self._operation("process_platform_fees"):
            self._require(caller, Capability.FEE_SOURCE)
            self._require_system_live()
            now = self._now()
            transition = reserve.apply_platform_fees(
                self._state, caller, fee_amount, self._token.total_supply(), now
            )
            share = reserve.platform_fee_share(self._state, fee_amount)
            self._commit(transition, [(self._stable, caller, self.address, share)])
            return share

    # ------------------------------------------------------------------
    # Circuit breaker + recovery
    # ------------------------------------------------------------------

    def check_and_pause_if_critical(self) -> bool:
        """Run the health check on demand. Returns True when it paused the engine."""
        with self._operation("check_and_pause_if_critical"):
            now = self._now()
            checked, events = reserve.check_health(self._state, self._token.total_supply(), now)
            self._commit(Transition(state=checked, events=events))
            return bool(events)

    def emergency_pause(self, caller: str) -> None:
        with self._operation("emergency_pause"):
            self._require(caller, Capability.EMERGENCY)
            now = self._now()
            next_breaker = breaker.emergency_pause(self._state.breaker, now)
            event = EngineEvent(Event.EMERGENCY_PAUSED, now, {"by": caller})
            self._commit(Transition(state=replace(self._state, breaker=next_breaker), events=(event,)))

    def resume_from_pause(self, caller: str) -> None:
        with self._operation("resume_from_pause"):
            self._require(caller, Capability.EMERGENCY)
            now = self._now()
            ratio = reserve.reserve_ratio_health(self._state, self._token.total_supply(), now)
            next_breaker = breaker.resume_from_pause(
                self._state.breaker, ratio, reserve.critical_ratio(self._state)
            )
            event = EngineEvent(Event.RESUMED, now, {"by": caller, "ratio_bps": ratio})
            self._commit(Transition(state=replace(self._state, breaker=next_breaker), events=(event,)))

    def initiate_emergency_recovery(self, caller: str) -> None:
        with self._operation("initiate_emergency_recovery"):
            self._require(caller, Capability.EMERGENCY)
            now = self._now()
            next_breaker = breaker.initiate_recovery(self._state.breaker)
            event = EngineEvent(
                Event.RECOVERY_INITIATED, now,
                {"by": caller, "required_approvals": next_breaker.required_approvals},
            )
            self._commit(Transition(state=replace(self._state, breaker=next_breaker), events=(event,)))

    def approve_recovery(self, caller: str) -> bool:
        """Record *caller*'s approval. Returns True when it completed the recovery."""
        with self._operation("approve_recovery"):
            self._require(caller, Capability.RECOVERY_APPROVER)
            now = self._now()
            next_breaker, completed = breaker.approve_recovery(self._state.breaker, caller)
            events = [
                EngineEvent(
                    Event.RECOVERY_APPROVED, now,
                    {"by": caller, "approvals": len(self._state.breaker.recovery_approvals) + 1},
                )
            ]
            state = replace(self._state, breaker=next_breaker)
            if completed:
                events.append(EngineEvent(Event.RECOVERY_COMPLETED, now, {}))
                state, breaker_events = reserve.check_health(state, self._token.total_supply(), now)
                events.extend(breaker_events)
            self._commit(Transition(state=state, events=tuple(events)))
            return completed

    def initialize_emergency_recovery(self, caller: str, required_approvals: int) -> None:
        with self._operation("initialize_emergency_recovery"):
            self._require(caller, Capability.ADMIN)
            now = self._now()
            next_breaker = breaker.set_required_approvals(self._state.breaker, required_approvals)
            self._replace_state(
                "initialize_emergency_recovery",
                replace(self._state, breaker=next_breaker),
                now,
                {"required_approvals": required_approvals},
            )

    def set_critical_reserve_threshold(self, caller: str, percent: int) -> None:
        with self._operation("set_critical_reserve_threshold"):
            self._require(caller, Capability.ADMIN)
            now = self._now()
            next_breaker = breaker.set_critical_threshold(self._state.breaker, percent)
            self._replace_state(
                "set_critical_reserve_threshold",
                replace(self._state, breaker=next_breaker),
                now,
                {"critical_threshold_percent": percent},
            )

    def notify_emergency(self, event: Optional[EngineEvent] = None) -> int:
        """Broadcast the breaker status to connected listeners. Returns the failure count."""
        payload = {
            "engine": self.address,
            "status": self._state.breaker.status.value,
            "event": event.event.value if event is not None else None,
        }
        return self.emergency_notifier.notify(payload)

    # ------------------------------------------------------------------
    # Flash-loan guard administration
    # ------------------------------------------------------------------

    def configure_flash_loan_protection(
        self, caller: str, max_daily_volume: int, max_single_amount: int, min_interval: int, enabled: bool
    ) -> None:
        with self._operation("configure_flash_loan_protection"):
            self._require(caller, Capability.ADMIN)
            now = self._now()
            config = _validated(
                lambda: replace(
                    self._state.rate_limit_config,
                    max_daily_volume=max_daily_volume,
                    max_single_amount=max_single_amount,
                    min_interval=min_interval,
                    enabled=enabled,
                )
            )
            self._replace_state(
                "configure_flash_loan_protection",
                replace(self._state, rate_limit_config=config),
                now,
                {
                    "max_daily_volume": max_daily_volume,
                    "max_single_amount": max_single_amount,
                    "min_interval": min_interval,
                    "enabled": enabled,
                },
            )

    def _set_rate_limit(self, address: str, entry: RateLimitEntry, now: int, until: int) -> None:
        limits = dict(self._state.rate_limits)
        limits[address] = entry
        event = EngineEvent(Event.COOLDOWN_SET, now, {"address": address, "cooldown_until": until})
        self._commit(Transition(state=replace(self._state, rate_limits=limits), events=(event,)))

    def place_in_cooldown(self, caller: str, address: str) -> None:
        with self._operation("place_in_cooldown"):
            self._require(caller, Capability.EMERGENCY)
            if not isinstance(address, str) or not address:
                raise ValidationError("address must be a non-empty string")
            now = self._now()
            entry = self._state.rate_limits.get(address, RateLimitEntry())
            cooled = rate_limit.place_in_cooldown(entry, now, self._state.rate_limit_config.cooldown_period)
            self._set_rate_limit(address, cooled, now, cooled.cooldown_until)

    def remove_from_cooldown(self, caller: str, address: str) -> None:
        with self._operation("remove_from_cooldown"):
            self._require(caller, Capability.EMERGENCY)
            if address not in self._state.rate_limits:
                return
            now = self._now()
            self._set_rate_limit(address, rate_limit.clear_cooldown(self._state.rate_limits[address]), now, 0)

    # ------------------------------------------------------------------
    # Parameter administration
    # ------------------------------------------------------------------

    def update_baseline_price(self, caller: str, baseline_price: int) -> None:
        with self._operation("update_baseline_price"):
            self._require(caller, Capability.ADMIN)
            now = self._now()
            next_reserve = _validated(lambda: replace(self._state.reserve, baseline_price=baseline_price))
            self._replace_state(
                "update_baseline_price",
                replace(self._state, reserve=next_reserve),
                now,
                {"baseline_price": baseline_price},
            )

    def update_fee_parameters(
        self,
        caller: str,
        base_fee_bps: int,
        max_fee_bps: int,
        min_fee_bps: int,
        adjustment_factor: int,
        drop_threshold_bps: int,
        max_drop_threshold_bps: int,
    ) -> None:
        with self._operation("update_fee_parameters"):
            self._require(caller, Capability.ADMIN)
            now = self._now()
            fees = _validated(
                lambda: FeeParameters(
                    base_fee_bps=base_fee_bps,
                    max_fee_bps=max_fee_bps,
                    min_fee_bps=min_fee_bps,
                    adjustment_factor=adjustment_factor,
                    drop_threshold_bps=drop_threshold_bps,
                    max_drop_threshold_bps=max_drop_threshold_bps,
                )
            )
            # Re-base the current fee so the range invariant holds before the refresh.
            next_reserve = replace(self._state.reserve, current_fee_bps=fees.base_fee_bps)
            self._replace_state(
                "update_fee_parameters",
                replace(self._state, fees=fees, reserve=next_reserve),
                now,
                {"base_fee_bps": base_fee_bps, "min_fee_bps": min_fee_bps, "max_fee_bps": max_fee_bps},
            )

    def update_fund_parameters(
        self,
        caller: str,
        reserve_ratio_target_bps: int,
        min_reserve_ratio_bps: int,
        base_fee_bps: int,
        min_fee_bps: int,
        value_threshold_bps: int,
    ) -> None:
        with self._operation("update_fund_parameters"):
            self._require(caller, Capability.ADMIN)
            now = self._now()
            fees = _validated(
                lambda: replace(self._state.fees, base_fee_bps=base_fee_bps, min_fee_bps=min_fee_bps)
            )
            next_reserve = _validated(
                lambda: replace(
                    self._state.reserve,
                    reserve_ratio_target_bps=reserve_ratio_target_bps,
                    min_reserve_ratio_bps=min_reserve_ratio_bps,
                    value_threshold_bps=value_threshold_bps,
                    current_fee_bps=fees.base_fee_bps,
                )
            )
            self._replace_state(
                "update_fund_parameters",
                replace(self._state, fees=fees, reserve=next_reserve),
                now,
                {
                    "reserve_ratio_target_bps": reserve_ratio_target_bps,
                    "min_reserve_ratio_bps": min_reserve_ratio_bps,
                    "value_threshold_bps": value_threshold_bps,
                },
            )

    def update_replenishment_parameters(
        self, caller: str, burn_to_reserve_bps: int, platform_fee_to_reserve_bps: int
    ) -> None:
        with self._operation("update_replenishment_parameters"):
            self._require(caller, Capability.ADMIN)
            now = self._now()
            next_reserve = _validated(
                lambda: replace(
                    self._state.reserve,
                    burn_to_reserve_bps=burn_to_reserve_bps,
                    platform_fee_to_reserve_bps=platform_fee_to_reserve_bps,
                )
            )
            self._replace_state(
                "update_replenishment_parameters",
                replace(self._state, reserve=next_reserve),
                now,
                {
                    "burn_to_reserve_bps": burn_to_reserve_bps,
                    "platform_fee_to_reserve_bps": platform_fee_to_reserve_bps,
                },
            )

    def update_current_fee(self, caller: str) -> int:
        """Re-evaluate the fee and low-value mode from the verified price."""
        with self._operation("update_current_fee"):
            self._require_caller(caller)
            now = self._now()
            refreshed, events = self._refresh(self._state, now)
            self._commit(Transition(state=refreshed, events=events))
            return refreshed.reserve.current_fee_bps

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_state(self) -> EngineState:
        return self._state

    @property
    def breaker_status(self) -> BreakerStatus:
        return self._state.breaker.status

    @property
    def total_reserves(self) -> int:
        return self._state.reserve.total_reserves

    def get_verified_price(self) -> int:
        return oracle.verified_price(self._state.oracle, self._now())

    def calculate_twap(self) -> int:
        return oracle.calculate_twap(self._state.oracle, self._now())

    def get_reserve_ratio_health(self) -> int:
        return reserve.reserve_ratio_health(self._state, self._token.total_supply(), self._now())

    def get_withdrawable_reserves(self) -> int:
        return reserve.withdrawable_reserves(self._state, self._token.total_supply(), self._now())

    def get_rate_limit(self, address: str) -> RateLimitEntry:
        return self._state.rate_limits.get(address, RateLimitEntry())

    def is_in_cooldown(self, address: str) -> bool:
        return rate_limit.is_in_cooldown(self.get_rate_limit(address), self._now())

    @property
    def events(self) -> Tuple[EngineEvent, ...]:
        return tuple(self._events)

    def drain_events(self) -> List[EngineEvent]:
        out, self._events = self._events, []
        return out

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: str | os.PathLike[str]) -> str:
        """Persist the committed state. Returns the snapshot commitment."""
        commitment = save_snapshot(self._state, path)
        logger.info("saved engine snapshot %s to %s", commitment, path)
        return commitment

    @classmethod
    def restore(
        cls,
        path: str | os.PathLike[str],
        config: EngineConfig,
        **kwargs: Any,
    ) -> "StabilityEngine":
        """Rebuild an engine from a snapshot written by `save`."""
        state = load_snapshot(path)
        return cls(config, state=state, **kwargs)
