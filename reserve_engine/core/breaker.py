"""Circuit breaker and recovery state machine.

    NORMAL --(critical ratio | emergency_pause)--> PAUSED
    PAUSED --(resume_from_pause, ratio ok)-------> NORMAL
    PAUSED --(initiate_recovery)-----------------> IN_RECOVERY
    IN_RECOVERY --(approvals reach quorum)-------> NORMAL  (approvals cleared)

Every transition is a pure function returning a new `BreakerState`; illegal
transitions raise `InvalidBreakerTransitionError`.
"""

from __future__ import annotations

from dataclasses import replace

from .errors import (
    EmergencyAlreadyApprovedError,
    EnginePausedError,
    InvalidBreakerTransitionError,
    ReserveRatioCriticalError,
    ValidationError,
)
from .types import BreakerState, BreakerStatus


def require_normal(state: BreakerState) -> None:
    if state.status is not BreakerStatus.NORMAL:
        raise EnginePausedError(f"engine is {state.status.value}")


def _require_status(state: BreakerState, expected: BreakerStatus, action: str) -> None:
    if state.status is not expected:
        raise InvalidBreakerTransitionError(
            f"{action} requires {expected.value}, engine is {state.status.value}"
        )


def check_and_pause_if_critical(
    state: BreakerState, ratio_bps: int, critical_bps: int, now: int
) -> tuple[BreakerState, bool]:
    """Trip the breaker when the ratio is below critical. Returns `(next, tripped)`."""
    if state.status is BreakerStatus.NORMAL and ratio_bps < critical_bps:
        return replace(state, status=BreakerStatus.PAUSED, paused_at=now), True
    return state, False


def emergency_pause(state: BreakerState, now: int) -> BreakerState:
    _require_status(state, BreakerStatus.NORMAL, "emergency_pause")
    return replace(state, status=BreakerStatus.PAUSED, paused_at=now)


def resume_from_pause(state: BreakerState, ratio_bps: int, critical_bps: int) -> BreakerState:
    _require_status(state, BreakerStatus.PAUSED, "resume_from_pause")
    if ratio_bps < critical_bps:
        raise ReserveRatioCriticalError(ratio_bps, critical_bps)
    return replace(state, status=BreakerStatus.NORMAL, paused_at=0)


def initiate_recovery(state: BreakerState) -> BreakerState:
    _require_status(state, BreakerStatus.PAUSED, "initiate_emergency_recovery")
    return replace(state, status=BreakerStatus.IN_RECOVERY, recovery_approvals=frozenset())


def approve_recovery(state: BreakerState, approver: str) -> tuple[BreakerState, bool]:
    """Record one approval. Returns `(next, completed)`; completion returns to NORMAL."""
    _require_status(state, BreakerStatus.IN_RECOVERY, "approve_recovery")
    if approver in state.recovery_approvals:
        raise EmergencyAlreadyApprovedError(approver)
    approvals = state.recovery_approvals | {approver}
    if len(approvals) >= state.required_approvals:
        return (
            replace(state, status=BreakerStatus.NORMAL, paused_at=0, recovery_approvals=frozenset()),
            True,
        )
    return replace(state, recovery_approvals=approvals), False


def set_required_approvals(state: BreakerState, required: int) -> BreakerState:
    if not isinstance(required, int) or isinstance(required, bool) or required < 1:
        raise ValidationError(f"required_approvals must be a positive int: {required!r}")
    if state.status is BreakerStatus.IN_RECOVERY:
        raise InvalidBreakerTransitionError("cannot change the quorum during a recovery")
    return replace(state, required_approvals=required)


def set_critical_threshold(state: BreakerState, percent: int) -> BreakerState:
    if not isinstance(percent, int) or isinstance(percent, bool) or not (1 <= percent <= 1000):
        raise ValidationError(f"critical threshold must be in [1, 1000]: {percent!r}")
    return replace(state, critical_threshold_percent=percent)
