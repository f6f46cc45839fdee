"""Exception types for the reserve engine.

Every rejection carries a stable ``code`` string so callers and logs can match
on it without depending on the message text. Rejections are raised before the
engine commits anything, so the engine state is unchanged after any of these.
"""

from __future__ import annotations


class StabilizerError(Exception):
    """Base class for every rejection raised by the engine."""

    code = "StabilizerError"


# -- Validation --------------------------------------------------------------

class ValidationError(StabilizerError):
    """Zero amount, empty address or out-of-range parameter."""

    code = "InvalidParameter"


# -- Economic guards ---------------------------------------------------------

class EconomicGuardError(StabilizerError):
    """Rejected on economic grounds; the caller may retry later or with other inputs."""

    code = "EconomicGuard"


class BelowMinReturnError(EconomicGuardError):
    code = "BelowMinReturn"

    def __init__(self, payout: int, min_return: int) -> None:
        self.payout = payout
        self.min_return = min_return
        super().__init__(f"payout {payout} below minimum return {min_return}")


class ExceedsAvailableReservesError(EconomicGuardError):
    code = "ExceedsAvailableReserves"

    def __init__(self, requested: int, available: int) -> None:
        self.requested = requested
        self.available = available
        super().__init__(f"requested {requested} exceeds available reserves {available}")


class PriceDeviatesFromTWAPError(EconomicGuardError):
    code = "PriceDeviatesFromTWAP"

    def __init__(self, price: int, twap: int) -> None:
        self.price = price
        self.twap = twap
        super().__init__(f"price {price} deviates too far from TWAP {twap}")


class PriceChangeTooLargeError(EconomicGuardError):
    code = "PriceChangeTooLarge"

    def __init__(self, price: int, reference: int) -> None:
        self.price = price
        self.reference = reference
        super().__init__(f"price {price} moves too far from reference {reference}")


class AddressInCooldownError(EconomicGuardError):
    code = "AddressInCooldown"

    def __init__(self, address: str, until: int) -> None:
        self.address = address
        self.until = until
        super().__init__(f"address {address} in suspicious activity cooldown until {until}")


class ActionTooSoonError(EconomicGuardError):
    code = "ActionTooSoon"

    def __init__(self, address: str, next_allowed: int) -> None:
        self.address = address
        self.next_allowed = next_allowed
        super().__init__(f"address {address} must wait until {next_allowed}")


class AmountExceedsMaxConversionError(EconomicGuardError):
    code = "AmountExceedsMaxConversion"

    def __init__(self, amount: int, max_single: int) -> None:
        self.amount = amount
        self.max_single = max_single
        super().__init__(f"amount {amount} exceeds single conversion cap {max_single}")


class DailyVolumeLimitExceededError(EconomicGuardError):
    code = "DailyVolumeLimitExceeded"

    def __init__(self, address: str, attempted: int, max_daily: int) -> None:
        self.address = address
        self.attempted = attempted
        self.max_daily = max_daily
        super().__init__(f"address {address} daily volume {attempted} exceeds cap {max_daily}")


# -- Breaker / lifecycle -----------------------------------------------------

class BreakerStateError(StabilizerError):
    code = "BreakerState"


class EnginePausedError(BreakerStateError):
    code = "EnginePaused"


class SystemPausedError(BreakerStateError):
    code = "SystemPaused"


class InvalidBreakerTransitionError(BreakerStateError):
    code = "InvalidBreakerTransition"


class EmergencyAlreadyApprovedError(BreakerStateError):
    code = "EmergencyAlreadyApproved"

    def __init__(self, approver: str) -> None:
        self.approver = approver
        super().__init__(f"{approver} already approved this recovery")


class ReserveRatioCriticalError(BreakerStateError):
    code = "ReserveRatioCritical"

    def __init__(self, ratio_bps: int, critical_bps: int) -> None:
        self.ratio_bps = ratio_bps
        self.critical_bps = critical_bps
        super().__init__(f"reserve ratio {ratio_bps} bps still below critical {critical_bps} bps")


# -- Authorization -----------------------------------------------------------

class UnauthorizedError(StabilizerError):
    code = "Unauthorized"

    def __init__(self, caller: str, capability: str) -> None:
        self.caller = caller
        self.capability = capability
        super().__init__(f"{caller!r} lacks capability {capability}")


# -- Engine integrity --------------------------------------------------------

class ReentrantCallError(StabilizerError):
    code = "ReentrantCall"


class InvariantViolationError(StabilizerError):
    """Raised when a candidate post-state violates one or more invariants."""

    code = "InvariantViolation"

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {', '.join(violations)}")
