"""
Pure functional core: integer math, the observation ring, the fee curve,
the flash-loan guard, the circuit breaker and the reserve transitions.
"""

from .errors import StabilizerError
from .invariants import check_all
from .types import (
    BreakerState,
    BreakerStatus,
    ConversionQuote,
    EngineEvent,
    EngineState,
    Event,
    FeeParameters,
    OracleState,
    PriceObservation,
    RateLimitConfig,
    RateLimitEntry,
    ReserveState,
    Transition,
)

__all__ = [
    "StabilizerError",
    "check_all",
    "BreakerState",
    "BreakerStatus",
    "ConversionQuote",
    "EngineEvent",
    "EngineState",
    "Event",
    "FeeParameters",
    "OracleState",
    "PriceObservation",
    "RateLimitConfig",
    "RateLimitEntry",
    "ReserveState",
    "Transition",
]
