"""
Capability registry.

Implements `has_capability(caller, Capability) -> bool` over a settable
mapping. The engine consults it before every privileged operation; who grants
what is decided outside the engine.
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Dict, Iterable, Mapping, Set


@unique
class Capability(Enum):
    ADMIN = "admin"
    ORACLE = "oracle"
    CONVERTER = "converter"
    BURNER = "burner"
    FEE_SOURCE = "fee_source"
    EMERGENCY = "emergency"
    RECOVERY_APPROVER = "recovery_approver"


class RoleRegistry:
    """Mapping of capability -> set of addresses."""

    def __init__(self, grants: Mapping[Capability, Iterable[str]] | None = None):
        self._grants: Dict[Capability, Set[str]] = {cap: set() for cap in Capability}
        for cap, addresses in (grants or {}).items():
            for address in addresses:
                self.grant(cap, address)

    def grant(self, capability: Capability, address: str) -> None:
        if not isinstance(address, str) or not address:
            raise ValueError("address must be a non-empty string")
        self._grants[capability].add(address)

    def revoke(self, capability: Capability, address: str) -> None:
        self._grants[capability].discard(address)

    def has_capability(self, address: str, capability: Capability) -> bool:
        return address in self._grants[capability]

    def holders(self, capability: Capability) -> Set[str]:
        return set(self._grants[capability])

    def __repr__(self) -> str:
        counts = ", ".join(f"{cap.value}={len(addrs)}" for cap, addrs in self._grants.items() if addrs)
        return f"RoleRegistry({counts})"
