"""
Collaborator state: token ledgers, capabilities and snapshots.
"""

from .ledger import InsufficientBalanceError, TokenContract, TokenLedger
from .roles import Capability, RoleRegistry
from .snapshot import load_snapshot, save_snapshot

__all__ = [
    "InsufficientBalanceError",
    "TokenContract",
    "TokenLedger",
    "Capability",
    "RoleRegistry",
    "load_snapshot",
    "save_snapshot",
]
