"""
Fungible token ledgers consumed by the engine.

`TokenContract` is the boundary the engine depends on: total supply, balances
and transfers. `TokenLedger` is an in-memory implementation used for the
utility token and the stable asset alike, with two kinds of hooks:

- transfer hooks run synchronously inside `transfer` and may raise; a raising
  hook aborts the transfer (this is how a token callback re-entering the
  engine surfaces).
- burn listeners are notified after a burn on a best-effort basis; their
  failures are logged and never undo the burn.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Protocol


logger = logging.getLogger(__name__)

Address = str
Amount = int

TransferHook = Callable[[Address, Address, Amount], None]
BurnListener = Callable[[Address, Amount], None]


class InsufficientBalanceError(ValueError):
    """Raised when a transfer or burn would take a balance below zero."""


class TokenContract(Protocol):
    def total_supply(self) -> int: ...

    def balance_of(self, address: Address) -> int: ...

    def transfer(self, sender: Address, recipient: Address, amount: Amount) -> None: ...


class TokenLedger:
    """
    In-memory balance table for one asset.

    Zero balances are dropped to keep the table sparse.
    """

    def __init__(self, symbol: str):
        self.symbol = symbol
        self._balances: Dict[Address, Amount] = {}
        self._total_supply = 0
        self._transfer_hooks: List[TransferHook] = []
        self._burn_listeners: List[BurnListener] = []

    # -- views ---------------------------------------------------------------

    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, address: Address) -> int:
        return self._balances.get(address, 0)

    def get_all_balances(self) -> Dict[Address, Amount]:
        return dict(self._balances)

    # -- mutations -----------------------------------------------------------

    def _set(self, address: Address, amount: Amount) -> None:
        if amount < 0:
            raise InsufficientBalanceError(f"{self.symbol} balance cannot be negative: {amount}")
        if amount == 0:
            self._balances.pop(address, None)
        else:
            self._balances[address] = amount

    def mint(self, address: Address, amount: Amount) -> None:
        if amount <= 0:
            raise ValueError(f"mint amount must be positive: {amount}")
        self._set(address, self.balance_of(address) + amount)
        self._total_supply += amount

    def transfer(self, sender: Address, recipient: Address, amount: Amount) -> None:
        """
        Move *amount* from *sender* to *recipient*.

        Hooks run before balances change, so a raising hook leaves both
        balances untouched.

        Raises:
            ValueError: non-positive amount.
            InsufficientBalanceError: sender balance too low.
        """
        if amount <= 0:
            raise ValueError(f"transfer amount must be positive: {amount}")
        current = self.balance_of(sender)
        if current < amount:
            raise InsufficientBalanceError(
                f"insufficient {self.symbol} balance for {sender}: {current} < {amount}"
            )
        for hook in list(self._transfer_hooks):
            hook(sender, recipient, amount)
        self._set(sender, current - amount)
        self._set(recipient, self.balance_of(recipient) + amount)

    def burn(self, address: Address, amount: Amount) -> None:
        """Destroy tokens, then notify burn listeners (best effort)."""
        if amount <= 0:
            raise ValueError(f"burn amount must be positive: {amount}")
        current = self.balance_of(address)
        if current < amount:
            raise InsufficientBalanceError(
                f"insufficient {self.symbol} balance to burn for {address}: {current} < {amount}"
            )
        self._set(address, current - amount)
        self._total_supply -= amount
        for listener in list(self._burn_listeners):
            try:
                listener(address, amount)
            except Exception:
                logger.warning("%s burn listener failed for %s", self.symbol, address, exc_info=True)

    # -- hooks ---------------------------------------------------------------

    def add_transfer_hook(self, hook: TransferHook) -> None:
        self._transfer_hooks.append(hook)

    def remove_transfer_hook(self, hook: TransferHook) -> None:
        self._transfer_hooks.remove(hook)

    def add_burn_listener(self, listener: BurnListener) -> None:
        self._burn_listeners.append(listener)

    def __repr__(self) -> str:
        return f"TokenLedger({self.symbol}, supply={self._total_supply}, {len(self._balances)} holders)"
