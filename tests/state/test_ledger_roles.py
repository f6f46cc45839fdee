"""Tests for token ledgers and the capability registry."""

from __future__ import annotations

import logging

import pytest

from reserve_engine.state.ledger import InsufficientBalanceError, TokenLedger
from reserve_engine.state.roles import Capability, RoleRegistry


class TestTokenLedger:
    def test_mint_and_transfer(self):
        t = TokenLedger("UTIL")
        t.mint("alice", 100)
        t.transfer("alice", "bob", 40)
        assert t.balance_of("alice") == 60
        assert t.balance_of("bob") == 40
        assert t.total_supply() == 100

    def test_zero_balances_dropped(self):
        t = TokenLedger("UTIL")
        t.mint("alice", 10)
        t.transfer("alice", "bob", 10)
        assert t.get_all_balances() == {"bob": 10}

    def test_insufficient_balance(self):
        t = TokenLedger("UTIL")
        t.mint("alice", 10)
        with pytest.raises(InsufficientBalanceError):
            t.transfer("alice", "bob", 11)

    def test_raising_hook_aborts_transfer(self):
        t = TokenLedger("UTIL")
        t.mint("alice", 10)

        def hook(sender, recipient, amount):
            raise RuntimeError("blocked")

        t.add_transfer_hook(hook)
        with pytest.raises(RuntimeError):
            t.transfer("alice", "bob", 5)
        assert t.balance_of("alice") == 10
        t.remove_transfer_hook(hook)
        t.transfer("alice", "bob", 5)
        assert t.balance_of("bob") == 5

    def test_burn_reduces_supply_and_notifies(self):
        t = TokenLedger("UTIL")
        t.mint("alice", 10)
        seen = []
        t.add_burn_listener(lambda holder, amount: seen.append((holder, amount)))
        t.burn("alice", 4)
        assert t.total_supply() == 6
        assert seen == [("alice", 4)]

    def test_failing_burn_listener_is_logged(self, caplog):
        t = TokenLedger("UTIL")
        t.mint("alice", 10)

        def listener(holder, amount):
            raise RuntimeError("down")

        t.add_burn_listener(listener)
        with caplog.at_level(logging.WARNING, logger="reserve_engine.state.ledger"):
            t.burn("alice", 4)
        assert t.total_supply() == 6
        assert "burn listener failed" in caplog.text


class TestRoleRegistry:
    def test_grant_and_check(self):
        roles = RoleRegistry({Capability.ORACLE: ["feeder"]})
        assert roles.has_capability("feeder", Capability.ORACLE)
        assert not roles.has_capability("feeder", Capability.ADMIN)

    def test_revoke(self):
        roles = RoleRegistry()
        roles.grant(Capability.ADMIN, "root")
        roles.revoke(Capability.ADMIN, "root")
        assert roles.holders(Capability.ADMIN) == set()

    def test_rejects_empty_address(self):
        with pytest.raises(ValueError):
            RoleRegistry().grant(Capability.ADMIN, "")
