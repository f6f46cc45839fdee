"""Snapshot determinism, round trip and tamper detection."""

from __future__ import annotations

import json
from dataclasses import replace

import pytest

from reserve_engine.core.types import BreakerStatus, RateLimitEntry
from reserve_engine.integration.config import EngineConfig
from reserve_engine.integration.engine import initial_state
from reserve_engine.state.canonical import canonical_json_bytes, domain_sep_bytes
from reserve_engine.state.snapshot import (
    load_snapshot,
    save_snapshot,
    snapshot_from_state,
    state_from_dict,
    state_to_dict,
)


def _state():
    s = initial_state(EngineConfig(initial_reserves=5 * 10**18), 1_000_000)
    limits = {
        "bob": RateLimitEntry(last_action_time=1_000_000, daily_volume=7, day_anchor=1_000_000),
        "alice": RateLimitEntry(cooldown_until=1_086_400),
    }
    breaker = replace(s.breaker, status=BreakerStatus.IN_RECOVERY, recovery_approvals=frozenset({"x"}))
    return replace(s, rate_limits=limits, breaker=breaker)


def test_dict_round_trip() -> None:
    s = _state()
    assert state_from_dict(state_to_dict(s)) == s


def test_commitment_is_deterministic() -> None:
    a = snapshot_from_state(_state()).commitment_hex()
    b = snapshot_from_state(_state()).commitment_hex()
    assert a == b
    assert a.startswith("0x")


def test_commitment_tracks_content() -> None:
    s = _state()
    other = replace(s, reserve=replace(s.reserve, total_reserves=s.reserve.total_reserves + 1))
    assert snapshot_from_state(s).commitment_hex() != snapshot_from_state(other).commitment_hex()


def test_file_round_trip(tmp_path) -> None:
    path = tmp_path / "nested" / "state.json"
    commitment = save_snapshot(_state(), path)
    assert json.loads(path.read_text())["commitment"] == commitment
    assert load_snapshot(path) == _state()


def test_tampered_file_rejected(tmp_path) -> None:
    path = tmp_path / "state.json"
    save_snapshot(_state(), path)
    raw = json.loads(path.read_text())
    raw["state"]["reserve"]["total_reserves"] += 1
    path.write_text(json.dumps(raw))
    with pytest.raises(ValueError):
        load_snapshot(path)


def test_missing_field_rejected() -> None:
    d = state_to_dict(_state())
    del d["breaker"]
    with pytest.raises(KeyError):
        state_from_dict(d)


class TestCanonical:
    def test_sorted_compact(self):
        assert canonical_json_bytes({"b": 1, "a": [2, 3]}) == b'{"a":[2,3],"b":1}'

    def test_rejects_floats(self):
        with pytest.raises(TypeError):
            canonical_json_bytes({"x": 1.5})

    def test_domain_separator(self):
        assert domain_sep_bytes("engine_snapshot", 2) == b"reserve-engine:engine_snapshot:v2\x00"
