"""Tests for configuration loading and best-effort notifications."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from reserve_engine.integration.config import EngineConfig, config_from_mapping, load_config
from reserve_engine.integration.notify import Notifier

EXAMPLE = Path(__file__).resolve().parents[2] / "config" / "engine.example.yaml"


class TestEngineConfig:
    def test_defaults(self):
        cfg = EngineConfig()
        assert cfg.critical_threshold_percent == 50
        assert cfg.required_approvals == 3
        assert cfg.burn_to_reserve_bps == 1000
        assert cfg.platform_fee_to_reserve_bps == 2000

    def test_rejects_bool_for_int(self):
        with pytest.raises(TypeError):
            EngineConfig(ring_size=True)  # type: ignore[arg-type]

    def test_rejects_int_for_bool(self):
        with pytest.raises(TypeError):
            EngineConfig(twap_enabled=1)  # type: ignore[arg-type]

    def test_rejects_window_over_ring(self):
        with pytest.raises(ValueError):
            EngineConfig(ring_size=4, twap_window_size=5)

    def test_rejects_unordered_fees(self):
        with pytest.raises(ValueError):
            EngineConfig(min_fee_bps=400)

    def test_rejects_unknown_key(self):
        with pytest.raises(ValueError, match="unknown config keys"):
            config_from_mapping({"base_fee": 1})


class TestLoadConfig:
    def test_example_file_matches_defaults(self):
        assert load_config(EXAMPLE) == EngineConfig()

    def test_top_level_mapping(self, tmp_path):
        p = tmp_path / "cfg.yaml"
        p.write_text("base_fee_bps: 200\nmin_fee_bps: 50\n")
        cfg = load_config(p)
        assert (cfg.base_fee_bps, cfg.min_fee_bps) == (200, 50)

    def test_empty_file(self, tmp_path):
        p = tmp_path / "cfg.yaml"
        p.write_text("")
        assert load_config(p) == EngineConfig()

    def test_non_mapping(self, tmp_path):
        p = tmp_path / "cfg.yaml"
        p.write_text("- 1\n- 2\n")
        with pytest.raises(TypeError):
            load_config(p)


class TestNotifier:
    def test_delivers_to_all(self):
        n = Notifier("emergency")
        got = []
        n.subscribe(got.append)
        n.subscribe(got.append)
        assert n.notify({"status": "paused"}) == 0
        assert len(got) == 2

    def test_failures_counted_and_logged(self, caplog):
        n = Notifier("emergency")
        got = []

        def broken(payload):
            raise RuntimeError("unreachable")

        n.subscribe(broken)
        n.subscribe(got.append)
        with caplog.at_level(logging.WARNING, logger="reserve_engine.integration.notify"):
            assert n.notify({"status": "paused"}) == 1
        assert got == [{"status": "paused"}]
        assert "emergency listener" in caplog.text

    def test_unsubscribe(self):
        n = Notifier("emergency")
        n.subscribe(print)
        n.unsubscribe(print)
        assert len(n) == 0
