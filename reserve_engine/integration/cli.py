"""Command-line inspection of engine snapshots.

    reserve-engine init   --config engine.yaml --out state.json [--supply 1000000]
    reserve-engine quote  --snapshot state.json --amount 1000
    reserve-engine health --snapshot state.json --supply 1000000

Only `init` reads a config; the other commands take everything from the snapshot.

All output is a single JSON object on stdout.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import Any, Dict, List, Optional

from ..core import conversion, oracle, reserve
from ..core.errors import StabilizerError
from ..state.snapshot import load_snapshot, save_snapshot
from .config import EngineConfig, load_config
from .engine import initial_state


def _now(args: argparse.Namespace) -> int:
    return args.now if args.now is not None else int(time.time())


def _config(args: argparse.Namespace) -> EngineConfig:
    return load_config(args.config) if args.config else EngineConfig()


def _cmd_init(args: argparse.Namespace) -> Dict[str, Any]:
    state = initial_state(_config(args), _now(args), args.supply)
    commitment = save_snapshot(state, args.out)
    return {"path": args.out, "commitment": commitment}


def _cmd_quote(args: argparse.Namespace) -> Dict[str, Any]:
    state = load_snapshot(args.snapshot)
    reserve.require_positive(args.amount, name="amount")
    q = conversion.quote_conversion(state, args.amount, _now(args))
    return {
        "amount": args.amount,
        "price": q.price_e18,
        "fee_bps": q.fee_bps,
        "expected_value": q.expected_value,
        "fee": q.fee_amount,
        "subsidy": q.subsidy,
        "final_amount": q.final_amount,
    }


def _cmd_health(args: argparse.Namespace) -> Dict[str, Any]:
    state = load_snapshot(args.snapshot)
    now = _now(args)
    return {
        "status": state.breaker.status.value,
        "verified_price": oracle.verified_price(state.oracle, now),
        "twap": oracle.calculate_twap(state.oracle, now),
        "total_reserves": state.reserve.total_reserves,
        "reserve_ratio_bps": reserve.reserve_ratio_health(state, args.supply, now),
        "critical_ratio_bps": reserve.critical_ratio(state),
        "withdrawable": reserve.withdrawable_reserves(state, args.supply, now),
        "current_fee_bps": state.reserve.current_fee_bps,
        "low_value_mode": state.reserve.low_value_mode,
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reserve-engine", description="Reserve engine snapshot tools")
    parser.add_argument("--now", type=int, help="Override the clock (unix seconds)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init", help="Write a fresh snapshot from the config")
    p_init.add_argument("--config", help="YAML engine config (defaults apply when omitted)")
    p_init.add_argument("--out", required=True, help="Snapshot path to write")
    p_init.add_argument(
        "--supply", type=int, default=0, help="Token supply to health-check the seeded reserves against"
    )
    p_init.set_defaults(func=_cmd_init)

    p_quote = sub.add_parser("quote", help="Quote a conversion against a snapshot")
    p_quote.add_argument("--snapshot", required=True)
    p_quote.add_argument("--amount", type=int, required=True, help="Token amount (base units)")
    p_quote.set_defaults(func=_cmd_quote)

    p_health = sub.add_parser("health", help="Report reserve health for a snapshot")
    p_health.add_argument("--snapshot", required=True)
    p_health.add_argument("--supply", type=int, required=True, help="Token total supply (base units)")
    p_health.set_defaults(func=_cmd_health)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        out = args.func(args)
    except StabilizerError as exc:
        print(json.dumps({"error": exc.code, "message": str(exc)}), file=sys.stderr)
        return 1
    except (OSError, TypeError, ValueError) as exc:
        print(json.dumps({"error": type(exc).__name__, "message": str(exc)}), file=sys.stderr)
        return 2
    print(json.dumps(out, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
