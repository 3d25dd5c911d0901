"""Command-line interface for the liquidator."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .config import load_config
from .logging_setup import configure_logging
from .models import AttemptStatus
from .services import Liquidator, Watcher


# statuses that are a normal outcome rather than an error
_OK_STATUSES = {AttemptStatus.SUCCESS, AttemptStatus.NOT_LIQUIDATABLE}


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="prime-liquidator",
        description="Flash-loan liquidator for Prime Account loans",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    liquidate_parser = sub.add_parser("liquidate", help="Run one liquidation attempt")
    liquidate_parser.add_argument("loan", help="Loan (Prime Account) address")
    liquidate_parser.add_argument(
        "--mode",
        choices=["ltv", "sellout"],
        default=None,
        help="Sizing mode (overrides config)",
    )
    liquidate_parser.add_argument(
        "--action",
        choices=["close", "heal", "liquidate"],
        default=None,
        help="Liquidation action (bankrupt loans are always healed)",
    )

    check_parser = sub.add_parser("check", help="Report loan solvency without sending transactions")
    check_parser.add_argument("loans", nargs="+", help="Loan addresses")

    watch_parser = sub.add_parser("watch", help="Continuously liquidate configured loans")
    watch_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Check interval in minutes (overrides config)",
    )

    reconcile_parser = sub.add_parser("reconcile", help="Resolve a timed-out liquidation tx")
    reconcile_parser.add_argument("tx_hash", help="Transaction hash")

    return parser


async def _check(liquidator: Liquidator, loans: list[str]) -> None:
    for loan in loans:
        snapshot = await liquidator.inspect(loan)
        estimate = Liquidator.estimate_health(snapshot)
        print(
            f"{loan}: total value ${snapshot.total_value:,.2f} · debt ${snapshot.debt:,.2f}"
            f" · health {snapshot.health_ratio:.4f} (estimated {estimate:.4f})"
            f"{' · BANKRUPT' if snapshot.is_bankrupt else ''}"
        )


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command. Returns the process exit code."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    liquidator = Liquidator.from_config(config)

    if args.command == "liquidate":
        action = args.action.upper() if args.action else None
        result = await liquidator.liquidate(args.loan, mode=args.mode, action=action)
        print(f"{result.status.value}{f' {result.tx_hash}' if result.tx_hash else ''}")
        return 0 if result.status in _OK_STATUSES else 1
    if args.command == "check":
        await _check(liquidator, args.loans)
        return 0
    if args.command == "watch":
        await Watcher(liquidator, config.watcher).run_continuous(args.interval)
        return 0
    if args.command == "reconcile":
        status = await liquidator.reconcile(args.tx_hash)
        print(status.value)
        return 0 if status is not AttemptStatus.TIMEOUT else 2

    build_parser().print_help()
    return 1


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
