"""Revenue engine command line interface.

Runs the batch jobs without the HTTP layer, e.g. from a system cron:

    python -m revenue_engine.cli process-payouts --preview
    python -m revenue_engine.cli process-payouts --batch-size 20
    python -m revenue_engine.cli reconcile --lookback-days 3
    python -m revenue_engine.cli tds-summary --fiscal-year 2025-26
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from typing import Any, Callable
from uuid import UUID

from revenue_engine.config import get_settings
from revenue_engine.database import get_session
from revenue_engine.engine_config import EngineConfig
from revenue_engine.errors import EngineError
from revenue_engine.logging_config import configure_logging
from revenue_engine.providers import build_capture_feed, build_payout_rail
from revenue_engine.services.audit import to_json_safe
from revenue_engine.services.disbursement import PayoutDisbursementProcessor
from revenue_engine.services.notifications import LoggingNotificationSender
from revenue_engine.services.reconciliation import PaymentReconciliationDetector
from revenue_engine.services.tds_ledger import TdsLedgerService

logger = logging.getLogger(__name__)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def _close(resource: Any) -> None:
    close = getattr(resource, "close", None)
    if close is not None:
        close()


class RevenueCli:
    """Revenue engine command line interface."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m revenue_engine.cli",
            description="Revenue engine batch jobs",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        payouts = subparsers.add_parser(
            "process-payouts",
            help="Pay due installments through the payout rail",
        )
        payouts.add_argument(
            "--preview",
            action="store_true",
            help="Show per-payee totals without paying",
        )
        payouts.add_argument(
            "--batch-size",
            type=int,
            help="Maximum payees in this run (default: policy)",
        )
        payouts.add_argument(
            "--cursor",
            type=str,
            help="next_cursor from a previous run",
        )
        payouts.add_argument(
            "--run-date",
            type=parse_date,
            help="Treat this date as today (ISO format)",
        )

        reconcile = subparsers.add_parser(
            "reconcile",
            help="Detect captured payments with no internal record",
        )
        reconcile.add_argument(
            "--lookback-days",
            type=int,
            help="Days of captures to sweep (1-90, default: policy)",
        )

        tds = subparsers.add_parser(
            "tds-summary",
            help="Print the TDS summary for a financial year",
        )
        tds.add_argument(
            "--fiscal-year",
            type=str,
            help="Financial year as YYYY-YY (default: current)",
        )
        tds.add_argument(
            "--payee-id",
            type=UUID,
            help="Restrict to one payee",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging(get_settings().log_level)

        handlers: dict[str, Callable[[argparse.Namespace], dict[str, Any]]] = {
            "process-payouts": self._cmd_process_payouts,
            "reconcile": self._cmd_reconcile,
            "tds-summary": self._cmd_tds_summary,
        }
        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            result = handler(parsed)
        except EngineError as e:
            print(f"ERROR [{e.code}]: {e.message}", file=sys.stderr)
            return 1

        print(json.dumps(to_json_safe(result), indent=2))
        return 0 if result.get("status", "ok") != "failed" and not result.get("failed") else 2

    def _cmd_process_payouts(self, args: argparse.Namespace) -> dict[str, Any]:
        """Run the disbursement processor once."""
        rail = None if args.preview else build_payout_rail(get_settings())
        try:
            with get_session() as session:
                processor = PayoutDisbursementProcessor(
                    session,
                    rail,
                    self.config,
                    notifier=LoggingNotificationSender(),
                )
                summary = processor.run(
                    today=args.run_date,
                    preview=args.preview,
                    batch_size=args.batch_size,
                    cursor=args.cursor,
                )
                return summary.to_dict()
        finally:
            _close(rail)

    def _cmd_reconcile(self, args: argparse.Namespace) -> dict[str, Any]:
        """Run one reconciliation sweep."""
        feed = build_capture_feed(get_settings())
        try:
            with get_session() as session:
                detector = PaymentReconciliationDetector(session, feed, self.config.reconciliation)
                return detector.run(lookback_days=args.lookback_days, source="cli").to_dict()
        finally:
            _close(feed)

    def _cmd_tds_summary(self, args: argparse.Namespace) -> dict[str, Any]:
        """Read-only TDS aggregates."""
        with get_session() as session:
            return TdsLedgerService(session, self.config.split).summary(
                args.fiscal_year, args.payee_id
            )


def main() -> int:
    """CLI entry point."""
    cli = RevenueCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
