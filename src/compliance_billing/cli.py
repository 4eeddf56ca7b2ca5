"""Compliance billing command line interface.

The scheduler has no timer of its own. Cron (or any other trigger) runs:

Usage:
    compliance-billing generate-recurring --firm-id X --actor-id Y [--as-of 2026-10-01]
    compliance-billing init-db
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from typing import Callable
from uuid import UUID

from compliance_billing.database import dispose_db, get_session, init_models
from compliance_billing.events import AsyncEventEmitter
from compliance_billing.notifications import (
    DRAIN_TIMEOUT_SECONDS,
    DispatcherHandler,
    LoggingDispatcher,
)
from compliance_billing.services import GenerationResult, RecurrenceScheduler


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


class BillingCli:
    """Compliance billing command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="compliance-billing",
            description="Recurring obligation and billing workflow tools",
        )
        parser.add_argument("--verbose", "-v", action="store_true", help="Log at DEBUG level")
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        generate = subparsers.add_parser(
            "generate-recurring",
            help="Generate this period's obligations from recurring templates",
        )
        generate.add_argument(
            "--firm-id",
            type=parse_uuid,
            required=True,
            help="Firm to generate obligations for",
        )
        generate.add_argument(
            "--actor-id",
            type=parse_uuid,
            required=True,
            help="User recorded as assigner of generated obligations",
        )
        generate.add_argument(
            "--as-of",
            type=parse_date,
            default=None,
            help="Date inside the target period (ISO format, default today)",
        )
        generate.add_argument(
            "--json",
            action="store_true",
            help="Print the result as JSON",
        )

        subparsers.add_parser("init-db", help="Create missing database tables")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        logging.basicConfig(
            level=logging.DEBUG if parsed.verbose else logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "generate-recurring": self._cmd_generate_recurring,
            "init-db": self._cmd_init_db,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    def _cmd_generate_recurring(self, args: argparse.Namespace) -> int:
        result = asyncio.run(
            generate_recurring(args.firm_id, args.as_of or date.today(), args.actor_id)
        )

        if args.json:
            print(
                json.dumps(
                    {
                        "created_ids": [str(i) for i in result.created_ids],
                        "skipped": [
                            {
                                "template_id": str(s.template_id),
                                "title": s.title,
                                "reason": s.reason.value,
                            }
                            for s in result.skipped
                        ],
                        "message": result.summary,
                    },
                    indent=2,
                )
            )
        else:
            print(result.summary)
            for skipped in result.skipped:
                print(f"  - {skipped.title}: {skipped.reason.value}")
        return 0

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        async def _run() -> None:
            try:
                await init_models()
            finally:
                await dispose_db()

        asyncio.run(_run())
        print("Database tables created")
        return 0


async def generate_recurring(firm_id: UUID, as_of: date, actor_id: UUID) -> GenerationResult:
    """Run one scheduler pass in its own session."""
    emitter = AsyncEventEmitter()
    handler = DispatcherHandler(LoggingDispatcher())
    emitter.on_all(handler)
    try:
        async with get_session() as session:
            scheduler = RecurrenceScheduler(session, emitter=emitter)
            return await scheduler.generate(firm_id, as_of, actor_id)
    finally:
        await handler.drain(timeout=DRAIN_TIMEOUT_SECONDS)
        await dispose_db()


def main() -> int:
    """CLI entry point."""
    cli = BillingCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
