"""
Command-line entry point for running a sync outside the web app.

This is what a cron job or a queue worker calls.

Examples:
    ledgersync sync --user <uuid> --account <uuid> --token $TOKEN --months 6
    ledgersync sync --user <uuid> --account <uuid> --token $TOKEN --consent --last-sync 2024-01-10
    ledgersync connect --user <uuid> --token $TOKEN --credentials cred-123
    ledgersync status --user <uuid> --account <uuid>
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from typing import Optional, Sequence
from uuid import UUID

from ledgersync.aggregator import AggregatorClient
from ledgersync.config import settings
from ledgersync.core.errors import get_suggestion, get_user_message
from ledgersync.core.exceptions import IngestionError
from ledgersync.core.logging import setup_logging
from ledgersync.db.session import AsyncSessionLocal
from ledgersync.schemas.internal import SyncOptions
from ledgersync.services import SyncOrchestrator

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ledgersync", description="Bank transaction ingestion")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Sync one account")
    sync.add_argument("--user", required=True, type=UUID)
    sync.add_argument("--account", required=True, type=UUID)
    sync.add_argument("--token", required=True, help="User access token for the aggregator")
    sync.add_argument("--months", type=int, default=settings.default_date_range_months)
    sync.add_argument("--booked-only", action="store_true", help="Skip PENDING and UNDEFINED transactions")
    sync.add_argument("--skip-credentials-refresh", action="store_true")
    sync.add_argument("--consent", action="store_true", help="Run as a consent refresh")
    sync.add_argument("--last-sync", type=date.fromisoformat, help="Previous sync date (YYYY-MM-DD)")
    sync.add_argument("--force-full", action="store_true")

    connect = commands.add_parser("connect", help="Sync the account list, then every account")
    connect.add_argument("--user", required=True, type=UUID)
    connect.add_argument("--token", required=True)
    connect.add_argument("--credentials", help="Aggregator credentials id")
    connect.add_argument("--consent", action="store_true")
    connect.add_argument("--expires-in", type=int)
    connect.add_argument("--scope")

    status = commands.add_parser("status", help="Show sync status for an account")
    status.add_argument("--user", required=True, type=UUID)
    status.add_argument("--account", required=True, type=UUID)
    return parser


def options_from_args(args: argparse.Namespace) -> SyncOptions:
    return SyncOptions(
        months=getattr(args, "months", settings.default_date_range_months),
        include_all_statuses=not getattr(args, "booked_only", False),
        skip_credentials_refresh=getattr(args, "skip_credentials_refresh", False),
        force_full=getattr(args, "force_full", False),
    )


async def run(args: argparse.Namespace) -> bool:
    """
    Execute one command.

    Returns:
        True if every sync succeeded (or the status was found)
    """
    async with AsyncSessionLocal() as db, AggregatorClient() as client:
        orchestrator = SyncOrchestrator(db, client)

        if args.command == "status":
            try:
                status = await orchestrator.get_sync_status(args.user, args.account)
            except IngestionError as exc:
                logger.error("Status lookup failed: %s %s", exc, get_suggestion(exc.error_code))
                return False
            print(json.dumps(status.model_dump(mode="json"), indent=2))
            return True

        if args.command == "connect":
            results = await orchestrator.sync_new_connection(
                args.user,
                args.token,
                credentials_id=args.credentials,
                is_consent_refresh=args.consent,
                scope=args.scope,
                expires_in=args.expires_in,
            )
        elif args.consent:
            results = [
                await orchestrator.sync_consent_refresh(
                    args.user, args.account, args.token, args.last_sync, options_from_args(args)
                )
            ]
        else:
            results = [
                await orchestrator.sync_initial(args.user, args.account, args.token, options_from_args(args))
            ]

    for result in results:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
        if not result.success and result.error_code:
            logger.error(
                "%s %s",
                get_user_message(result.error_code),
                get_suggestion(result.error_code),
                extra={"account_id": str(result.account_id), "error_code": result.error_code},
            )
    return all(result.success for result in results)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or settings.log_level, settings.log_file)

    success = asyncio.run(run(args))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
