#!/usr/bin/env python3
"""
Study Abroad Platform maintenance tasks.

Usage:
    # Apply pending migrations
    python3 scripts/maintenance.py migrate

    # Delete closed device sessions and old admin OTPs
    python3 scripts/maintenance.py cleanup

    # Report Stripe checkout sessions with no local transaction (last 2 days)
    python3 scripts/maintenance.py reconcile-orphans --days 2

    # Recreate the missing transactions and settle paid sessions
    python3 scripts/maintenance.py reconcile-orphans --days 2 --repair
"""

import argparse
import asyncio
import sys
from datetime import UTC, datetime, timedelta

from studyabroad.config import settings
from studyabroad.db.migration_runner import check_migrations_status, run_migrations
from studyabroad.db.session import close_engines, get_write_session
from studyabroad.observability import get_logger, setup_logging
from studyabroad.services.admin_otp import cleanup_old_otps
from studyabroad.services.email import SMTPEmailSender
from studyabroad.services.notifications import NotificationDispatcher
from studyabroad.services.orphan_sweep import OrphanSweeper
from studyabroad.services.session_manager import SessionManager
from studyabroad.services.stripe_provider import StripeProvider
from studyabroad.services.tokens import TokenService
from studyabroad.services.webhook_reconciler import WebhookReconciler

logger = get_logger(__name__)


async def cleanup(session_days: int, otp_days: int) -> None:
    async with get_write_session() as session:
        sessions = SessionManager(session, TokenService(settings), settings)
        deleted_sessions = await sessions.cleanup_inactive_sessions(session_days)
    async with get_write_session() as session:
        deleted_otps = await cleanup_old_otps(session, otp_days)

    print(f"Deleted {deleted_sessions} closed device session(s) and {deleted_otps} admin OTP(s)")


async def reconcile_orphans(days: int, repair: bool, limit: int) -> int:
    """Returns the number of orphans left unrepaired."""
    provider = StripeProvider(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
        timeout_seconds=settings.stripe_timeout_seconds,
    )
    notifier = NotificationDispatcher(SMTPEmailSender(settings), settings)
    since = datetime.now(UTC) - timedelta(days=days)

    async with get_write_session() as session:
        sweeper = OrphanSweeper(session, provider, WebhookReconciler(session, provider, notifier))
        report = await sweeper.sweep(since, repair=repair, limit=limit)

    await notifier.drain()

    print(f"Scanned {report.scanned} checkout session(s) since {since.isoformat()}")
    print(f"Orphaned: {len(report.orphaned)}")
    for session_id in report.orphaned:
        print(f"  {session_id}")
    if repair:
        print(f"Repaired: {len(report.repaired)}  Settled: {len(report.settled)}")
        print(f"Skipped (unusable metadata): {len(report.skipped)}  Failed: {len(report.failed)}")
        return len(report.skipped) + len(report.failed)
    return len(report.orphaned)


async def _run(args: argparse.Namespace) -> int:
    try:
        if args.command == "cleanup":
            await cleanup(args.session_days, args.otp_days)
            return 0
        if args.command == "reconcile-orphans":
            unresolved = await reconcile_orphans(args.days, args.repair, args.limit)
            return 0 if unresolved == 0 else 2
    finally:
        await close_engines()
    return 1


def main():
    parser = argparse.ArgumentParser(
        description="Study Abroad Platform maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("migrate", help="Apply pending Alembic migrations")
    subparsers.add_parser("migration-status", help="Show current and head revisions")

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete expired auth records")
    cleanup_parser.add_argument(
        "--session-days",
        type=int,
        default=settings.session_retention_days,
        help="Keep closed device sessions this many days",
    )
    cleanup_parser.add_argument(
        "--otp-days",
        type=int,
        default=settings.otp_retention_days,
        help="Keep admin OTP rows this many days",
    )

    orphan_parser = subparsers.add_parser(
        "reconcile-orphans", help="Find Stripe checkout sessions with no local transaction"
    )
    orphan_parser.add_argument("--days", type=int, default=2, help="Look back this many days")
    orphan_parser.add_argument("--limit", type=int, default=500, help="Maximum sessions to scan")
    orphan_parser.add_argument(
        "--repair", action="store_true", help="Recreate missing transactions and settle them"
    )

    args = parser.parse_args()
    setup_logging()

    if args.command == "migrate":
        run_migrations()
        sys.exit(0)
    if args.command == "migration-status":
        for key, value in check_migrations_status().items():
            print(f"{key}: {value}")
        sys.exit(0)

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
