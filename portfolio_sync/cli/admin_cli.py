"""
Admin CLI for the sync audit trail and quarantine.

Usage:
    python -m portfolio_sync.cli.admin_cli audit-trail [--user-id <id>] [options]
    python -m portfolio_sync.cli.admin_cli audit-stats [--user-id <id>] [--days N]
    python -m portfolio_sync.cli.admin_cli audit-export --format json|csv [--output <path>]
    python -m portfolio_sync.cli.admin_cli audit-cleanup [--retention-days N]
    python -m portfolio_sync.cli.admin_cli quarantine-list [--user-id <id>] [--include-released]
    python -m portfolio_sync.cli.admin_cli quarantine-release --quarantine-id <id> --operator <name> --reason <text>
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from typing import Any

from portfolio_sync.audit import AuditFilters, AuditTrailRecorder
from portfolio_sync.config.settings import SyncSettings
from portfolio_sync.core.models import AuditType
from portfolio_sync.integrity import release_quarantined
from portfolio_sync.observability.logger import get_logger
from portfolio_sync.utils.validation import validate_file_path
from portfolio_sync.warehouse import (
    DatabaseConnectionPool,
    PostgresAuditStore,
    PostgresQuarantineStore,
    ensure_schema,
)

logger = get_logger(__name__)


def format_timestamp(ts: datetime | str | None) -> str:
    """Format timestamp for display."""
    if isinstance(ts, str):
        return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"


def create_pool(args) -> DatabaseConnectionPool:
    return DatabaseConnectionPool(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
    )


async def _with_stores(args, action):
    """Open the pool, make sure the tables exist and run ``action(audit, quarantine)``."""
    async with create_pool(args) as pool:
        await ensure_schema(pool)
        audit = AuditTrailRecorder(PostgresAuditStore(pool))
        return await action(audit, PostgresQuarantineStore(pool))


def _filters(args) -> AuditFilters:
    return AuditFilters(
        investment_type=getattr(args, "investment_type", None),
        investment_id=getattr(args, "investment_id", None),
        audit_type=AuditType(args.audit_type) if getattr(args, "audit_type", None) else None,
        limit=getattr(args, "limit", 100),
        offset=getattr(args, "offset", 0),
    )


def _summarize_details(details: dict[str, Any], width: int = 60) -> str:
    text = json.dumps(details, sort_keys=True, default=str)
    return text if len(text) <= width else text[:width - 3] + "..."


def audit_trail_command(args):
    """Print the filtered audit trail, newest first."""
    logger.info(f"Querying audit trail for user: {args.user_id or 'all'}")

    try:
        entries = asyncio.run(_with_stores(
            args, lambda audit, _: audit.get_audit_trail(args.user_id, _filters(args))
        ))

        if not entries:
            print("\nNo audit entries found matching the criteria.")
            return

        print(f"\n{'=' * 120}")
        print(f"AUDIT TRAIL{f' - User: {args.user_id}' if args.user_id else ''}")
        print(f"{'=' * 120}\n")
        print(f"Total entries: {len(entries)}\n")

        print(f"{'Timestamp':<20} {'Type':<22} {'Investment':<16} {'Source':<14} {'Details'}")
        print(f"{'-' * 120}")
        for entry in entries:
            investment = entry.investment_id or entry.investment_type or "-"
            print(
                f"{format_timestamp(entry.timestamp):<20} {entry.audit_type.value:<22} "
                f"{investment[:15]:<16} {(entry.source or '-')[:13]:<14} {_summarize_details(entry.details)}"
            )
        print(f"\n{'=' * 120}\n")

    except Exception as e:
        logger.error(f"Failed to query audit trail: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)


def audit_stats_command(args):
    """Print sync statistics over the last N days."""
    try:
        stats = asyncio.run(_with_stores(
            args, lambda audit, _: audit.get_sync_statistics(args.user_id, days=args.days)
        ))

        print(f"\n{'=' * 60}")
        print(f"SYNC STATISTICS (last {args.days} days)")
        if args.user_id:
            print(f"User: {args.user_id}")
        print(f"{'=' * 60}\n")

        print("Overall:")
        print(f"  Total syncs: {stats['totalSyncs']}")
        print(f"  Successful: {stats['successfulSyncs']}")
        print(f"  Failed: {stats['failedSyncs']}")
        print(f"  Success rate: {stats['successRate']}%")
        print(f"  Records processed: {stats['totalRecordsProcessed']}")
        print(f"  Records updated: {stats['totalRecordsUpdated']}")
        print(f"  Average duration: {stats['averageDuration']:.0f}ms\n")

        print("By Investment Type:")
        for investment_type, count in sorted(stats["syncsByType"].items(), key=lambda x: x[1], reverse=True):
            print(f"  {investment_type:<30} {count:>8}")

        print("\nBy Source:")
        for source, count in sorted(stats["syncsBySource"].items(), key=lambda x: x[1], reverse=True):
            print(f"  {source:<30} {count:>8}")

        print(f"\n{'=' * 60}\n")

    except Exception as e:
        logger.error(f"Failed to compute audit statistics: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)


def audit_export_command(args):
    """Export the audit trail as JSON or CSV to stdout or a file."""
    try:
        output = asyncio.run(_with_stores(
            args, lambda audit, _: audit.export_audit_trail(args.user_id, args.format, _filters(args))
        ))

        if args.output:
            path = validate_file_path(args.output, "output")
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(output)
            print(f"\nAudit trail exported to {path}")
        else:
            sys.stdout.write(output)

    except Exception as e:
        logger.error(f"Failed to export audit trail: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)


def audit_cleanup_command(args):
    """Delete audit entries older than the retention period."""
    retention_days = args.retention_days or SyncSettings.from_env().audit_retention_days

    try:
        removed = asyncio.run(_with_stores(
            args, lambda audit, _: audit.cleanup_old_entries(retention_days)
        ))
        print(f"\nRemoved {removed} audit entr{'y' if removed == 1 else 'ies'} older than {retention_days} days.")

    except Exception as e:
        logger.error(f"Failed to clean up audit entries: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)


def quarantine_list_command(args):
    """List quarantined records awaiting review."""
    try:
        records = asyncio.run(_with_stores(
            args,
            lambda _, quarantine: quarantine.list_records(
                user_id=args.user_id,
                investment_type=args.investment_type,
                include_released=args.include_released,
                limit=args.limit,
            ),
        ))

        if not records:
            print("\nNo quarantine records found matching the criteria.")
            return

        print(f"\n{'=' * 110}")
        print("QUARANTINE REVIEW")
        print(f"{'=' * 110}\n")
        print(f"Total records: {len(records)}\n")

        print(f"{'Quarantine ID':<28} {'User':<14} {'Type':<14} {'Investment':<16} "
              f"{'Reason':<24} {'Severity':<9} {'Created'}")
        print(f"{'-' * 110}")
        for record in records:
            print(
                f"{record.id:<28} {record.user_id[:13]:<14} {record.investment_type:<14} "
                f"{(record.investment_id or '-')[:15]:<16} {record.reason.value:<24} "
                f"{record.severity.value:<9} {format_timestamp(record.timestamp)}"
            )

        print(f"\n{'=' * 110}\n")

        if args.show_anomalies:
            print("Anomalies:")
            print(f"{'-' * 110}\n")
            for record in records:
                print(f"Record: {record.id}")
                for anomaly in record.anomalies:
                    print(f"  [{anomaly.severity.value}] {anomaly.type}: {anomaly.message}")
                print()

    except Exception as e:
        logger.error(f"Failed to list quarantine records: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)


def quarantine_release_command(args):
    """Release a quarantined record after review."""
    try:
        _, release = asyncio.run(_with_stores(
            args,
            lambda audit, quarantine: release_quarantined(
                quarantine, audit, args.quarantine_id, args.operator, args.reason
            ),
        ))
        print(f"\nReleased {release.quarantine_id} by {release.released_by} at "
              f"{format_timestamp(release.released_at)}.")

    except Exception as e:
        logger.error(f"Failed to release quarantine record: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)


COMMANDS = {
    "audit-trail": audit_trail_command,
    "audit-stats": audit_stats_command,
    "audit-export": audit_export_command,
    "audit-cleanup": audit_cleanup_command,
    "quarantine-list": quarantine_list_command,
    "quarantine-release": quarantine_release_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Admin CLI for the portfolio sync audit trail and quarantine",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Global database connection options; unset values fall back to DB_* env vars
    parser.add_argument("--db-host", help="Database host (default: $DB_HOST or localhost)")
    parser.add_argument("--db-port", type=int, help="Database port (default: $DB_PORT or 5432)")
    parser.add_argument("--db-name", help="Database name (default: $DB_NAME or portfolio)")
    parser.add_argument("--db-user", help="Database user (default: $DB_USER or portfolio_sync)")
    parser.add_argument("--db-password", help="Database password (default: $DB_PASSWORD)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    trail_parser = subparsers.add_parser("audit-trail", help="Show the audit trail")
    trail_parser.add_argument("--user-id", help="Restrict to one user")
    trail_parser.add_argument("--investment-type", help="Filter by investment type")
    trail_parser.add_argument("--investment-id", help="Filter by investment")
    trail_parser.add_argument(
        "--audit-type",
        choices=[t.value for t in AuditType],
        help="Filter by audit entry type"
    )
    trail_parser.add_argument("--limit", type=int, default=100, help="Maximum entries (default: 100)")
    trail_parser.add_argument("--offset", type=int, default=0, help="Entries to skip (default: 0)")

    stats_parser = subparsers.add_parser("audit-stats", help="Show sync statistics")
    stats_parser.add_argument("--user-id", help="Restrict to one user")
    stats_parser.add_argument("--days", type=int, default=30, help="Period in days (default: 30)")

    export_parser = subparsers.add_parser("audit-export", help="Export the audit trail")
    export_parser.add_argument("--user-id", help="Restrict to one user")
    export_parser.add_argument("--format", choices=["json", "csv"], default="json", help="Export format")
    export_parser.add_argument("--investment-type", help="Filter by investment type")
    export_parser.add_argument("--output", help="Write to this file instead of stdout")

    cleanup_parser = subparsers.add_parser("audit-cleanup", help="Delete old audit entries")
    cleanup_parser.add_argument(
        "--retention-days",
        type=int,
        help="Keep entries newer than this (default: $AUDIT_RETENTION_DAYS or 365)"
    )

    list_parser = subparsers.add_parser("quarantine-list", help="List quarantined records")
    list_parser.add_argument("--user-id", help="Restrict to one user")
    list_parser.add_argument("--investment-type", help="Filter by investment type")
    list_parser.add_argument("--include-released", action="store_true", help="Include released records")
    list_parser.add_argument("--show-anomalies", action="store_true", help="Print the anomalies per record")
    list_parser.add_argument("--limit", type=int, default=100, help="Maximum records (default: 100)")

    release_parser = subparsers.add_parser("quarantine-release", help="Release a quarantined record")
    release_parser.add_argument("--quarantine-id", required=True, help="Quarantine record id (QTN_...)")
    release_parser.add_argument("--operator", required=True, help="Who is releasing the record")
    release_parser.add_argument("--reason", required=True, help="Why the record is released")

    return parser


def main(argv: list[str] | None = None):
    """Main entry point for admin CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        COMMANDS[args.command](args)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
