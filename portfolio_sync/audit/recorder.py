"""
Audit trail recorder for sync operations and data changes.

Every sync session, data update, validation, anomaly finding, quarantine
and operator action is appended to the audit store. Read paths serve
trail queries, per-investment change history, statistics and exports.
"""

import csv
import hashlib
import io
import json
from datetime import datetime, timedelta
from typing import Any

from portfolio_sync.core.models import (
    AnomalyResult,
    AuditEntry,
    AuditType,
    QuarantineRecord,
    SyncError,
    SyncResult,
    ValidationResult,
)
from portfolio_sync.observability.logger import get_logger
from portfolio_sync.utils.clock import make_id, utc_now
from portfolio_sync.utils.validation import (
    validate_export_format,
    validate_identifier,
    validate_limit,
    validate_offset,
    validate_retention_days,
)

from .store import AuditFilters, AuditStore, InMemoryAuditStore

logger = get_logger(__name__)

CHANGE_HISTORY_LIMIT = 50
EXPORT_LIMIT = 10000
STATISTICS_LIMIT = 10000
RECENT_SYNCS = 10
DEFAULT_RETENTION_DAYS = 365

EXPORT_HEADERS = [
    "Timestamp",
    "Audit Type",
    "Investment Type",
    "Investment ID",
    "Source",
    "Details",
    "IP Address",
    "User Agent",
]


def calculate_data_hash(data: Any) -> str:
    """SHA-256 over the JSON serialization with sorted keys."""
    payload = json.dumps(data, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def calculate_changes(old_values: dict[str, Any] | None, new_values: dict[str, Any] | None) -> dict[str, Any]:
    """
    Field-level diff between two snapshots.

    Returns:
        ``{field: {"from", "to", "type"}}`` with type one of
        modified, added or removed
    """
    old_values = old_values or {}
    new_values = new_values or {}
    changes: dict[str, Any] = {}

    for key, new in new_values.items():
        if key not in old_values:
            changes[key] = {"from": None, "to": new, "type": "added"}
        elif old_values[key] != new:
            changes[key] = {"from": old_values[key], "to": new, "type": "modified"}

    for key, old in old_values.items():
        if key not in new_values:
            changes[key] = {"from": old, "to": None, "type": "removed"}

    return changes


class AuditTrailRecorder:
    """
    Append-only audit trail over an AuditStore.

    Entries of one sync invocation are appended in the order the events
    happen; appends from concurrent invocations are independent.
    """

    def __init__(self, store: AuditStore | None = None, clock=utc_now):
        self.store = store or InMemoryAuditStore()
        self.clock = clock

    async def _append(self, user_id: str, audit_type: AuditType, details: dict[str, Any],
                      investment_type: str | None = None, investment_id: str | None = None,
                      source: str | None = None, ip_address: str | None = None,
                      user_agent: str | None = None) -> AuditEntry:
        entry = AuditEntry(
            user_id=user_id,
            audit_type=audit_type,
            investment_type=investment_type,
            investment_id=investment_id,
            source=source,
            timestamp=self.clock(),
            details=details,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        stored = await self.store.append(entry)
        logger.debug(f"Audit {audit_type.value} for user={user_id} investment={investment_id}")
        return stored

    async def log_sync_start(self, user_id: str, investment_type: str, source: str | None = None,
                             options: dict[str, Any] | None = None) -> str:
        """
        Record the start of a sync session.

        Returns:
            Session id ``SYNC_<ts>_<rand>`` to pass to the later log calls
        """
        session_id = make_id("SYNC")
        await self._append(
            user_id,
            AuditType.SYNC_STARTED,
            {"sessionId": session_id, "options": options or {}, "startTime": self.clock().isoformat()},
            investment_type=investment_type,
            source=source,
        )
        return session_id

    async def log_sync_completion(self, user_id: str, investment_type: str, session_id: str,
                                  result: SyncResult) -> AuditEntry:
        return await self._append(
            user_id,
            AuditType.SYNC_COMPLETED,
            {
                "sessionId": session_id,
                "success": result.success,
                "summary": result.summary(),
                "errors": [{"kind": e.kind.value, "message": e.message} for e in result.errors],
                "warnings": [{"type": w.type, "message": w.message} for w in result.warnings],
            },
            investment_type=investment_type,
            source=result.source,
        )

    async def log_sync_failure(self, user_id: str, investment_type: str, session_id: str | None,
                               error: SyncError) -> AuditEntry:
        return await self._append(
            user_id,
            AuditType.SYNC_FAILED,
            {
                "sessionId": session_id,
                "error": {
                    "kind": error.kind.value,
                    "message": error.message,
                    "code": error.code,
                    "details": error.details,
                    "recoverable": error.recoverable,
                },
            },
            investment_type=investment_type,
            investment_id=error.investment_id,
            source=error.source,
        )

    async def log_data_updates(self, user_id: str, investment_type: str, investment_id: str,
                               old_values: dict[str, Any], new_values: dict[str, Any],
                               source: str | None = None, session_id: str | None = None) -> AuditEntry:
        """Record a persisted update with before/after values and their diff."""
        return await self._append(
            user_id,
            AuditType.DATA_UPDATED,
            {
                "sessionId": session_id,
                "oldValues": old_values,
                "newValues": new_values,
                "changes": calculate_changes(old_values, new_values),
            },
            investment_type=investment_type,
            investment_id=investment_id,
            source=source,
        )

    async def log_data_validation(self, user_id: str, investment_type: str, investment_id: str | None,
                                  data: dict[str, Any], validation: ValidationResult,
                                  source: str | None = None) -> AuditEntry:
        return await self._append(
            user_id,
            AuditType.DATA_VALIDATED,
            {
                "isValid": validation.is_valid,
                "errors": [issue.model_dump() for issue in validation.errors],
                "warnings": [issue.model_dump() for issue in validation.warnings],
                "flags": list(validation.flags),
                "dataHash": calculate_data_hash(data),
            },
            investment_type=investment_type,
            investment_id=investment_id,
            source=source,
        )

    async def log_anomaly_detection(self, user_id: str, investment_type: str, investment_id: str | None,
                                    data: dict[str, Any], anomalies: AnomalyResult,
                                    source: str | None = None) -> AuditEntry:
        return await self._append(
            user_id,
            AuditType.ANOMALY_DETECTED,
            {
                "severity": anomalies.severity.value,
                "quarantine": anomalies.quarantine,
                "quarantineReason": anomalies.quarantine_reason.value if anomalies.quarantine_reason else None,
                "anomalies": [a.model_dump(mode="json") for a in anomalies.anomalies],
                "recommendations": list(anomalies.recommendations),
                "dataHash": calculate_data_hash(data),
            },
            investment_type=investment_type,
            investment_id=investment_id,
            source=source,
        )

    async def log_data_quarantine(self, record: QuarantineRecord, source: str | None = None) -> AuditEntry:
        return await self._append(
            record.user_id,
            AuditType.DATA_QUARANTINED,
            {
                "quarantineId": record.id,
                "reason": record.reason.value,
                "severity": record.severity.value,
                "anomalyCount": len(record.anomalies),
                "dataHash": calculate_data_hash(record.data),
            },
            investment_type=record.investment_type,
            investment_id=record.investment_id,
            source=source,
        )

    async def log_manual_override(self, user_id: str, investment_type: str | None, investment_id: str | None,
                                  override: dict[str, Any], ip_address: str | None = None,
                                  user_agent: str | None = None) -> AuditEntry:
        return await self._append(
            user_id,
            AuditType.MANUAL_OVERRIDE,
            override,
            investment_type=investment_type,
            investment_id=investment_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def log_configuration_change(self, user_id: str, config_type: str, old_config: dict[str, Any],
                                       new_config: dict[str, Any], ip_address: str | None = None,
                                       user_agent: str | None = None) -> AuditEntry:
        return await self._append(
            user_id,
            AuditType.CONFIGURATION_CHANGED,
            {
                "configType": config_type,
                "oldConfig": old_config,
                "newConfig": new_config,
                "changes": calculate_changes(old_config, new_config),
            },
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def log_credential_update(self, user_id: str, source: str, action: str,
                                    ip_address: str | None = None, user_agent: str | None = None) -> AuditEntry:
        """Record a credential change; the credential itself is never logged."""
        return await self._append(
            user_id,
            AuditType.CREDENTIAL_UPDATED,
            {"action": action},
            source=source,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def get_audit_trail(self, user_id: str | None, filters: AuditFilters | None = None) -> list[AuditEntry]:
        """
        Filtered audit trail, newest first.

        Args:
            user_id: Owner to restrict to, None for every user
            filters: Type, investment, date range and paging filters

        Raises:
            InputValidationError: On a malformed user id or paging values
        """
        filters = filters or AuditFilters()
        if user_id is not None:
            user_id = validate_identifier(user_id, "user_id")
        validate_limit(filters.limit, max_limit=EXPORT_LIMIT)
        validate_offset(filters.offset)
        return await self.store.query(user_id, filters)

    async def get_data_change_history(self, user_id: str, investment_id: str,
                                      limit: int = CHANGE_HISTORY_LIMIT) -> list[AuditEntry]:
        """Data-update entries for one investment, newest first."""
        return await self.get_audit_trail(
            user_id,
            AuditFilters(
                investment_id=validate_identifier(investment_id, "investment_id"),
                audit_type=AuditType.DATA_UPDATED,
                limit=limit,
            ),
        )

    async def get_sync_statistics(self, user_id: str | None, days: int = 30) -> dict[str, Any]:
        """
        Aggregate sync outcomes over the last ``days`` days.

        Returns:
            totalSyncs, successfulSyncs, failedSyncs, totalRecordsProcessed,
            totalRecordsUpdated, averageDuration (ms), syncsByType,
            syncsBySource, recentSyncs and successRate (percent)
        """
        start = self.clock() - timedelta(days=days)
        entries: list[AuditEntry] = []
        for audit_type in (AuditType.SYNC_COMPLETED, AuditType.SYNC_FAILED):
            entries += await self.get_audit_trail(
                user_id, AuditFilters(audit_type=audit_type, start_date=start, limit=STATISTICS_LIMIT)
            )
        entries.sort(key=lambda e: e.timestamp, reverse=True)

        successful = 0
        processed = 0
        updated = 0
        durations: list[float] = []
        by_type: dict[str, int] = {}
        by_source: dict[str, int] = {}

        for entry in entries:
            summary = entry.details.get("summary") or {}
            if entry.audit_type == AuditType.SYNC_COMPLETED and entry.details.get("success"):
                successful += 1
            processed += summary.get("recordsProcessed", 0)
            updated += summary.get("recordsUpdated", 0)
            if summary.get("duration") is not None:
                durations.append(summary["duration"])

            type_key = entry.investment_type or "unknown"
            by_type[type_key] = by_type.get(type_key, 0) + 1
            source_key = entry.source or "unknown"
            by_source[source_key] = by_source.get(source_key, 0) + 1

        total = len(entries)
        return {
            "totalSyncs": total,
            "successfulSyncs": successful,
            "failedSyncs": total - successful,
            "totalRecordsProcessed": processed,
            "totalRecordsUpdated": updated,
            "averageDuration": sum(durations) / len(durations) if durations else 0,
            "syncsByType": by_type,
            "syncsBySource": by_source,
            "recentSyncs": [e.to_record() for e in entries[:RECENT_SYNCS]],
            "successRate": round(successful / total * 100, 2) if total else 0,
        }

    async def export_audit_trail(self, user_id: str | None, export_format: str = "json",
                                 filters: AuditFilters | None = None) -> str:
        """
        Export the trail as JSON (persisted record shape) or flattened CSV.

        At most 10000 entries are exported.
        """
        export_format = validate_export_format(export_format)
        filters = (filters or AuditFilters()).model_copy(update={"limit": EXPORT_LIMIT, "offset": 0})
        entries = await self.get_audit_trail(user_id, filters)

        if export_format == "json":
            return json.dumps([e.to_record() for e in entries], indent=2, default=str)

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(EXPORT_HEADERS)
        for entry in entries:
            writer.writerow([
                entry.timestamp.isoformat(),
                entry.audit_type.value,
                entry.investment_type or "",
                entry.investment_id or "",
                entry.source or "",
                json.dumps(entry.details, sort_keys=True, default=str),
                entry.ip_address or "",
                entry.user_agent or "",
            ])
        return buffer.getvalue()

    async def cleanup_old_entries(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Delete entries older than the retention horizon; returns the count."""
        retention_days = validate_retention_days(retention_days)
        cutoff: datetime = self.clock() - timedelta(days=retention_days)
        removed = await self.store.delete_before(cutoff)
        logger.info(f"Removed {removed} audit entries older than {retention_days} days")
        return removed
