"""
PostgreSQL quarantine store.

Record columns are written once; a release only fills the release columns.
"""

from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from portfolio_sync.core.exceptions import DataNotFoundError
from portfolio_sync.core.models import QuarantineRecord, QuarantineRelease
from portfolio_sync.integrity.quarantine import QuarantineStore
from portfolio_sync.observability.logger import get_logger

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

QUARANTINE_COLUMNS = (
    "quarantine_id, user_id, investment_type, investment_id, data, reason, severity, "
    "anomalies, review_required, auto_release, metadata, created_at, "
    "released_by, release_reason, released_at"
)


def _row_to_record(row: dict[str, Any]) -> QuarantineRecord:
    return QuarantineRecord(
        id=row["quarantine_id"],
        user_id=row["user_id"],
        investment_type=row["investment_type"],
        investment_id=row["investment_id"],
        data=row["data"],
        reason=row["reason"],
        severity=row["severity"],
        anomalies=row["anomalies"],
        review_required=row["review_required"],
        auto_release=row["auto_release"],
        timestamp=row["created_at"],
        metadata=row["metadata"],
    )


class PostgresQuarantineStore(QuarantineStore):
    """Quarantined records in the ``sync_quarantine`` table."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    async def add(self, record: QuarantineRecord) -> QuarantineRecord:
        """
        Insert a quarantine record.

        Raises:
            psycopg.DatabaseError: If insert fails
        """
        payload = record.model_dump(mode="json")
        insert_sql = """
            INSERT INTO sync_quarantine (
                quarantine_id, user_id, investment_type, investment_id, data, reason, severity,
                anomalies, review_required, auto_release, metadata, created_at
            ) VALUES (
                %(id)s, %(user_id)s, %(investment_type)s, %(investment_id)s, %(data)s, %(reason)s,
                %(severity)s, %(anomalies)s, %(review_required)s, %(auto_release)s, %(metadata)s,
                %(timestamp)s
            );
        """
        try:
            await self.pool.execute_command(
                insert_sql,
                {
                    **payload,
                    "timestamp": record.timestamp,
                    "data": Jsonb(payload["data"]),
                    "anomalies": Jsonb(payload["anomalies"]),
                    "metadata": Jsonb(payload["metadata"]),
                },
            )
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to insert quarantine record {record.id}: {e}")
            raise

        logger.debug(f"Inserted quarantine record {record.id}")
        return record

    async def _fetch(self, quarantine_id: str) -> dict[str, Any] | None:
        rows = await self.pool.execute_query(
            f"SELECT {QUARANTINE_COLUMNS} FROM sync_quarantine WHERE quarantine_id = %(id)s;",
            {"id": quarantine_id},
        )
        return rows[0] if rows else None

    async def get(self, quarantine_id: str) -> QuarantineRecord | None:
        row = await self._fetch(quarantine_id)
        return _row_to_record(row) if row else None

    async def list_records(self, user_id: str | None = None, investment_type: str | None = None,
                           include_released: bool = False, limit: int = 100) -> list[QuarantineRecord]:
        clauses = []
        params: dict[str, Any] = {"limit": limit}
        if user_id is not None:
            clauses.append("user_id = %(user_id)s")
            params["user_id"] = user_id
        if investment_type is not None:
            clauses.append("investment_type = %(investment_type)s")
            params["investment_type"] = investment_type
        if not include_released:
            clauses.append("released_at IS NULL")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        try:
            rows = await self.pool.execute_query(
                f"SELECT {QUARANTINE_COLUMNS} FROM sync_quarantine {where} "
                f"ORDER BY created_at DESC LIMIT %(limit)s;",
                params,
            )
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to list quarantine records: {e}")
            raise
        return [_row_to_record(row) for row in rows]

    async def release(self, release: QuarantineRelease) -> QuarantineRelease:
        update_sql = """
            UPDATE sync_quarantine
            SET released_by = %(released_by)s,
                release_reason = %(reason)s,
                released_at = %(released_at)s
            WHERE quarantine_id = %(quarantine_id)s AND released_at IS NULL;
        """
        try:
            updated = await self.pool.execute_command(update_sql, release.model_dump())
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to release quarantine record {release.quarantine_id}: {e}")
            raise

        if updated == 0:
            if await self._fetch(release.quarantine_id) is None:
                raise DataNotFoundError(f"Quarantine record not found: {release.quarantine_id}")
            raise ValueError(f"Quarantine record {release.quarantine_id} was already released")
        return release

    async def get_release(self, quarantine_id: str) -> QuarantineRelease | None:
        row = await self._fetch(quarantine_id)
        if row is None or row["released_at"] is None:
            return None
        return QuarantineRelease(
            quarantine_id=quarantine_id,
            released_by=row["released_by"],
            reason=row["release_reason"],
            released_at=row["released_at"],
        )

    async def count_active(self, investment_type: str | None = None) -> int:
        params: dict[str, Any] = {}
        where = "WHERE released_at IS NULL"
        if investment_type is not None:
            where += " AND investment_type = %(investment_type)s"
            params["investment_type"] = investment_type
        rows = await self.pool.execute_query(f"SELECT COUNT(*) AS active FROM sync_quarantine {where};", params)
        return rows[0]["active"] if rows else 0
