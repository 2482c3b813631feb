"""
PostgreSQL audit store.

Each append is a single INSERT; the table is never updated in place.
"""

from datetime import datetime
from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from portfolio_sync.audit.store import AuditFilters, AuditStore
from portfolio_sync.core.models import AuditEntry
from portfolio_sync.observability.logger import get_logger

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

AUDIT_COLUMNS = (
    "entry_id, user_id, audit_type, investment_type, investment_id, "
    "source, timestamp, details, ip_address, user_agent"
)


def _row_to_entry(row: dict[str, Any]) -> AuditEntry:
    return AuditEntry(**row)


class PostgresAuditStore(AuditStore):
    """Audit entries in the ``sync_audit_log`` table."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    async def append(self, entry: AuditEntry) -> AuditEntry:
        """
        Insert one audit entry.

        Raises:
            psycopg.DatabaseError: If insert fails
        """
        insert_sql = """
            INSERT INTO sync_audit_log (
                user_id, audit_type, investment_type, investment_id, source,
                timestamp, details, ip_address, user_agent
            ) VALUES (
                %(user_id)s, %(audit_type)s, %(investment_type)s, %(investment_id)s, %(source)s,
                %(timestamp)s, %(details)s, %(ip_address)s, %(user_agent)s
            ) RETURNING entry_id;
        """

        try:
            rows = await self.pool.execute_query(
                insert_sql,
                {
                    "user_id": entry.user_id,
                    "audit_type": entry.audit_type.value,
                    "investment_type": entry.investment_type,
                    "investment_id": entry.investment_id,
                    "source": entry.source,
                    "timestamp": entry.timestamp,
                    "details": Jsonb(entry.model_dump(mode="json")["details"]),
                    "ip_address": entry.ip_address,
                    "user_agent": entry.user_agent,
                },
            )
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to insert audit entry: {e}")
            raise

        entry_id = rows[0]["entry_id"] if rows else None
        logger.debug(f"Inserted audit entry: entry_id={entry_id}, type={entry.audit_type.value}")
        return entry.model_copy(update={"entry_id": entry_id})

    async def query(self, user_id: str | None, filters: AuditFilters) -> list[AuditEntry]:
        """
        Query entries matching the filters, newest first.

        Raises:
            psycopg.DatabaseError: If query fails
        """
        clauses = []
        params: dict[str, Any] = {"limit": filters.limit, "offset": filters.offset}

        conditions = {
            "user_id": user_id,
            "investment_type": filters.investment_type,
            "investment_id": filters.investment_id,
            "audit_type": filters.audit_type.value if filters.audit_type else None,
        }
        for column, value in conditions.items():
            if value is not None:
                clauses.append(f"{column} = %({column})s")
                params[column] = value
        if filters.start_date is not None:
            clauses.append("timestamp >= %(start_date)s")
            params["start_date"] = filters.start_date
        if filters.end_date is not None:
            clauses.append("timestamp <= %(end_date)s")
            params["end_date"] = filters.end_date

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query_sql = f"""
            SELECT {AUDIT_COLUMNS}
            FROM sync_audit_log
            {where}
            ORDER BY timestamp DESC, entry_id DESC
            LIMIT %(limit)s OFFSET %(offset)s;
        """

        try:
            rows = await self.pool.execute_query(query_sql, params)
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to query audit entries: {e}")
            raise

        logger.debug(f"Found {len(rows)} audit entries for user_id={user_id}")
        return [_row_to_entry(row) for row in rows]

    async def delete_before(self, cutoff: datetime) -> int:
        try:
            return await self.pool.execute_command(
                "DELETE FROM sync_audit_log WHERE timestamp < %(cutoff)s;", {"cutoff": cutoff}
            )
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to delete old audit entries: {e}")
            raise
