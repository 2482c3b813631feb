"""
DDL for the audit trail and quarantine tables.
"""

from portfolio_sync.observability.logger import get_logger

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS sync_audit_log (
        entry_id BIGSERIAL PRIMARY KEY,
        user_id TEXT NOT NULL,
        audit_type TEXT NOT NULL,
        investment_type TEXT,
        investment_id TEXT,
        source TEXT,
        timestamp TIMESTAMPTZ NOT NULL,
        details JSONB NOT NULL DEFAULT '{}'::jsonb,
        ip_address TEXT,
        user_agent TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sync_audit_log_user_time ON sync_audit_log (user_id, timestamp DESC)",
    "CREATE INDEX IF NOT EXISTS idx_sync_audit_log_investment ON sync_audit_log (investment_id, audit_type)",
    """
    CREATE TABLE IF NOT EXISTS sync_quarantine (
        quarantine_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        investment_type TEXT NOT NULL,
        investment_id TEXT,
        data JSONB NOT NULL,
        reason TEXT NOT NULL,
        severity TEXT NOT NULL,
        anomalies JSONB NOT NULL DEFAULT '[]'::jsonb,
        review_required BOOLEAN NOT NULL DEFAULT TRUE,
        auto_release BOOLEAN NOT NULL DEFAULT FALSE,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL,
        released_by TEXT,
        release_reason TEXT,
        released_at TIMESTAMPTZ
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sync_quarantine_active ON sync_quarantine (investment_type) WHERE released_at IS NULL",
)


async def ensure_schema(pool: DatabaseConnectionPool) -> None:
    """Create the audit and quarantine tables if they do not exist."""
    async with pool.get_connection() as conn:
        async with conn.cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                await cur.execute(statement)
        await conn.commit()
    logger.info("Ensured sync_audit_log and sync_quarantine tables")
