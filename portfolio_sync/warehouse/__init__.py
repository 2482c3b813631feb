"""
PostgreSQL backends for the audit trail and quarantine stores.
"""

from .audit_store import PostgresAuditStore
from .connection import DatabaseConnectionPool
from .quarantine_store import PostgresQuarantineStore
from .schema import ensure_schema

__all__ = [
    "DatabaseConnectionPool",
    "PostgresAuditStore",
    "PostgresQuarantineStore",
    "ensure_schema",
]
