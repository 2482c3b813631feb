"""
Audit trail storage.

The audit trail is append-only: entries are inserted and, after the
retention horizon, deleted in bulk. Nothing updates an entry in place.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, Field

from portfolio_sync.core.models import AuditEntry, AuditType

DEFAULT_QUERY_LIMIT = 100


class AuditFilters(BaseModel):
    """Audit trail query filters; results are ordered newest first."""

    investment_type: str | None = None
    investment_id: str | None = None
    audit_type: AuditType | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = Field(default=DEFAULT_QUERY_LIMIT, gt=0)
    offset: int = Field(default=0, ge=0)

    def matches(self, entry: AuditEntry, user_id: str | None = None) -> bool:
        if user_id is not None and entry.user_id != user_id:
            return False
        if self.investment_type is not None and entry.investment_type != self.investment_type:
            return False
        if self.investment_id is not None and entry.investment_id != self.investment_id:
            return False
        if self.audit_type is not None and entry.audit_type != self.audit_type:
            return False
        if self.start_date is not None and entry.timestamp < self.start_date:
            return False
        if self.end_date is not None and entry.timestamp > self.end_date:
            return False
        return True


class AuditStore(ABC):
    """Persistence for audit entries."""

    @abstractmethod
    async def append(self, entry: AuditEntry) -> AuditEntry:
        """Insert one entry atomically and return it with its entry_id."""

    @abstractmethod
    async def query(self, user_id: str | None, filters: AuditFilters) -> list[AuditEntry]:
        """Entries matching the filters, newest first; all users when user_id is None."""

    @abstractmethod
    async def delete_before(self, cutoff: datetime) -> int:
        """Delete entries older than ``cutoff`` and return how many were removed."""


class InMemoryAuditStore(AuditStore):
    """Process-local audit store, used by default and in tests."""

    def __init__(self):
        self._entries: list[AuditEntry] = []
        self._next_id = 1
        self._lock = threading.Lock()

    async def append(self, entry: AuditEntry) -> AuditEntry:
        with self._lock:
            stored = entry.model_copy(update={"entry_id": self._next_id})
            self._next_id += 1
            self._entries.append(stored)
        return stored

    async def query(self, user_id: str | None, filters: AuditFilters) -> list[AuditEntry]:
        with self._lock:
            entries = list(self._entries)

        matching = [e for e in entries if filters.matches(e, user_id)]
        # Equal timestamps fall back to insertion order
        matching.sort(key=lambda e: (e.timestamp, e.entry_id or 0), reverse=True)
        return matching[filters.offset:filters.offset + filters.limit]

    async def delete_before(self, cutoff: datetime) -> int:
        with self._lock:
            kept = [e for e in self._entries if e.timestamp >= cutoff]
            removed = len(self._entries) - len(kept)
            self._entries = kept
        return removed

    def __len__(self) -> int:
        return len(self._entries)
