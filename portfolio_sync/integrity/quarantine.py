"""
Quarantine storage.

Quarantine records are immutable. Releasing a record stores a separate
QuarantineRelease; the original record is never modified.
"""

import threading
from abc import ABC, abstractmethod

from portfolio_sync.audit import AuditTrailRecorder
from portfolio_sync.core.exceptions import DataNotFoundError
from portfolio_sync.core.models import QuarantineRecord, QuarantineRelease
from portfolio_sync.observability.logger import get_logger
from portfolio_sync.observability.metrics import quarantine_size, set_gauge
from portfolio_sync.utils.clock import utc_now
from portfolio_sync.utils.validation import validate_quarantine_id

logger = get_logger(__name__)


class QuarantineStore(ABC):
    """Persistence for quarantined records and their releases."""

    @abstractmethod
    async def add(self, record: QuarantineRecord) -> QuarantineRecord:
        """Store a new quarantine record."""

    @abstractmethod
    async def get(self, quarantine_id: str) -> QuarantineRecord | None:
        """Fetch a record by id, None if unknown."""

    @abstractmethod
    async def list_records(self, user_id: str | None = None, investment_type: str | None = None,
                           include_released: bool = False, limit: int = 100) -> list[QuarantineRecord]:
        """Records newest first; released ones only when asked for."""

    @abstractmethod
    async def release(self, release: QuarantineRelease) -> QuarantineRelease:
        """
        Mark a record as released.

        Raises:
            DataNotFoundError: If the record does not exist
            ValueError: If the record was already released
        """

    @abstractmethod
    async def get_release(self, quarantine_id: str) -> QuarantineRelease | None:
        """Release information for a record, None while it is still held."""

    @abstractmethod
    async def count_active(self, investment_type: str | None = None) -> int:
        """Number of records still held."""


class InMemoryQuarantineStore(QuarantineStore):
    """Process-local quarantine store, used by default and in tests."""

    def __init__(self):
        self._records: dict[str, QuarantineRecord] = {}
        self._releases: dict[str, QuarantineRelease] = {}
        self._lock = threading.Lock()

    async def add(self, record: QuarantineRecord) -> QuarantineRecord:
        with self._lock:
            if record.id in self._records:
                raise ValueError(f"Quarantine record {record.id} already exists")
            self._records[record.id] = record
        return record

    async def get(self, quarantine_id: str) -> QuarantineRecord | None:
        return self._records.get(quarantine_id)

    async def list_records(self, user_id: str | None = None, investment_type: str | None = None,
                           include_released: bool = False, limit: int = 100) -> list[QuarantineRecord]:
        with self._lock:
            records = [
                r for r in self._records.values()
                if (user_id is None or r.user_id == user_id)
                and (investment_type is None or r.investment_type == investment_type)
                and (include_released or r.id not in self._releases)
            ]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:limit]

    async def release(self, release: QuarantineRelease) -> QuarantineRelease:
        with self._lock:
            if release.quarantine_id not in self._records:
                raise DataNotFoundError(f"Quarantine record not found: {release.quarantine_id}")
            if release.quarantine_id in self._releases:
                raise ValueError(f"Quarantine record {release.quarantine_id} was already released")
            self._releases[release.quarantine_id] = release
        return release

    async def get_release(self, quarantine_id: str) -> QuarantineRelease | None:
        return self._releases.get(quarantine_id)

    async def count_active(self, investment_type: str | None = None) -> int:
        with self._lock:
            return sum(
                1 for r in self._records.values()
                if r.id not in self._releases and (investment_type is None or r.investment_type == investment_type)
            )


async def release_quarantined(
    store: QuarantineStore,
    audit: AuditTrailRecorder,
    quarantine_id: str,
    operator: str,
    reason: str,
    apply_update: bool = False,
    ip_address: str | None = None,
    user_agent: str | None = None,
    clock=utc_now,
) -> tuple[QuarantineRecord, QuarantineRelease]:
    """
    Release a held record and write the manual_override audit entry.

    Raises:
        InputValidationError: If the id is malformed
        DataNotFoundError: If the record does not exist
        ValueError: If it was already released
    """
    quarantine_id = validate_quarantine_id(quarantine_id)
    record = await store.get(quarantine_id)
    if record is None:
        raise DataNotFoundError(f"Quarantine record not found: {quarantine_id}")

    release = await store.release(
        QuarantineRelease(quarantine_id=quarantine_id, released_by=operator, reason=reason, released_at=clock())
    )
    await audit.log_manual_override(
        operator,
        record.investment_type,
        record.investment_id,
        {
            "action": "quarantine_released",
            "quarantineId": quarantine_id,
            "ownerId": record.user_id,
            "reason": reason,
            "applyUpdate": apply_update,
        },
        ip_address=ip_address,
        user_agent=user_agent,
    )
    set_gauge(quarantine_size, await store.count_active(record.investment_type),
              investment_type=record.investment_type)
    logger.warning(f"Quarantine {quarantine_id} released by {operator}: {reason}")
    return record, release
