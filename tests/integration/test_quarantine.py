"""
Integration tests for the PostgreSQL quarantine store.

Tests quarantine through the integrity orchestrator, listing, counting
and the one-time release.
"""

import asyncio

import pytest

from portfolio_sync.audit import AuditFilters, AuditTrailRecorder
from portfolio_sync.core.exceptions import DataNotFoundError
from portfolio_sync.core.models import AuditType
from portfolio_sync.integrity import DataIntegrityOrchestrator
from portfolio_sync.warehouse import (
    DatabaseConnectionPool,
    PostgresAuditStore,
    PostgresQuarantineStore,
    ensure_schema,
)


def run_with_orchestrator(db_settings, repository, clock, scenario):
    """Wire the orchestrator to Postgres stores and run ``scenario(orchestrator)``"""
    async def go():
        async with DatabaseConnectionPool(**db_settings) as pool:
            await ensure_schema(pool)
            await pool.execute_command("TRUNCATE sync_audit_log, sync_quarantine")
            orchestrator = DataIntegrityOrchestrator(
                repository,
                audit=AuditTrailRecorder(PostgresAuditStore(pool), clock=clock.now),
                quarantine_store=PostgresQuarantineStore(pool),
                clock=clock.now,
            )
            return await scenario(orchestrator)
    return asyncio.run(go())


@pytest.mark.integration
def test_quarantine_round_trip(db_settings, repository, clock, nav_record):
    """A quarantined record is stored intact and listed as active"""
    async def scenario(orchestrator):
        result = await orchestrator.validate_and_process_update(
            "user-1", "mutual_funds", "mf-1", nav_record(nav=20.0), source="amfi"
        )
        store = orchestrator.quarantine_store
        return (
            result.quarantine_record,
            await store.get(result.quarantine_record.id),
            await store.list_records(user_id="user-1"),
            await store.count_active("mutual_funds"),
        )

    original, stored, listed, active = run_with_orchestrator(db_settings, repository, clock, scenario)

    assert stored.id == original.id
    assert stored.reason == original.reason
    assert stored.timestamp == original.timestamp
    assert stored.data["nav"] == 20.0
    assert stored.anomalies[0].type == "extreme_nav_change"
    assert [r.id for r in listed] == [original.id]
    assert active == 1
    assert repository.update_calls == []


@pytest.mark.integration
def test_release_once(db_settings, repository, clock, nav_record):
    """Release applies the held update, is audited and cannot be repeated"""
    async def scenario(orchestrator):
        result = await orchestrator.validate_and_process_update(
            "user-1", "mutual_funds", "mf-1", nav_record(nav=20.0), source="amfi"
        )
        record_id = result.quarantine_record.id
        release = await orchestrator.release_quarantine(record_id, "ops@example.com", "Verified", apply_update=True)

        with pytest.raises(ValueError, match="already released"):
            await orchestrator.release_quarantine(record_id, "ops@example.com", "Again")

        store = orchestrator.quarantine_store
        overrides = await orchestrator.audit.get_audit_trail(
            "ops@example.com", AuditFilters(audit_type=AuditType.MANUAL_OVERRIDE)
        )
        return (
            release,
            await store.get_release(record_id),
            await store.count_active(),
            await store.list_records(user_id="user-1", include_released=True),
            overrides,
        )

    release, stored_release, active, everything, overrides = run_with_orchestrator(
        db_settings, repository, clock, scenario
    )

    assert stored_release.released_by == "ops@example.com"
    assert stored_release.reason == "Verified"
    assert stored_release.released_at == release.released_at
    assert active == 0
    assert len(everything) == 1
    assert repository.update_calls[0][1]["nav"] == 20.0
    assert len(overrides) == 1


@pytest.mark.integration
def test_release_unknown(db_settings, repository, clock):
    """Releasing an id that was never stored is not found"""
    async def scenario(orchestrator):
        with pytest.raises(DataNotFoundError):
            await orchestrator.release_quarantine("QTN_1700000000000_abc123", "ops", "ok")

    run_with_orchestrator(db_settings, repository, clock, scenario)
