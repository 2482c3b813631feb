"""
Unit tests for the audit trail recorder (in-memory store).
"""

import asyncio
import csv
import io
import json

import pytest

from portfolio_sync.audit import EXPORT_HEADERS, AuditFilters, calculate_changes, calculate_data_hash
from portfolio_sync.core.models import AuditType, SyncError, SyncErrorKind, SyncResult
from portfolio_sync.utils.validation import InputValidationError


def record_sync(audit, user_id="user-1", investment_type="mutual_funds", source="amfi",
                processed=2, updated=1, duration=1500, failed=False):
    async def go():
        session_id = await audit.log_sync_start(user_id, investment_type, source, {"force": False})
        if failed:
            error = SyncError(kind=SyncErrorKind.NETWORK_ERROR, message="connection reset", source=source)
            await audit.log_sync_failure(user_id, investment_type, session_id, error)
            return session_id
        result = SyncResult(source=source, records_processed=processed, records_updated=updated,
                            duration_ms=duration)
        await audit.log_sync_completion(user_id, investment_type, session_id, result)
        return session_id
    return asyncio.run(go())


@pytest.mark.unit
class TestChangeHelpers:
    """Tests for calculate_changes and calculate_data_hash"""

    def test_changes(self):
        """Modified, added and removed fields are reported"""
        changes = calculate_changes(
            {"nav": 10.0, "units": 100, "note": "x"},
            {"nav": 10.2, "units": 100, "date": "2024-06-11"},
        )

        assert changes == {
            "nav": {"from": 10.0, "to": 10.2, "type": "modified"},
            "date": {"from": None, "to": "2024-06-11", "type": "added"},
            "note": {"from": "x", "to": None, "type": "removed"},
        }

    def test_no_changes(self):
        """Identical snapshots have an empty diff"""
        assert calculate_changes({"nav": 1}, {"nav": 1}) == {}
        assert calculate_changes(None, None) == {}

    def test_hash_ignores_key_order(self):
        """The data hash is stable across key order"""
        first = calculate_data_hash({"nav": 10.2, "isin": "INF109K01VQ1"})
        second = calculate_data_hash({"isin": "INF109K01VQ1", "nav": 10.2})

        assert first == second
        assert len(first) == 64
        assert first != calculate_data_hash({"isin": "INF109K01VQ1", "nav": 10.3})


@pytest.mark.unit
class TestAuditTrail:
    """Tests for appending and querying"""

    def test_session_ids_link_entries(self, audit):
        """Start and completion share the session id"""
        session_id = record_sync(audit)

        entries = asyncio.run(audit.get_audit_trail("user-1"))

        assert session_id.startswith("SYNC_")
        assert [e.audit_type for e in entries] == [AuditType.SYNC_COMPLETED, AuditType.SYNC_STARTED]
        assert {e.details["sessionId"] for e in entries} == {session_id}

    def test_filters(self, audit, clock):
        """Type, investment and date filters narrow the trail"""
        record_sync(audit)
        clock.advance(hours=1)
        asyncio.run(audit.log_data_updates("user-1", "mutual_funds", "mf-1", {"nav": 10.0}, {"nav": 10.2}))
        record_sync(audit, user_id="user-2")

        updates = asyncio.run(audit.get_audit_trail("user-1", AuditFilters(audit_type=AuditType.DATA_UPDATED)))
        assert [e.investment_id for e in updates] == ["mf-1"]
        assert updates[0].details["changes"]["nav"]["type"] == "modified"

        recent = asyncio.run(audit.get_audit_trail(None, AuditFilters(start_date=clock.now())))
        assert {e.user_id for e in recent} == {"user-1", "user-2"}
        assert len(recent) == 3

        paged = asyncio.run(audit.get_audit_trail("user-1", AuditFilters(limit=1, offset=1)))
        assert [e.audit_type for e in paged] == [AuditType.SYNC_COMPLETED]

    def test_change_history(self, audit):
        """Change history only returns data updates for the investment"""
        record_sync(audit)
        asyncio.run(audit.log_data_updates("user-1", "mutual_funds", "mf-1", {"nav": 10.0}, {"nav": 10.2}))
        asyncio.run(audit.log_data_updates("user-1", "mutual_funds", "mf-2", {"nav": 5.0}, {"nav": 5.1}))

        history = asyncio.run(audit.get_data_change_history("user-1", "mf-1"))

        assert len(history) == 1
        assert history[0].details["newValues"] == {"nav": 10.2}

    def test_credential_update_never_logs_secret(self, audit):
        """Only the action is stored for credential changes"""
        entry = asyncio.run(audit.log_credential_update("user-1", "epfo", "rotated", ip_address="10.0.0.5"))

        assert entry.details == {"action": "rotated"}
        assert entry.ip_address == "10.0.0.5"

    def test_configuration_change_diff(self, audit):
        """Configuration changes keep both snapshots and the diff"""
        entry = asyncio.run(audit.log_configuration_change(
            "admin", "sync_settings", {"batch_size": 50}, {"batch_size": 25, "no_fallback": True}
        ))

        assert entry.audit_type == AuditType.CONFIGURATION_CHANGED
        assert entry.details["configType"] == "sync_settings"
        assert entry.details["changes"] == {
            "batch_size": {"from": 50, "to": 25, "type": "modified"},
            "no_fallback": {"from": None, "to": True, "type": "added"},
        }

    @pytest.mark.parametrize("user_id", ["", "user 1", "../etc"])
    def test_bad_user_id(self, audit, user_id):
        """Malformed user ids are rejected"""
        with pytest.raises(InputValidationError):
            asyncio.run(audit.get_audit_trail(user_id))


@pytest.mark.unit
class TestSyncStatistics:
    """Tests for get_sync_statistics"""

    def test_aggregates(self, audit):
        """Completed and failed sessions are aggregated"""
        record_sync(audit, processed=2, updated=2, duration=1000)
        record_sync(audit, investment_type="stocks", source="yahoo_finance", processed=5, updated=3, duration=3000)
        record_sync(audit, failed=True)

        stats = asyncio.run(audit.get_sync_statistics("user-1"))

        assert stats["totalSyncs"] == 3
        assert stats["successfulSyncs"] == 2
        assert stats["failedSyncs"] == 1
        assert stats["totalRecordsProcessed"] == 7
        assert stats["totalRecordsUpdated"] == 5
        assert stats["averageDuration"] == 2000
        assert stats["syncsByType"] == {"mutual_funds": 2, "stocks": 1}
        assert stats["syncsBySource"] == {"amfi": 2, "yahoo_finance": 1}
        assert stats["successRate"] == pytest.approx(66.67)
        assert len(stats["recentSyncs"]) == 3

    def test_window(self, audit, clock):
        """Sessions older than the window are ignored"""
        record_sync(audit)
        clock.advance(days=31)

        stats = asyncio.run(audit.get_sync_statistics("user-1", days=30))

        assert stats["totalSyncs"] == 0
        assert stats["successRate"] == 0


@pytest.mark.unit
class TestExportAndCleanup:
    """Tests for export_audit_trail and cleanup_old_entries"""

    def test_csv_export(self, audit):
        """CSV export has the fixed header row and flattened details"""
        asyncio.run(audit.log_data_updates("user-1", "mutual_funds", "mf-1", {"nav": 10.0}, {"nav": 10.2},
                                           source="amfi"))

        rows = list(csv.reader(io.StringIO(asyncio.run(audit.export_audit_trail("user-1", "CSV")))))

        assert rows[0] == EXPORT_HEADERS
        assert rows[1][1:5] == ["data_updated", "mutual_funds", "mf-1", "amfi"]
        assert json.loads(rows[1][5])["newValues"] == {"nav": 10.2}

    def test_json_export(self, audit):
        """JSON export uses the persisted record shape"""
        record_sync(audit)

        exported = json.loads(asyncio.run(audit.export_audit_trail("user-1")))

        assert [r["auditType"] for r in exported] == ["sync_completed", "sync_started"]
        assert "ipAddress" not in exported[0]

    def test_unknown_export_format(self, audit):
        """Only json and csv are supported"""
        with pytest.raises(InputValidationError):
            asyncio.run(audit.export_audit_trail("user-1", "xml"))

    def test_cleanup(self, audit, clock):
        """Entries older than the retention horizon are removed"""
        record_sync(audit)
        clock.advance(days=400)
        record_sync(audit)

        removed = asyncio.run(audit.cleanup_old_entries(365))

        assert removed == 2
        assert len(audit.store) == 2

    @pytest.mark.parametrize("days", [0, 3651])
    def test_cleanup_bounds(self, audit, days):
        """Retention must be between one day and ten years"""
        with pytest.raises(InputValidationError):
            asyncio.run(audit.cleanup_old_entries(days))
