"""
Data integrity orchestrator.

The only path from a fetched value to a persisted value:
validation -> anomaly detection -> quarantine or commit -> audit, strictly
in that order for each record.
"""

from datetime import timedelta
from typing import Any

from portfolio_sync.audit import AuditFilters, AuditTrailRecorder
from portfolio_sync.core.anomaly import AnomalyDetector, build_admin_notification
from portfolio_sync.core.exceptions import InvestmentNotFoundError
from portfolio_sync.core.investments import get_investment_spec
from portfolio_sync.core.models import (
    AuditType,
    IntegrityResult,
    QuarantineRecord,
    QuarantineRelease,
    Severity,
    SyncError,
    SyncErrorKind,
    SyncWarning,
    ValidationResult,
)
from portfolio_sync.core.rules import ValidationEngine
from portfolio_sync.notifications import LoggingNotifier, Notifier
from portfolio_sync.observability.logger import get_logger
from portfolio_sync.observability.metrics import quarantine_size, set_gauge
from portfolio_sync.recovery.classifier import classify_error
from portfolio_sync.sync.repository import InvestmentRepository
from portfolio_sync.utils.clock import utc_now

from .quarantine import InMemoryQuarantineStore, QuarantineStore, release_quarantined

logger = get_logger(__name__)

HISTORY_LIMIT = 20
FIX_VALIDATION_RECOMMENDATION = "Fix validation errors before proceeding"
QUARANTINE_RECOMMENDATION = "Data has been quarantined for manual review"


def _validation_errors(validation: ValidationResult, investment_id: str | None,
                       source: str | None) -> list[SyncError]:
    return [
        SyncError(
            kind=SyncErrorKind.DATA_VALIDATION_FAILED,
            message=issue.message,
            code=issue.rule_name,
            details={"field": issue.field_name, **issue.details},
            investment_id=investment_id,
            source=source,
        )
        for issue in validation.errors
    ]


def _validation_warnings(validation: ValidationResult, investment_id: str | None,
                         source: str | None) -> list[SyncWarning]:
    return [
        SyncWarning(
            type=issue.flag or issue.rule_name,
            message=issue.message,
            investment_id=investment_id,
            source=source,
            details=issue.details,
        )
        for issue in validation.warnings
    ]


class DataIntegrityOrchestrator:
    """
    Gatekeeper between fetched data and the investment repository.

    ``can_proceed`` is true iff the record is valid and was not
    quarantined, and the repository is written at most once per record.
    """

    def __init__(
        self,
        repository: InvestmentRepository,
        validation_engine: ValidationEngine | None = None,
        anomaly_detector: AnomalyDetector | None = None,
        audit: AuditTrailRecorder | None = None,
        quarantine_store: QuarantineStore | None = None,
        notifier: Notifier | None = None,
        clock=utc_now,
    ):
        self.repository = repository
        self.validation_engine = validation_engine or ValidationEngine(clock=clock)
        self.anomaly_detector = anomaly_detector or AnomalyDetector()
        self.audit = audit or AuditTrailRecorder(clock=clock)
        self.quarantine_store = quarantine_store or InMemoryQuarantineStore()
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock

    async def get_value_history(self, user_id: str, investment_id: str,
                                limit: int = HISTORY_LIMIT) -> list[dict[str, Any]]:
        """
        Stored snapshots from earlier data updates, oldest first.

        Reads the store directly; repository ids skip the operator input guards.
        """
        entries = await self.audit.store.query(
            user_id, AuditFilters(investment_id=investment_id, audit_type=AuditType.DATA_UPDATED, limit=limit)
        )
        return [entry.details.get("newValues") or {} for entry in reversed(entries)]

    async def perform_integrity_check(
        self,
        user_id: str,
        investment_type: str,
        investment_id: str | None,
        new_data: dict[str, Any],
        current_data: dict[str, Any] | None = None,
        source: str | None = None,
        history: list[Any] | None = None,
    ) -> IntegrityResult:
        """
        Validate, detect anomalies and quarantine if required.

        Never writes to the repository.

        Args:
            user_id: Owner of the investment
            investment_type: Investment category
            investment_id: Investment the data is for
            new_data: Fetched record
            current_data: Stored holding
            source: Source the data came from
            history: Value history; fetched from the audit trail when None

        Returns:
            IntegrityResult with the gate decision
        """
        now = self.clock()

        validation = self.validation_engine.validate(investment_type, new_data, current_data, now=now)
        await self.audit.log_data_validation(user_id, investment_type, investment_id, new_data, validation, source)

        errors = _validation_errors(validation, investment_id, source)
        warnings = _validation_warnings(validation, investment_id, source)

        if not validation.is_valid:
            return IntegrityResult(
                is_valid=False,
                can_proceed=False,
                validation=validation,
                recommendations=[FIX_VALIDATION_RECOMMENDATION],
                errors=errors,
                warnings=warnings,
            )

        if history is None:
            history = await self.get_value_history(user_id, investment_id) if investment_id else []

        anomalies = self.anomaly_detector.detect(investment_type, new_data, current_data, history, now=now)
        if anomalies.has_anomalies:
            await self.audit.log_anomaly_detection(user_id, investment_type, investment_id, new_data, anomalies, source)

        recommendations = list(anomalies.recommendations)
        record = None

        if anomalies.quarantine:
            record = QuarantineRecord(
                user_id=user_id,
                investment_type=investment_type,
                investment_id=investment_id,
                data=new_data,
                reason=anomalies.quarantine_reason,
                severity=anomalies.severity,
                anomalies=anomalies.anomalies,
                timestamp=now,
                metadata={"source": source, "validationFlags": list(validation.flags)},
            )
            await self.quarantine_store.add(record)
            await self.audit.log_data_quarantine(record, source)
            set_gauge(quarantine_size, await self.quarantine_store.count_active(investment_type),
                      investment_type=investment_type)

            logger.warning(
                f"Quarantined {investment_type} data for {investment_id} "
                f"(reason={record.reason.value}, severity={record.severity.value}, id={record.id})"
            )
            warnings.append(SyncWarning(
                type="data_quarantined",
                message=f"Data quarantined: {record.reason.value}",
                investment_id=investment_id,
                source=source,
                details={"quarantineId": record.id, "severity": record.severity.value},
            ))
            recommendations.append(QUARANTINE_RECOMMENDATION)

            if anomalies.severity == Severity.HIGH:
                await self._notify(
                    "anomaly_detected", user_id,
                    build_admin_notification(user_id, investment_type, investment_id, anomalies, record),
                )

        return IntegrityResult(
            is_valid=True,
            can_proceed=not anomalies.quarantine,
            quarantine=anomalies.quarantine,
            validation=validation,
            anomalies=anomalies,
            quarantine_record=record,
            recommendations=recommendations,
            errors=errors,
            warnings=warnings,
        )

    async def validate_and_process_update(
        self,
        user_id: str,
        investment_type: str,
        investment_id: str,
        new_data: dict[str, Any],
        source: str | None = None,
        session_id: str | None = None,
        dry_run: bool = False,
        current_data: dict[str, Any] | None = None,
    ) -> IntegrityResult:
        """
        Run the integrity check and, when it passes, persist the update.

        The repository is written exactly once for a record that passes and
        never otherwise (nor in a dry run). A persisted update is followed by
        a data_updated audit entry carrying the field-level diff.

        Raises:
            InvestmentNotFoundError: If the investment does not exist
        """
        if current_data is None:
            current_data = await self.repository.find(user_id, investment_id)
        if current_data is None:
            raise InvestmentNotFoundError(investment_id, investment_type)

        result = await self.perform_integrity_check(
            user_id, investment_type, investment_id, new_data, current_data, source
        )
        if not result.can_proceed or dry_run:
            return result

        return await self._persist(result, user_id, investment_type, investment_id,
                                   current_data, new_data, source, session_id)

    async def _persist(self, result: IntegrityResult, user_id: str, investment_type: str, investment_id: str,
                       current_data: dict[str, Any], new_data: dict[str, Any], source: str | None,
                       session_id: str | None) -> IntegrityResult:
        spec = get_investment_spec(investment_type)
        updates = spec.update_payload(current_data, new_data, self.clock())
        old_values = {key: current_data.get(key) for key in updates}

        try:
            await self.repository.update(investment_id, updates)
        except Exception as e:
            error = classify_error(e, source=source, investment_id=investment_id)
            if error.kind != SyncErrorKind.DATABASE_ERROR:
                error = error.model_copy(update={"kind": SyncErrorKind.DATABASE_ERROR})
            logger.error(f"Failed to persist {investment_type} update for {investment_id}: {e}")
            return result.model_copy(update={"errors": [*result.errors, error]})

        entry = await self.audit.log_data_updates(
            user_id, investment_type, investment_id, old_values, updates, source=source, session_id=session_id
        )
        logger.debug(f"Persisted {investment_type} update for {investment_id}")
        return result.model_copy(update={"persisted": True, "changes": entry.details["changes"]})

    async def get_integrity_statistics(self, user_id: str | None, days: int = 30) -> dict[str, Any]:
        """Validation, anomaly and quarantine counts and rates over ``days`` days."""
        start = self.clock() - timedelta(days=days)

        async def entries(audit_type: AuditType):
            return await self.audit.get_audit_trail(
                user_id, AuditFilters(audit_type=audit_type, start_date=start, limit=10000)
            )

        validations = await entries(AuditType.DATA_VALIDATED)
        anomalies = await entries(AuditType.ANOMALY_DETECTED)
        quarantines = await entries(AuditType.DATA_QUARANTINED)

        failed = sum(1 for e in validations if not e.details.get("isValid"))
        high = sum(1 for e in anomalies if e.details.get("severity") == Severity.HIGH.value)
        total = len(validations)

        return {
            "periodDays": days,
            "totalValidations": total,
            "failedValidations": failed,
            "validationFailureRate": round(failed / total * 100, 2) if total else 0,
            "anomaliesDetected": len(anomalies),
            "highSeverityAnomalies": high,
            "quarantinedRecords": len(quarantines),
            "quarantineRate": round(len(quarantines) / total * 100, 2) if total else 0,
        }

    async def release_quarantine(self, quarantine_id: str, operator: str, reason: str,
                                 apply_update: bool = False, ip_address: str | None = None,
                                 user_agent: str | None = None) -> QuarantineRelease:
        """
        Release a quarantined record after manual review.

        With ``apply_update`` the held data is persisted, skipping anomaly
        detection but still writing the data_updated audit entry.

        Raises:
            DataNotFoundError: If the quarantine record does not exist
            ValueError: If it was already released
        """
        record, release = await release_quarantined(
            self.quarantine_store, self.audit, quarantine_id, operator, reason,
            apply_update=apply_update, ip_address=ip_address, user_agent=user_agent, clock=self.clock,
        )

        if apply_update and record.investment_id:
            current = await self.repository.find(record.user_id, record.investment_id)
            if current is None:
                raise InvestmentNotFoundError(record.investment_id, record.investment_type)
            validation = self.validation_engine.validate(record.investment_type, record.data, current)
            gate = IntegrityResult(is_valid=validation.is_valid, can_proceed=validation.is_valid,
                                   validation=validation)
            if gate.can_proceed:
                await self._persist(gate, record.user_id, record.investment_type, record.investment_id,
                                    current, record.data, record.metadata.get("source"), None)

        await self._notify("manual_override", record.user_id, {
            "quarantineId": quarantine_id,
            "investmentType": record.investment_type,
            "investmentId": record.investment_id,
            "releasedBy": operator,
            "reason": reason,
        })
        return release

    async def _notify(self, kind: str, user_id: str, data: dict[str, Any]) -> None:
        try:
            await self.notifier.notify(kind, user_id, data)
        except Exception as e:
            logger.warning(f"Failed to send {kind} notification for {user_id}: {e}")
