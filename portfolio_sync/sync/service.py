"""
Sync service: the scheduler-facing entry point for one investment type.

Flow per invocation: check that sync is enabled, select syncable holdings,
fetch through the source registry (retry, breaker and fallback), then pass
every fetched record through the integrity orchestrator independently.
Failures are classified and handed to the recovery service; the caller
always gets a SyncResult back unless setup itself fails.
"""

import asyncio
import time
from typing import Any

from portfolio_sync.audit import AuditTrailRecorder
from portfolio_sync.core.exceptions import AllSourcesFailedError, InvestmentNotFoundError, UpstreamHTTPError
from portfolio_sync.core.investments import InvestmentTypeSpec, failure_stamp, get_investment_spec
from portfolio_sync.core.models import (
    InvestmentType,
    RecoveryAction,
    RecoveryActionKind,
    SyncError,
    SyncErrorKind,
    SyncOptions,
    SyncResult,
    SyncWarning,
)
from portfolio_sync.integrity.orchestrator import DataIntegrityOrchestrator
from portfolio_sync.notifications import LoggingNotifier, Notifier
from portfolio_sync.observability.logger import get_logger, log_operation
from portfolio_sync.observability.metrics import record_sync_run
from portfolio_sync.providers import ProviderRegistry
from portfolio_sync.recovery.classifier import classify_error
from portfolio_sync.recovery.service import ErrorRecoveryService, RecoveryContext
from portfolio_sync.resilience.retry import RetryConfig
from portfolio_sync.resilience.source_health import SourceHealthRegistry

from .repository import InvestmentRepository

logger = get_logger(__name__)

RETRY_PRESETS = {
    InvestmentType.MUTUAL_FUNDS: "mutual_fund_sync",
    InvestmentType.STOCKS: "stock_sync",
    InvestmentType.EPF: "epf_sync",
}

NO_SYNCABLE_WARNINGS = {
    InvestmentType.MUTUAL_FUNDS: "no_syncable_funds",
    InvestmentType.STOCKS: "no_syncable_stocks",
    InvestmentType.EPF: "no_syncable_accounts",
}


class SyncService:
    """
    Synchronizes one investment type for a user.

    Only the integrity orchestrator writes to the repository; this service
    decides what to fetch and what to do when fetching or processing fails.
    """

    def __init__(
        self,
        investment_type: InvestmentType | str,
        providers: ProviderRegistry,
        source_registry: SourceHealthRegistry,
        integrity: DataIntegrityOrchestrator,
        recovery: ErrorRecoveryService,
        audit: AuditTrailRecorder,
        repository: InvestmentRepository,
        notifier: Notifier | None = None,
        max_fallbacks: int = 3,
        default_options: SyncOptions | None = None,
        sleep=asyncio.sleep,
    ):
        """
        Args:
            investment_type: Type this service syncs
            providers: Source id to provider mapping
            source_registry: Breakers, health and fallback graph
            integrity: Validation/anomaly/quarantine gate
            recovery: Recovery strategy selector
            audit: Audit trail recorder
            repository: Investment holdings
            notifier: Outbound notifications, logged when omitted
            max_fallbacks: Fallback sources tried after the primary
            default_options: Options used when a call passes none
            sleep: Coroutine used for retry waits (seconds)
        """
        self.spec: InvestmentTypeSpec = get_investment_spec(investment_type)
        self.investment_type = self.spec.investment_type.value
        self.providers = providers
        self.source_registry = source_registry
        self.integrity = integrity
        self.recovery = recovery
        self.audit = audit
        self.repository = repository
        self.notifier = notifier or LoggingNotifier()
        self.max_fallbacks = max_fallbacks
        self.default_options = default_options or SyncOptions()
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Scheduler contract
    # ------------------------------------------------------------------

    async def sync(self, user_id: str, options: SyncOptions | None = None) -> SyncResult:
        """
        Sync every eligible holding of this type for the user.

        Args:
            user_id: Owner of the holdings
            options: Sync options, defaults when omitted

        Returns:
            SyncResult; success is true iff no errors were recorded

        Raises:
            Exception: Repository or audit store failures during setup
        """
        options = options or self.default_options
        result = SyncResult(source=options.source or self.spec.primary_source.value)
        started = time.monotonic()

        with log_operation(f"{self.investment_type} sync", logger=logger, user_id=user_id) as op:
            session_id = await self.audit.log_sync_start(
                user_id, self.investment_type, options.source, options.model_dump(exclude={"metadata"})
            )
            op.bind(session_id=session_id)

            if not options.force and not await self.repository.is_sync_enabled(user_id, self.investment_type):
                result.add_warning(SyncWarning(
                    type="sync_disabled",
                    message=f"{self._label()} sync is disabled for this user",
                ))
                return await self._finish(user_id, session_id, result, started, status="skipped")

            try:
                holdings = await self.repository.list_for_user(user_id, self.investment_type)
            except Exception as e:
                await self.audit.log_sync_failure(user_id, self.investment_type, session_id, classify_error(e))
                raise

            syncable = [h for h in holdings if self._is_syncable(h, options)]
            if not syncable:
                result.add_warning(SyncWarning(
                    type=NO_SYNCABLE_WARNINGS.get(self.spec.investment_type, "no_syncable_investments"),
                    message=f"No {self._label().lower()} holdings with a {self.spec.identifier_field} to sync",
                ))
                return await self._finish(user_id, session_id, result, started, status="skipped")

            logger.info(f"Syncing {len(syncable)} {self.investment_type} holdings for user {user_id}")
            await self._sync_holdings(user_id, syncable, options, session_id, result)
            return await self._finish(user_id, session_id, result, started)

    async def sync_single(self, user_id: str, investment_id: str,
                          options: SyncOptions | None = None) -> SyncResult:
        """
        Sync one holding.

        An unknown investment id comes back as a failed SyncResult with a
        not_found error.
        """
        options = options or self.default_options
        result = SyncResult(source=options.source or self.spec.primary_source.value)
        started = time.monotonic()

        with log_operation(f"{self.investment_type} single sync", logger=logger,
                           user_id=user_id, investment_id=investment_id) as op:
            session_id = await self.audit.log_sync_start(
                user_id, self.investment_type, options.source,
                {**options.model_dump(exclude={"metadata"}), "investmentId": investment_id},
            )
            op.bind(session_id=session_id)

            holding = await self.repository.find(user_id, investment_id)
            if holding is None or holding.get("investmentType", self.investment_type) != self.investment_type:
                result.add_error(classify_error(
                    InvestmentNotFoundError(investment_id, self.investment_type), investment_id=investment_id
                ))
                return await self._finish(user_id, session_id, result, started)

            if holding.get("manualOverride") and not options.force:
                result.add_warning(SyncWarning(
                    type="manual_override",
                    message=f"{self._label()} holding {investment_id} has manual override enabled",
                    investment_id=investment_id,
                ))
                return await self._finish(user_id, session_id, result, started, status="skipped")

            if not holding.get(self.spec.identifier_field):
                result.add_error(SyncError(
                    kind=SyncErrorKind.CONFIGURATION_ERROR,
                    message=f"Holding {investment_id} has no {self.spec.identifier_field} for sync",
                    investment_id=investment_id,
                    recoverable=False,
                ))
                await self._mark_failed([investment_id], result.errors[-1].message, None, options)
                return await self._finish(user_id, session_id, result, started)

            await self._sync_holdings(user_id, [holding], options, session_id, result)
            return await self._finish(user_id, session_id, result, started)

    async def get_sync_status(self, user_id: str) -> dict[str, Any]:
        """Per-holding sync state for the user."""
        holdings = await self.repository.list_for_user(user_id, self.investment_type)
        return {
            "investmentType": self.investment_type,
            "syncEnabled": await self.repository.is_sync_enabled(user_id, self.investment_type),
            "totalHoldings": len(holdings),
            "syncableHoldings": sum(1 for h in holdings if self._is_syncable(h, self.default_options)),
            "holdings": [
                {
                    "id": h["id"],
                    "identifier": h.get(self.spec.identifier_field),
                    "syncStatus": h.get("syncStatus"),
                    "lastSyncAt": h.get("lastSyncAt"),
                    "syncError": h.get("syncError"),
                    "manualOverride": bool(h.get("manualOverride")),
                }
                for h in holdings
            ],
        }

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _sync_holdings(self, user_id: str, holdings: list[dict[str, Any]], options: SyncOptions,
                             session_id: str, result: SyncResult) -> None:
        identifiers = list(dict.fromkeys(h[self.spec.identifier_field] for h in holdings))

        try:
            records, source = await self._fetch(identifiers, options, result)
        except Exception as e:
            await self._handle_fetch_failure(user_id, e, [h["id"] for h in holdings], options, session_id, result)
            return

        result.source = source
        if not records:
            result.add_warning(SyncWarning(
                type="no_data",
                message=f"No {self._label().lower()} data available from any data source",
                source=source,
            ))
            return

        by_identifier = {self._record_key(r): r for r in records}

        for holding in holdings:
            investment_id = holding["id"]
            record = by_identifier.get(holding[self.spec.identifier_field])
            if record is None:
                result.records_skipped += 1
                result.add_warning(SyncWarning(
                    type="data_not_found",
                    message=f"No data returned for {self.spec.identifier_field} "
                            f"{holding[self.spec.identifier_field]}",
                    investment_id=investment_id,
                    source=source,
                ))
                continue

            result.records_processed += 1
            try:
                outcome = await self.integrity.validate_and_process_update(
                    user_id, self.investment_type, investment_id, record,
                    source=source, session_id=session_id, dry_run=options.dry_run, current_data=holding,
                )
            except Exception as e:
                logger.error(f"Failed to process {self.investment_type} holding {investment_id}: {e}")
                error = classify_error(e, source=source, investment_id=investment_id)
                result.add_error(error)
                await self._mark_failed([investment_id], error.message, source, options)
                action = await self._recover(user_id, error, source, investment_id, options, result)
                if action.action == RecoveryActionKind.DISABLE_SYNC:
                    break
                continue

            for integrity_error in outcome.errors:
                result.add_error(integrity_error)
            result.warnings.extend(outcome.warnings)
            if outcome.persisted:
                result.records_updated += 1
                continue

            result.records_skipped += 1
            if outcome.errors:
                await self._mark_failed([investment_id], outcome.errors[0].message, source, options)
            elif outcome.quarantine_record is not None:
                await self._mark_failed(
                    [investment_id], f"Quarantined for review: {outcome.quarantine_record.reason.value}", source, options
                )

    async def _fetch(self, identifiers: list[str], options: SyncOptions,
                     result: SyncResult) -> tuple[list[dict[str, Any]], str]:
        primary = options.source or self.spec.primary_source.value
        preset = RETRY_PRESETS.get(self.spec.investment_type, "api_call")
        base = RetryConfig.for_operation(preset)
        retry_config = base.with_overrides(
            max_attempts=min(base.max_attempts, options.retry_attempts),
            timeout_ms=options.timeout_ms,
            sleep=self.sleep,
        )

        async def fetch(source: str) -> list[dict[str, Any]]:
            provider = self.providers.get(source)
            if not await provider.is_available():
                raise UpstreamHTTPError(
                    503, f"Provider {source} reports itself unavailable", details={"source": source}
                )

            records: list[dict[str, Any]] = []
            for start in range(0, len(identifiers), options.batch_size):
                batch = identifiers[start:start + options.batch_size]
                raw = await provider.fetch_data(batch, options)
                if not provider.validate_data(raw):
                    raise ValueError(f"Failed to parse data received from {source}: unexpected format")
                records.extend(provider.transform_data(raw))
            return records

        async def on_fallback(failed_source: str, error: BaseException, attempt: int) -> None:
            logger.warning(f"Falling back from {failed_source} for {self.investment_type} (attempt {attempt}): {error}")

        outcome = await self.source_registry.execute_with_fallback(
            primary,
            fetch,
            max_fallbacks=0 if options.no_fallback else self.max_fallbacks,
            retry_config=retry_config,
            on_fallback=on_fallback,
        )

        if outcome.fallback_used:
            result.add_warning(SyncWarning(
                type="fallback_source_used",
                message=f"Primary source {primary} unavailable, used {outcome.source}",
                source=outcome.source,
                details={"attemptedSources": outcome.attempted_sources},
            ))
        return outcome.result or [], outcome.source

    async def _handle_fetch_failure(self, user_id: str, error: BaseException, investment_ids: list[str],
                                    options: SyncOptions, session_id: str, result: SyncResult) -> None:
        sync_error = self._classify_fetch_error(error, result.source)
        result.add_error(sync_error)
        logger.error(f"{self._label()} fetch failed for user {user_id}: {sync_error.message}")
        await self._mark_failed(investment_ids, sync_error.message, sync_error.source or result.source, options)

        await self._recover(user_id, sync_error, result.source, None, options, result)
        await self.audit.log_sync_failure(user_id, self.investment_type, session_id, sync_error)

    @staticmethod
    def _classify_fetch_error(error: BaseException, source: str | None) -> SyncError:
        """
        Classify a fetch failure.

        When every source failed, the last underlying error decides the
        kind, so a rejected credential is still seen as one.
        """
        if isinstance(error, AllSourcesFailedError) and error.last_error is not None:
            return classify_error(
                error.last_error,
                source=error.attempted_sources[-1] if error.attempted_sources else source,
                details={"attemptedSources": error.attempted_sources, "primary": error.primary},
            )
        return classify_error(error, source=source)

    async def _mark_failed(self, investment_ids: list[str], message: str, source: str | None,
                           options: SyncOptions) -> None:
        """Stamp holdings whose sync did not apply new data; never raises."""
        if options.dry_run:
            return
        updates = failure_stamp(self.integrity.clock(), message, source)
        for investment_id in investment_ids:
            try:
                await self.repository.update(investment_id, updates)
            except Exception as e:
                logger.error(f"Failed to record sync failure for {investment_id}: {e}")

    async def _recover(self, user_id: str, error: SyncError, source: str | None, investment_id: str | None,
                       options: SyncOptions, result: SyncResult) -> RecoveryAction:
        context = RecoveryContext(
            user_id=user_id,
            investment_type=self.investment_type,
            source=error.source or source,
            attempt=int(options.metadata.get("attempt", 1)),
            investment_id=investment_id,
        )
        action = await self.recovery.handle_sync_error(error, context)
        result.metadata.setdefault("recoveryActions", []).append({
            "action": action.action.value,
            "reason": action.reason,
            "investmentId": investment_id,
            "delayMs": action.delay_ms,
            "source": action.source,
        })

        if action.action == RecoveryActionKind.DISABLE_SYNC:
            await self.repository.disable_sync(user_id, self.investment_type, reason=error.message)
            logger.warning(f"Disabled {self.investment_type} sync for user {user_id}: {error.message}")
            await self._notify("credential_issue", user_id, {
                "investmentType": self.investment_type,
                "errorKind": error.kind.value,
                "message": error.message,
                "source": context.source,
                "interventionId": action.metadata.get("interventionId"),
            })
        elif action.action == RecoveryActionKind.MANUAL_INTERVENTION:
            await self._notify("intervention_required", user_id, {
                "investmentType": self.investment_type,
                "investmentId": investment_id,
                "errorKind": error.kind.value,
                "message": error.message,
                "interventionId": action.metadata.get("interventionId"),
            })
        return action

    async def _finish(self, user_id: str, session_id: str, result: SyncResult, started: float,
                      status: str | None = None) -> SyncResult:
        result.finalize()
        if status is None:
            if result.success:
                status = "success"
            elif result.records_updated:
                status = "partial"
            else:
                status = "failed"

        if status != "skipped":
            self.recovery.record_outcome(user_id, self.investment_type, result.success)

        await self.audit.log_sync_completion(user_id, self.investment_type, session_id, result)
        record_sync_run(
            self.investment_type, status, time.monotonic() - started,
            updated=result.records_updated, skipped=result.records_skipped, failed=len(result.errors),
        )

        if status in ("success", "partial"):
            await self._notify("sync_success" if result.success else "sync_failure", user_id, {
                "investmentType": self.investment_type, **result.summary(),
            })
        elif status == "failed":
            await self._notify("sync_failure", user_id, {
                "investmentType": self.investment_type,
                **result.summary(),
                "errors": [{"kind": e.kind.value, "message": e.message} for e in result.errors],
            })
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_syncable(self, holding: dict[str, Any], options: SyncOptions) -> bool:
        if not holding.get(self.spec.identifier_field):
            return False
        return options.force or not holding.get("manualOverride")

    def _record_key(self, record: dict[str, Any]) -> Any:
        return record.get(self.spec.identifier_field, record.get("identifier"))

    def _label(self) -> str:
        return self.investment_type.replace("_", " ").capitalize()

    async def _notify(self, kind: str, user_id: str, data: dict[str, Any]) -> None:
        try:
            await self.notifier.notify(kind, user_id, data)
        except Exception as e:
            logger.warning(f"Failed to send {kind} notification for {user_id}: {e}")
