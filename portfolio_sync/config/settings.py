"""
Runtime settings and component wiring.

Settings come from environment variables, optionally seeded from a dotenv
file. ``build_sync_service`` assembles a SyncService with the registry,
recovery, integrity and audit components configured from them.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from portfolio_sync.audit import AuditStore, AuditTrailRecorder
from portfolio_sync.core.anomaly import AnomalyDetector, load_anomaly_thresholds
from portfolio_sync.core.models import InvestmentType, SyncOptions
from portfolio_sync.core.rules import ValidationEngine
from portfolio_sync.integrity import DataIntegrityOrchestrator, QuarantineStore
from portfolio_sync.notifications import Notifier
from portfolio_sync.observability.logger import get_logger
from portfolio_sync.providers import ProviderRegistry
from portfolio_sync.recovery.service import ErrorRecoveryService
from portfolio_sync.resilience.probes import HttpHealthProber
from portfolio_sync.resilience.source_health import SourceHealthRegistry
from portfolio_sync.sync.repository import InvestmentRepository
from portfolio_sync.sync.service import SyncService

logger = get_logger(__name__)


class SyncSettings(BaseModel):
    """
    Tunables for the sync core.

    Attributes:
        health_check_interval_s: Age after which cached source health is re-probed
        probe_timeout_s: Liveness probe timeout
        upstream_timeout_s: Timeout for provider calls
        max_fallbacks: Fallback sources tried after the primary
        audit_retention_days: Audit entries older than this are cleaned up
        critical_investment_types: Types that escalate from the second attempt
        rules_file: Optional YAML with rule and anomaly threshold overrides
    """

    health_check_interval_s: float = Field(300, gt=0)
    probe_timeout_s: float = Field(10, gt=0)
    upstream_timeout_s: float = Field(30, gt=0)
    max_fallbacks: int = Field(3, ge=0)
    audit_retention_days: int = Field(365, ge=1, le=3650)
    critical_investment_types: list[str] = Field(default_factory=lambda: [InvestmentType.EPF.value])
    rules_file: Path | None = None

    @field_validator("critical_investment_types")
    @classmethod
    def check_investment_types(cls, v):
        return [InvestmentType(t).value for t in v]

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "SyncSettings":
        """
        Build settings from environment variables.

        Args:
            env_file: Optional dotenv file loaded first; existing variables win

        Returns:
            SyncSettings
        """
        if env_file is not None:
            load_dotenv(env_file)

        values = {}
        env_map = {
            "health_check_interval_s": "SYNC_HEALTH_CHECK_INTERVAL_SECONDS",
            "probe_timeout_s": "SYNC_PROBE_TIMEOUT_SECONDS",
            "upstream_timeout_s": "SYNC_UPSTREAM_TIMEOUT_SECONDS",
            "max_fallbacks": "SYNC_MAX_FALLBACKS",
            "audit_retention_days": "AUDIT_RETENTION_DAYS",
            "rules_file": "SYNC_RULES_FILE",
        }
        for field_name, var in env_map.items():
            raw = os.getenv(var)
            if raw:
                values[field_name] = raw

        critical = os.getenv("SYNC_CRITICAL_INVESTMENT_TYPES")
        if critical is not None:
            values["critical_investment_types"] = [t.strip() for t in critical.split(",") if t.strip()]

        return cls(**values)

    def validation_engine(self) -> ValidationEngine:
        if self.rules_file is None:
            return ValidationEngine()
        return ValidationEngine.from_yaml(self.rules_file)

    def anomaly_detector(self) -> AnomalyDetector:
        if self.rules_file is None:
            return AnomalyDetector()
        return AnomalyDetector(load_anomaly_thresholds(self.rules_file))


def build_sync_service(
    investment_type: InvestmentType | str,
    providers: ProviderRegistry,
    repository: InvestmentRepository,
    settings: SyncSettings | None = None,
    source_registry: SourceHealthRegistry | None = None,
    audit_store: AuditStore | None = None,
    quarantine_store: QuarantineStore | None = None,
    notifier: Notifier | None = None,
) -> SyncService:
    """
    Wire a SyncService from settings.

    Components that are not passed in are created with in-memory stores.
    Share ``source_registry`` between services so every investment type
    sees the same breakers and health.
    """
    settings = settings or SyncSettings()
    source_registry = source_registry or SourceHealthRegistry(
        prober=HttpHealthProber(timeout_s=settings.probe_timeout_s),
        health_check_interval_s=settings.health_check_interval_s,
    )
    audit = AuditTrailRecorder(audit_store)
    integrity = DataIntegrityOrchestrator(
        repository,
        validation_engine=settings.validation_engine(),
        anomaly_detector=settings.anomaly_detector(),
        audit=audit,
        quarantine_store=quarantine_store,
        notifier=notifier,
    )
    recovery = ErrorRecoveryService(
        source_registry=source_registry,
        critical_investment_types=settings.critical_investment_types,
    )
    logger.info(f"Built {InvestmentType(investment_type).value} sync service (max_fallbacks={settings.max_fallbacks})")
    return SyncService(
        investment_type,
        providers=providers,
        source_registry=source_registry,
        integrity=integrity,
        recovery=recovery,
        audit=audit,
        repository=repository,
        notifier=notifier,
        max_fallbacks=settings.max_fallbacks,
        default_options=SyncOptions(timeout_ms=int(settings.upstream_timeout_s * 1000)),
    )
