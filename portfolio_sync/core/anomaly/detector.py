"""
Anomaly detection over validated investment data.

Combines a per-type extreme-change threshold, a z-score check against the
value history, return volatility analysis and type-specific structural
checks. The combined severity is the maximum across all findings.
"""

import statistics
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import BaseModel

from portfolio_sync.core.investments import get_investment_spec
from portfolio_sync.core.models import (
    Anomaly,
    AnomalyResult,
    InvestmentType,
    QuarantineReason,
    QuarantineRecord,
    Severity,
)
from portfolio_sync.observability.logger import get_logger
from portfolio_sync.observability.metrics import anomalies_total, increment_counter
from portfolio_sync.utils.clock import parse_datetime, utc_now

logger = get_logger(__name__)

MIN_ZSCORE_POINTS = 3
MIN_VOLATILITY_POINTS = 5
ZSCORE_MEDIUM = 2
ZSCORE_HIGH = 3
RETURN_DEVIATION_MEDIUM = 2
RETURN_DEVIATION_HIGH = 3


class MutualFundThresholds(BaseModel):
    extreme_change_percent: float = 25
    max_data_age_days: int = 7
    volatility_percent: float = 50
    elevated_volatility_percent: float = 35


class StockThresholds(BaseModel):
    extreme_change_percent: float = 30
    volume_spike_percent: float = 1000
    max_data_age_days: int = 7
    volatility_percent: float = 50
    elevated_volatility_percent: float = 35


class EpfThresholds(BaseModel):
    balance_decrease_percent: float = 5
    contribution_spike_percent: float = 200
    interest_rate_min: float = 6
    interest_rate_max: float = 12
    # Employer pension share ceiling (12% of the 15000 wage ceiling)
    max_employee_contribution: float = 1800
    contribution_mismatch_tolerance: float = 10


class AnomalyThresholds(BaseModel):
    """Detection thresholds per investment type."""

    mutual_funds: MutualFundThresholds = MutualFundThresholds()
    stocks: StockThresholds = StockThresholds()
    epf: EpfThresholds = EpfThresholds()


def load_anomaly_thresholds(config_path: str | Path) -> AnomalyThresholds:
    """
    Load thresholds from the ``anomaly_thresholds`` section of a YAML file.

    Missing types or keys keep their defaults.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Anomaly threshold file not found: {config_path}")

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    return AnomalyThresholds.model_validate(config.get("anomaly_thresholds") or {})


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _series(history: Iterable[Any], field_name: str) -> list[float]:
    """Numeric values of ``field_name`` from history snapshots, oldest first."""
    values = []
    for point in history or ():
        value = _number(point.get(field_name)) if isinstance(point, dict) else _number(point)
        if value is not None:
            values.append(value)
    return values


def _total_contribution(point: Any) -> float | None:
    """Employee plus employer contribution; None when the snapshot carries neither."""
    if not isinstance(point, dict):
        return None
    parts = [_number(point.get(key)) for key in ("employeeContribution", "employerContribution")]
    parts = [part for part in parts if part is not None]
    return sum(parts) if parts else None


class _Finding:
    __slots__ = ("anomaly", "reason", "recommendation")

    def __init__(self, anomaly: Anomaly, reason: QuarantineReason | None = None,
                 recommendation: str | None = None):
        self.anomaly = anomaly
        self.reason = reason
        self.recommendation = recommendation


class AnomalyDetector:
    """
    Stateless anomaly detector.

    ``detect`` depends only on its arguments, so running it twice on the
    same input yields equal results.
    """

    def __init__(self, thresholds: AnomalyThresholds | None = None):
        self.thresholds = thresholds or AnomalyThresholds()

    def detect(
        self,
        investment_type: InvestmentType | str,
        new_data: dict[str, Any],
        current_data: dict[str, Any] | None = None,
        history: list[Any] | None = None,
        now: datetime | None = None,
    ) -> AnomalyResult:
        """
        Run every check for the investment type.

        Args:
            investment_type: Type of the record
            new_data: Validated incoming record
            current_data: Stored holding, used for the reference value
            history: Earlier stored snapshots (dicts) or plain values, oldest first
            now: Evaluation time for staleness checks

        Returns:
            AnomalyResult; quarantine is requested by any quarantining finding
        """
        spec = get_investment_spec(investment_type)
        current = current_data or {}
        history = history or []
        now = now or utc_now()

        findings: list[_Finding] = []
        if spec.investment_type == InvestmentType.MUTUAL_FUNDS:
            findings += self._check_mutual_fund(spec, new_data, current, now)
        elif spec.investment_type == InvestmentType.STOCKS:
            findings += self._check_stock(spec, new_data, current, now)
        elif spec.investment_type == InvestmentType.EPF:
            findings += self._check_epf(new_data, current, history)

        new_value = _number(new_data.get(spec.value_field))
        values = _series(history, spec.stored_value_field)
        if new_value is not None:
            findings += self._check_zscore(values, new_value)
            if spec.investment_type in (InvestmentType.MUTUAL_FUNDS, InvestmentType.STOCKS):
                limits = self.thresholds.stocks if spec.investment_type == InvestmentType.STOCKS \
                    else self.thresholds.mutual_funds
                findings += self._check_volatility(values, new_value, limits)

        return self._combine(spec.investment_type.value, findings)

    def _combine(self, investment_type: str, findings: list[_Finding]) -> AnomalyResult:
        if not findings:
            return AnomalyResult()

        anomalies = [f.anomaly for f in findings]
        quarantining = [f for f in findings if f.anomaly.quarantine]
        recommendations: list[str] = []
        for finding in findings:
            if finding.recommendation and finding.recommendation not in recommendations:
                recommendations.append(finding.recommendation)

        severity = Severity.highest(a.severity for a in anomalies)
        for anomaly in anomalies:
            increment_counter(anomalies_total, investment_type=investment_type, severity=anomaly.severity.value)

        result = AnomalyResult(
            has_anomalies=True,
            severity=severity,
            quarantine=bool(quarantining),
            quarantine_reason=quarantining[0].reason if quarantining else None,
            anomalies=anomalies,
            recommendations=recommendations,
        )
        logger.info(
            f"Detected {len(anomalies)} anomalies for {investment_type} "
            f"(severity={severity.value}, quarantine={result.quarantine})"
        )
        return result

    def _extreme_change(self, label: str, reference: float | None, new_value: float | None,
                        threshold: float, recommendation: str) -> list[_Finding]:
        if reference is None or reference <= 0 or new_value is None:
            return []

        change = abs(new_value - reference) / reference * 100
        if change <= threshold:
            return []

        anomaly = Anomaly(
            type=f"extreme_{label}_change",
            severity=Severity.HIGH,
            message=f"{label.upper()} changed by {change:.2f}%, exceeding {threshold:g}% threshold",
            quarantine=True,
            details={
                "previousValue": reference,
                "newValue": new_value,
                "changePercent": round(change, 2),
                "threshold": threshold,
            },
        )
        return [_Finding(anomaly, QuarantineReason.EXTREME_PRICE_CHANGE, recommendation)]

    def _stale(self, timestamp: Any, now: datetime, max_age_days: int) -> list[_Finding]:
        parsed = parse_datetime(timestamp)
        if parsed is None:
            return []

        age_days = (now - parsed).days
        if age_days <= max_age_days:
            return []

        anomaly = Anomaly(
            type="stale_data",
            severity=Severity.MEDIUM,
            message=f"Data is {age_days} days old",
            details={"ageDays": age_days, "maxAgeDays": max_age_days},
        )
        return [_Finding(anomaly, recommendation="Check whether the source is publishing current data")]

    def _check_mutual_fund(self, spec, data: dict[str, Any], current: dict[str, Any],
                           now: datetime) -> list[_Finding]:
        limits = self.thresholds.mutual_funds
        findings = self._extreme_change(
            "nav", spec.reference_value(current), _number(data.get("nav")), limits.extreme_change_percent,
            "Manual verification required before applying NAV update",
        )
        findings += self._stale(data.get("date"), now, limits.max_data_age_days)
        return findings

    def _check_stock(self, spec, data: dict[str, Any], current: dict[str, Any],
                     now: datetime) -> list[_Finding]:
        limits = self.thresholds.stocks
        findings = self._extreme_change(
            "price", spec.reference_value(current), _number(data.get("price")), limits.extreme_change_percent,
            "Verify price with multiple data sources",
        )

        volume = _number(data.get("volume"))
        if str(data.get("tradingStatus", "")).upper() == "SUSPENDED" or volume == 0:
            findings.append(_Finding(
                Anomaly(
                    type="trading_halt",
                    severity=Severity.MEDIUM,
                    message="Trading appears to be halted",
                    details={"tradingStatus": data.get("tradingStatus"), "volume": volume},
                ),
                recommendation="Confirm trading status with the exchange",
            ))

        previous_volume = _number(current.get("volume"))
        if volume and previous_volume and previous_volume > 0:
            spike = (volume - previous_volume) / previous_volume * 100
            if spike > limits.volume_spike_percent:
                findings.append(_Finding(
                    Anomaly(
                        type="volume_spike",
                        severity=Severity.MEDIUM,
                        message=f"Volume rose by {spike:.0f}%",
                        details={"previousVolume": previous_volume, "volume": volume, "spikePercent": round(spike, 2)},
                    ),
                    recommendation="Check for corporate actions or news",
                ))

        findings += self._stale(data.get("timestamp"), now, limits.max_data_age_days)
        return findings

    def _check_epf(self, data: dict[str, Any], current: dict[str, Any], history: list[Any]) -> list[_Finding]:
        limits = self.thresholds.epf
        findings: list[_Finding] = []

        balance = _number(data.get("totalBalance"))
        previous = _number(current.get("totalBalance"))
        if balance is not None and previous and balance < previous:
            decrease = (previous - balance) / previous * 100
            severe = decrease > limits.balance_decrease_percent
            findings.append(_Finding(
                Anomaly(
                    type="balance_decrease",
                    severity=Severity.HIGH if severe else Severity.MEDIUM,
                    message=f"EPF balance decreased by {decrease:.2f}%",
                    quarantine=severe,
                    details={"previousBalance": previous, "newBalance": balance, "decreasePercent": round(decrease, 2)},
                ),
                QuarantineReason.DATA_INCONSISTENCY if severe else None,
                "Verify EPF passbook for withdrawals or corrections",
            ))

        rate = _number(data.get("interestRate"))
        if rate is not None and not (limits.interest_rate_min <= rate <= limits.interest_rate_max):
            findings.append(_Finding(
                Anomaly(
                    type="unusual_interest_rate",
                    severity=Severity.MEDIUM,
                    message=f"Interest rate {rate}% outside expected {limits.interest_rate_min:g}-{limits.interest_rate_max:g}%",
                    details={"interestRate": rate},
                ),
                recommendation="Confirm the declared EPF interest rate",
            ))

        employee = _number(data.get("employeeContribution"))
        employer = _number(data.get("employerContribution"))
        contribution = _total_contribution(data)
        past_contributions = [
            total for total in (_total_contribution(point) for point in history or ()) if total is not None
        ]
        if contribution is not None and len(past_contributions) >= MIN_ZSCORE_POINTS:
            average = statistics.fmean(past_contributions)
            if average > 0:
                spike = (contribution - average) / average * 100
                if spike > limits.contribution_spike_percent:
                    findings.append(_Finding(
                        Anomaly(
                            type="contribution_spike",
                            severity=Severity.MEDIUM,
                            message=f"Monthly contribution is {spike:.0f}% above its average",
                            details={"average": round(average, 2), "contribution": contribution},
                        ),
                        recommendation="Check for arrears or a salary revision",
                    ))

        if employee is not None and employer is not None:
            violation = None
            if employee > limits.max_employee_contribution:
                violation = f"Employee contribution {employee:g} exceeds {limits.max_employee_contribution:g}"
            elif abs(employee - employer) > limits.contribution_mismatch_tolerance:
                violation = "Employer contribution does not match employee contribution"

            if violation:
                findings.append(_Finding(
                    Anomaly(
                        type="regulatory_inconsistency",
                        severity=Severity.MEDIUM,
                        message=violation,
                        quarantine=True,
                        details={"employeeContribution": employee, "employerContribution": employer},
                    ),
                    QuarantineReason.DATA_INCONSISTENCY,
                    "Reconcile contributions with the EPF passbook",
                ))

        return findings

    def _check_zscore(self, values: list[float], new_value: float) -> list[_Finding]:
        if len(values) < MIN_ZSCORE_POINTS:
            return []

        mean = statistics.fmean(values)
        std_dev = statistics.pstdev(values)
        if std_dev == 0:
            return []

        z_score = abs(new_value - mean) / std_dev
        if z_score <= ZSCORE_MEDIUM:
            return []

        high = z_score > ZSCORE_HIGH
        anomaly = Anomaly(
            type="statistical_outlier",
            severity=Severity.HIGH if high else Severity.MEDIUM,
            message=f"Value is {z_score:.2f} standard deviations from its historical mean",
            quarantine=high,
            details={
                "zScore": round(z_score, 2),
                "mean": round(mean, 4),
                "stdDev": round(std_dev, 4),
                "newValue": new_value,
                "threshold": ZSCORE_MEDIUM,
            },
        )
        return [_Finding(
            anomaly,
            QuarantineReason.SUSPICIOUS_PATTERN if high else None,
            "Verify with another data source",
        )]

    def _check_volatility(self, values: list[float], new_value: float, limits) -> list[_Finding]:
        if len(values) < MIN_VOLATILITY_POINTS:
            return []

        returns = [(b - a) / a for a, b in zip(values, values[1:]) if a]
        if len(returns) < 2 or not values[-1]:
            return []

        std_dev = statistics.pstdev(returns)
        volatility = std_dev * 100
        latest_return = (new_value - values[-1]) / values[-1]
        deviation = abs(latest_return - statistics.fmean(returns)) / std_dev if std_dev else 0.0

        if volatility > limits.volatility_percent or deviation > RETURN_DEVIATION_HIGH:
            severity = Severity.HIGH
        elif volatility > limits.elevated_volatility_percent or deviation > RETURN_DEVIATION_MEDIUM:
            severity = Severity.MEDIUM
        else:
            return []

        high = severity == Severity.HIGH
        anomaly = Anomaly(
            type="high_volatility",
            severity=severity,
            message=f"Unusual volatility: {volatility:.2f}% with a {deviation:.2f} sigma latest move",
            quarantine=high,
            details={
                "volatility": round(volatility, 2),
                "returnDeviation": round(deviation, 2),
                "latestReturn": round(latest_return * 100, 2),
            },
        )
        return [_Finding(
            anomaly,
            QuarantineReason.SUSPICIOUS_PATTERN if high else None,
            "Review recent price history before accepting this value",
        )]


def build_admin_notification(
    user_id: str,
    investment_type: str,
    investment_id: str | None,
    result: AnomalyResult,
    quarantine_record: QuarantineRecord | None = None,
) -> dict[str, Any]:
    """Payload for the ``anomaly_detected`` admin notification."""
    return {
        "type": "anomaly_detected",
        "userId": user_id,
        "investmentType": investment_type,
        "investmentId": investment_id,
        "severity": result.severity.value,
        "quarantineId": quarantine_record.id if quarantine_record else None,
        "anomalies": [a.model_dump(mode="json") for a in result.anomalies],
        "recommendations": list(result.recommendations),
    }
