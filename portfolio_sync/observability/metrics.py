"""
Prometheus metrics collection for portfolio-sync

This module provides metrics instrumentation for sync runs, upstream
resilience (retries, breakers, fallbacks), recovery decisions and data
integrity outcomes.
"""
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    CollectorRegistry,
    generate_latest,
)


# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# SYNC METRICS
# =======================

sync_runs_total = Counter(
    name="sync_runs_total",
    documentation="Total number of sync invocations",
    labelnames=["investment_type", "status"],  # status: success, partial, failed, skipped
    registry=REGISTRY,
)

sync_duration_seconds = Histogram(
    name="sync_duration_seconds",
    documentation="Time spent in one sync invocation in seconds",
    labelnames=["investment_type"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=REGISTRY,
)

sync_records_total = Counter(
    name="sync_records_total",
    documentation="Total number of records handled by sync",
    labelnames=["investment_type", "outcome"],  # outcome: updated, skipped, failed
    registry=REGISTRY,
)

# =======================
# RESILIENCE METRICS
# =======================

retry_attempts_total = Counter(
    name="sync_retry_attempts_total",
    documentation="Total number of retried upstream attempts",
    labelnames=["operation", "outcome"],  # outcome: retry, exhausted, success
    registry=REGISTRY,
)

circuit_breaker_state = Gauge(
    name="sync_circuit_breaker_state",
    documentation="Circuit breaker state (0 closed, 1 half-open, 2 open)",
    labelnames=["resource"],
    registry=REGISTRY,
)

circuit_breaker_transitions_total = Counter(
    name="sync_circuit_breaker_transitions_total",
    documentation="Total number of circuit breaker state transitions",
    labelnames=["resource", "to_state"],
    registry=REGISTRY,
)

source_healthy = Gauge(
    name="sync_source_healthy",
    documentation="Whether a data source is currently considered healthy (1) or not (0)",
    labelnames=["source"],
    registry=REGISTRY,
)

fallbacks_total = Counter(
    name="sync_fallbacks_total",
    documentation="Total number of times a fallback source served a request",
    labelnames=["primary", "fallback"],
    registry=REGISTRY,
)

# =======================
# ERROR / RECOVERY METRICS
# =======================

sync_errors_total = Counter(
    name="sync_errors_total",
    documentation="Total number of classified sync errors",
    labelnames=["kind", "component"],
    registry=REGISTRY,
)

recovery_actions_total = Counter(
    name="sync_recovery_actions_total",
    documentation="Total number of recovery decisions taken",
    labelnames=["kind", "action"],
    registry=REGISTRY,
)

interventions_total = Counter(
    name="sync_interventions_total",
    documentation="Total number of interventions queued for human review",
    labelnames=["intervention_type", "escalated"],
    registry=REGISTRY,
)

# =======================
# DATA INTEGRITY METRICS
# =======================

validation_failures_total = Counter(
    name="sync_validation_failures_total",
    documentation="Total number of hard validation failures",
    labelnames=["investment_type", "rule_name"],
    registry=REGISTRY,
)

validation_warnings_total = Counter(
    name="sync_validation_warnings_total",
    documentation="Total number of validation warnings (non-blocking issues)",
    labelnames=["investment_type", "rule_name"],
    registry=REGISTRY,
)

anomalies_total = Counter(
    name="sync_anomalies_total",
    documentation="Total number of records with detected anomalies",
    labelnames=["investment_type", "severity"],
    registry=REGISTRY,
)

quarantine_size = Gauge(
    name="sync_quarantine_size",
    documentation="Current number of records held in quarantine",
    labelnames=["investment_type"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    counter.labels(**labels).inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    """
    Set a gauge metric value

    Args:
        gauge: Prometheus Gauge metric
        value: Value to set
        **labels: Label values for the metric
    """
    gauge.labels(**labels).set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    """
    Observe a value in a histogram metric

    Args:
        histogram: Prometheus Histogram metric
        value: Value to observe
        **labels: Label values for the metric
    """
    histogram.labels(**labels).observe(value)


CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


def record_circuit_transition(resource: str, to_state: str) -> None:
    """Record a breaker transition and publish the new state."""
    increment_counter(circuit_breaker_transitions_total, resource=resource, to_state=to_state)
    set_gauge(circuit_breaker_state, CIRCUIT_STATE_VALUES.get(to_state, 0), resource=resource)


def record_sync_run(investment_type: str, status: str, duration_seconds: float,
                    updated: int = 0, skipped: int = 0, failed: int = 0) -> None:
    """
    Record the metrics for one completed sync invocation.

    Args:
        investment_type: Investment type that was synced
        status: success, partial, failed or skipped
        duration_seconds: Wall-clock duration of the sync
        updated: Records persisted
        skipped: Records skipped or quarantined
        failed: Records that produced an error
    """
    increment_counter(sync_runs_total, investment_type=investment_type, status=status)
    observe_histogram(sync_duration_seconds, duration_seconds, investment_type=investment_type)
    if updated:
        increment_counter(sync_records_total, updated, investment_type=investment_type, outcome="updated")
    if skipped:
        increment_counter(sync_records_total, skipped, investment_type=investment_type, outcome="skipped")
    if failed:
        increment_counter(sync_records_total, failed, investment_type=investment_type, outcome="failed")
