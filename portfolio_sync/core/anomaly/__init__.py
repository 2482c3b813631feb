"""
Anomaly detection for validated investment data.
"""

from .detector import (
    AnomalyDetector,
    AnomalyThresholds,
    EpfThresholds,
    MutualFundThresholds,
    StockThresholds,
    build_admin_notification,
    load_anomaly_thresholds,
)

__all__ = [
    "AnomalyDetector",
    "AnomalyThresholds",
    "EpfThresholds",
    "MutualFundThresholds",
    "StockThresholds",
    "build_admin_notification",
    "load_anomaly_thresholds",
]
