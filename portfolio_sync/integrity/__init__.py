"""
Integrity gate: validation, anomaly detection and quarantine before persistence.
"""

from .orchestrator import DataIntegrityOrchestrator
from .quarantine import InMemoryQuarantineStore, QuarantineStore, release_quarantined

__all__ = ["DataIntegrityOrchestrator", "InMemoryQuarantineStore", "QuarantineStore", "release_quarantined"]
