"""
Outbound notifications.

The sync core only builds payloads; delivery (email, push, chat) lives
behind the Notifier interface.
"""

from abc import ABC, abstractmethod
from typing import Any

from portfolio_sync.observability.logger import get_logger

logger = get_logger(__name__)

NOTIFICATION_KINDS = (
    "sync_success",
    "sync_failure",
    "credential_issue",
    "manual_override",
    "anomaly_detected",
    "intervention_required",
)


class Notifier(ABC):
    @abstractmethod
    async def notify(self, kind: str, user_id: str, data: dict[str, Any]) -> None:
        """Deliver one notification. Implementations should not block the sync for long."""


class LoggingNotifier(Notifier):
    """Writes notifications to the structured log; the default when none is configured."""

    async def notify(self, kind: str, user_id: str, data: dict[str, Any]) -> None:
        logger.info(f"Notification {kind} for user {user_id}", extra={"notification": kind, "payload": data})


class RecordingNotifier(Notifier):
    """Keeps every notification in memory, for embedding applications and tests."""

    def __init__(self):
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    async def notify(self, kind: str, user_id: str, data: dict[str, Any]) -> None:
        self.sent.append((kind, user_id, data))

    def of_kind(self, kind: str) -> list[tuple[str, str, dict[str, Any]]]:
        return [n for n in self.sent if n[0] == kind]
