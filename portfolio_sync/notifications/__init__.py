from .notifier import NOTIFICATION_KINDS, LoggingNotifier, Notifier, RecordingNotifier

__all__ = ["NOTIFICATION_KINDS", "LoggingNotifier", "Notifier", "RecordingNotifier"]
