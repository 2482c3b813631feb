"""
Failure history per (user, investment type) feeding escalation checks.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from portfolio_sync.utils.clock import epoch_ms

ERROR_FREQUENCY_WINDOW_MS = 3600000


@dataclass
class _HistoryEntry:
    consecutive_failures: int = 0
    error_times: deque = field(default_factory=deque)
    attempts: int = 0
    successes: int = 0


class RecoveryHistory:
    """Tracks consecutive failures, hourly error counts and recovery outcomes."""

    def __init__(self, clock: Callable[[], int] = epoch_ms, window_ms: int = ERROR_FREQUENCY_WINDOW_MS):
        self._clock = clock
        self.window_ms = window_ms
        self._entries: dict[tuple[str, str], _HistoryEntry] = {}
        self._lock = threading.Lock()

    def _entry(self, user_id: str, investment_type: str) -> _HistoryEntry:
        # Caller holds the lock
        key = (user_id, investment_type)
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _HistoryEntry()
        return entry

    def _prune(self, entry: _HistoryEntry, now: int) -> None:
        while entry.error_times and now - entry.error_times[0] >= self.window_ms:
            entry.error_times.popleft()

    def record_error(self, user_id: str, investment_type: str) -> int:
        """Record one error occurrence; returns the count inside the window."""
        now = self._clock()
        with self._lock:
            entry = self._entry(user_id, investment_type)
            entry.error_times.append(now)
            self._prune(entry, now)
            return len(entry.error_times)

    def error_frequency(self, user_id: str, investment_type: str) -> int:
        now = self._clock()
        with self._lock:
            entry = self._entry(user_id, investment_type)
            self._prune(entry, now)
            return len(entry.error_times)

    def record_outcome(self, user_id: str, investment_type: str, success: bool) -> None:
        with self._lock:
            entry = self._entry(user_id, investment_type)
            entry.attempts += 1
            if success:
                entry.successes += 1
                entry.consecutive_failures = 0
            else:
                entry.consecutive_failures += 1

    def consecutive_failures(self, user_id: str, investment_type: str) -> int:
        with self._lock:
            return self._entry(user_id, investment_type).consecutive_failures

    def summary(self, user_id: str) -> dict[str, dict[str, int]]:
        with self._lock:
            return {
                investment_type: {
                    "attempts": entry.attempts,
                    "successes": entry.successes,
                    "consecutiveFailures": entry.consecutive_failures,
                }
                for (uid, investment_type), entry in self._entries.items()
                if uid == user_id
            }
