"""
Per-user queue of interventions awaiting human action.
"""

import threading
from collections import defaultdict

from portfolio_sync.core.models import Intervention
from portfolio_sync.observability.logger import get_logger
from portfolio_sync.observability.metrics import increment_counter, interventions_total
from portfolio_sync.utils.clock import utc_now

logger = get_logger(__name__)

MAX_INTERVENTIONS_PER_USER = 50


class InterventionQueue:
    """
    Bounded intervention queue keyed by user.

    Appends and trimming for one user happen under that user's lock; the
    oldest entries are dropped once a queue exceeds ``max_per_user``.
    """

    def __init__(self, max_per_user: int = MAX_INTERVENTIONS_PER_USER):
        self.max_per_user = max_per_user
        self._queues: dict[str, list[Intervention]] = defaultdict(list)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    def enqueue(self, intervention: Intervention) -> Intervention:
        with self._lock_for(intervention.user_id):
            queue = self._queues[intervention.user_id]
            queue.append(intervention)
            if len(queue) > self.max_per_user:
                del queue[: len(queue) - self.max_per_user]

        increment_counter(
            interventions_total,
            intervention_type=intervention.intervention_type,
            escalated=str(intervention.escalated).lower(),
        )
        logger.warning(
            f"Queued {intervention.intervention_type} intervention {intervention.id} "
            f"for user {intervention.user_id} ({intervention.error_kind.value})"
        )
        return intervention

    def get_all(self, user_id: str) -> list[Intervention]:
        with self._lock_for(user_id):
            return [i.model_copy() for i in self._queues.get(user_id, [])]

    def get_pending(self, user_id: str) -> list[Intervention]:
        return [i for i in self.get_all(user_id) if i.status == "pending"]

    def resolve(self, user_id: str, intervention_id: str, resolution: str = "Resolved by user") -> Intervention | None:
        """
        Mark an intervention resolved.

        Returns:
            The updated intervention, or None if it is not in the user's queue
        """
        with self._lock_for(user_id):
            queue = self._queues.get(user_id, [])
            for index, item in enumerate(queue):
                if item.id == intervention_id:
                    resolved = item.model_copy(update={
                        "status": "resolved",
                        "resolved_at": utc_now(),
                        "resolution": resolution,
                    })
                    queue[index] = resolved
                    logger.info(f"Intervention {intervention_id} resolved for user {user_id}")
                    return resolved.model_copy()
        return None

    def clear(self, user_id: str) -> int:
        with self._lock_for(user_id):
            removed = len(self._queues.get(user_id, []))
            self._queues.pop(user_id, None)
        return removed
