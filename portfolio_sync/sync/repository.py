"""
Investment persistence contract.

The sync core reads holdings and writes synced values only through this
interface, and only the integrity orchestrator calls ``update``.
"""

import copy
import threading
from abc import ABC, abstractmethod
from typing import Any

from portfolio_sync.core.exceptions import InvestmentNotFoundError
from portfolio_sync.core.models import SyncStatus


class InvestmentRepository(ABC):
    """Holdings keyed by investment id; each holding is a plain dict with an ``id``."""

    @abstractmethod
    async def list_for_user(self, user_id: str, investment_type: str) -> list[dict[str, Any]]:
        """All holdings of one type owned by the user."""

    @abstractmethod
    async def find(self, user_id: str, investment_id: str) -> dict[str, Any] | None:
        """One holding, None when the user has no such investment."""

    @abstractmethod
    async def update(self, investment_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        """Apply ``updates`` to a holding and return the new state."""

    @abstractmethod
    async def is_sync_enabled(self, user_id: str, investment_type: str) -> bool:
        """Whether automatic sync is enabled for the user and type."""

    @abstractmethod
    async def disable_sync(self, user_id: str, investment_type: str, reason: str | None = None) -> None:
        """Turn automatic sync off for the user and type."""


class InMemoryInvestmentRepository(InvestmentRepository):
    """
    Dict-backed repository.

    Holdings need ``id``, ``userId`` and ``investmentType`` keys. Returned
    holdings are copies, so callers cannot mutate stored state directly.
    """

    def __init__(self, holdings: list[dict[str, Any]] | None = None):
        self._holdings: dict[str, dict[str, Any]] = {}
        self._disabled: dict[tuple[str, str], str | None] = {}
        self._lock = threading.Lock()
        self.update_calls: list[tuple[str, dict[str, Any]]] = []
        for holding in holdings or []:
            self.add(holding)

    def add(self, holding: dict[str, Any]) -> None:
        with self._lock:
            self._holdings[holding["id"]] = copy.deepcopy(holding)

    async def list_for_user(self, user_id: str, investment_type: str) -> list[dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(h) for h in self._holdings.values()
                if h.get("userId") == user_id and h.get("investmentType") == investment_type
            ]

    async def find(self, user_id: str, investment_id: str) -> dict[str, Any] | None:
        with self._lock:
            holding = self._holdings.get(investment_id)
            if holding is None or holding.get("userId") != user_id:
                return None
            return copy.deepcopy(holding)

    async def update(self, investment_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            holding = self._holdings.get(investment_id)
            if holding is None:
                raise InvestmentNotFoundError(investment_id)
            holding.update(copy.deepcopy(updates))
            self.update_calls.append((investment_id, copy.deepcopy(updates)))
            return copy.deepcopy(holding)

    async def is_sync_enabled(self, user_id: str, investment_type: str) -> bool:
        return (user_id, investment_type) not in self._disabled

    async def disable_sync(self, user_id: str, investment_type: str, reason: str | None = None) -> None:
        with self._lock:
            self._disabled[(user_id, investment_type)] = reason
            for holding in self._holdings.values():
                if holding.get("userId") == user_id and holding.get("investmentType") == investment_type:
                    holding["syncStatus"] = SyncStatus.DISABLED.value

    def enable_sync(self, user_id: str, investment_type: str) -> None:
        with self._lock:
            self._disabled.pop((user_id, investment_type), None)
