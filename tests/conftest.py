"""
Pytest configuration and fixtures for portfolio-sync tests

This module provides shared fixtures for unit and integration tests.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Generator

import pytest
from testcontainers.postgres import PostgresContainer

from portfolio_sync.audit import AuditTrailRecorder
from portfolio_sync.core.models import SyncOptions
from portfolio_sync.integrity import DataIntegrityOrchestrator, InMemoryQuarantineStore
from portfolio_sync.notifications import RecordingNotifier
from portfolio_sync.providers import DataProvider
from portfolio_sync.sync.repository import InMemoryInvestmentRepository


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# CLOCK FIXTURES
# =======================

# A Wednesday, during Indian market hours (13:00 IST)
FIXED_NOW = datetime(2024, 6, 12, 7, 30, tzinfo=timezone.utc)


class ManualClock:
    """
    Controllable clock exposing both epoch milliseconds and datetimes.

    Call the instance for epoch ms (breakers, recovery history) and use
    ``now`` for aware datetimes (validation, audit).
    """

    def __init__(self, start: datetime = FIXED_NOW):
        self.current = start

    def __call__(self) -> int:
        return int(self.current.timestamp() * 1000)

    def now(self) -> datetime:
        return self.current

    def advance(self, ms: int = 0, **delta) -> None:
        self.current += timedelta(milliseconds=ms, **delta)


class RecordingSleep:
    """Async sleep replacement that records requested delays instead of waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock starting at FIXED_NOW"""
    return ManualClock()


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    """Sleep stand-in for retry tests"""
    return RecordingSleep()


# =======================
# SYNC FIXTURES
# =======================

class FakeProvider(DataProvider):
    """
    Provider returning canned records or raising canned errors.

    ``outcomes`` is consumed one item per fetch call; an exception item is
    raised, a list is returned. The last item repeats once exhausted.
    """

    def __init__(self, name: str, outcomes: list[Any] | None = None, available: bool = True):
        super().__init__(name)
        self.outcomes = list(outcomes or [[]])
        self.available = available
        self.calls: list[list[str]] = []

    async def is_available(self) -> bool:
        return self.available

    async def fetch_data(self, identifiers: list[str], options: SyncOptions) -> list[dict[str, Any]]:
        self.calls.append(list(identifiers))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return [dict(r) for r in outcome]


@pytest.fixture
def provider_factory():
    """Build FakeProvider instances"""
    return FakeProvider


def make_fund(investment_id: str = "mf-1", user_id: str = "user-1", **overrides) -> dict[str, Any]:
    holding = {
        "id": investment_id,
        "userId": user_id,
        "investmentType": "mutual_funds",
        "name": "Example Bluechip Fund",
        "isin": "INF109K01VQ1",
        "units": 100.0,
        "nav": 10.0,
        "currentValue": 1000.0,
        "investedAmount": 900.0,
    }
    holding.update(overrides)
    return holding


def make_stock(investment_id: str = "st-1", user_id: str = "user-1", **overrides) -> dict[str, Any]:
    holding = {
        "id": investment_id,
        "userId": user_id,
        "investmentType": "stocks",
        "symbol": "RELIANCE",
        "exchange": "NSE",
        "quantity": 10,
        "currentPrice": 2500.0,
    }
    holding.update(overrides)
    return holding


def make_epf(investment_id: str = "epf-1", user_id: str = "user-1", **overrides) -> dict[str, Any]:
    holding = {
        "id": investment_id,
        "userId": user_id,
        "investmentType": "epf",
        "uan": "100200300400",
        "employeeContribution": 1800.0,
        "employerContribution": 1800.0,
        "totalBalance": 250000.0,
    }
    holding.update(overrides)
    return holding


@pytest.fixture
def holdings():
    """Holding factories keyed by investment type"""
    return {"mutual_funds": make_fund, "stocks": make_stock, "epf": make_epf}


@pytest.fixture
def nav_record():
    """Factory for a fetched NAV record for the default fund"""
    def build(nav: float = 10.2, isin: str = "INF109K01VQ1", date: str = "2024-06-11", **extra):
        return {"isin": isin, "nav": nav, "date": date, **extra}
    return build


@pytest.fixture
def repository(holdings) -> InMemoryInvestmentRepository:
    """Repository holding one fund for user-1"""
    return InMemoryInvestmentRepository([holdings["mutual_funds"]()])


@pytest.fixture
def audit(clock) -> AuditTrailRecorder:
    """In-memory audit recorder on the manual clock"""
    return AuditTrailRecorder(clock=clock.now)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def orchestrator(repository, audit, notifier, clock) -> DataIntegrityOrchestrator:
    """Integrity orchestrator wired to in-memory stores"""
    return DataIntegrityOrchestrator(
        repository,
        audit=audit,
        quarantine_store=InMemoryQuarantineStore(),
        notifier=notifier,
        clock=clock.now,
    )


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance
    """
    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_sync",
        password="test_password",
        dbname="test_portfolio"
    ) as postgres:
        # Wait for container to be ready
        postgres.get_connection_url()
        yield postgres


@pytest.fixture(scope="session")
def db_settings(postgres_container) -> dict[str, Any]:
    """
    Connection keyword arguments for DatabaseConnectionPool

    Args:
        postgres_container: PostgreSQL container fixture

    Returns:
        Dict with host, port, database, user and password
    """
    return {
        "host": postgres_container.get_container_host_ip(),
        "port": int(postgres_container.get_exposed_port(5432)),
        "database": "test_portfolio",
        "user": "test_sync",
        "password": "test_password",
    }


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_env_vars():
    """
    Set test environment variables

    This fixture loads config/test.env and sets environment variables
    """
    from dotenv import load_dotenv

    env_path = os.path.join(
        os.path.dirname(os.path.dirname(__file__)),
        "config",
        "test.env"
    )

    if os.path.exists(env_path):
        load_dotenv(env_path, override=True)
    return env_path
