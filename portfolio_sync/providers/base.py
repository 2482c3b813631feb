"""
Provider contract consumed by the sync service.

Providers own their wire formats; the sync core only sees standard
records (plain dicts keyed like the investment type's fields).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from portfolio_sync.core.exceptions import UpstreamHTTPError
from portfolio_sync.core.models import SyncOptions


@dataclass(frozen=True)
class RateLimits:
    requests_per_minute: int = 60
    requests_per_hour: int = 1000
    requests_per_day: int = 10000


class DataProvider(ABC):
    """
    One upstream data source.

    Subclasses implement ``fetch_data``; the other hooks have usable
    defaults.
    """

    def __init__(self, name: str, rate_limits: RateLimits | None = None):
        self.name = name
        self._rate_limits = rate_limits or RateLimits()

    async def is_available(self) -> bool:
        return True

    async def authenticate(self, credentials: dict[str, Any] | None = None) -> bool:
        return True

    @abstractmethod
    async def fetch_data(self, identifiers: list[str], options: SyncOptions) -> list[dict[str, Any]]:
        """
        Fetch raw records for the identifiers.

        Raises:
            Exception: Any failure; the sync service classifies it
        """

    def validate_data(self, records: list[dict[str, Any]]) -> bool:
        """Cheap shape check before transformation."""
        return isinstance(records, list) and all(isinstance(r, dict) for r in records)

    def transform_data(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Map raw records to standard records; identity by default."""
        return [dict(r) for r in records]

    def get_rate_limits(self) -> RateLimits:
        return self._rate_limits

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name})"


class HttpJsonProvider(DataProvider):
    """
    Base for providers that GET JSON over HTTP.

    Non-2xx answers become UpstreamHTTPError carrying the status and any
    Retry-After header, which is what the error classifier reads.
    """

    def __init__(self, name: str, base_url: str, timeout_s: float = 30.0,
                 client: httpx.AsyncClient | None = None, headers: dict[str, str] | None = None,
                 rate_limits: RateLimits | None = None):
        super().__init__(name, rate_limits)
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.headers = headers or {}
        self._client = client

    async def get_json(self, path: str, params: dict[str, Any] | None = None,
                       timeout_s: float | None = None) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        timeout = timeout_s if timeout_s is not None else self.timeout_s

        if self._client is not None:
            response = await self._client.get(url, params=params, headers=self.headers, timeout=timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.get(url, params=params, headers=self.headers, timeout=timeout)

        if response.status_code >= 400:
            retry_after = response.headers.get("retry-after")
            raise UpstreamHTTPError(
                response.status_code,
                f"{self.name} responded with HTTP {response.status_code}",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                details={"url": url},
            )
        return response.json()
