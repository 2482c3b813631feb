"""
Lightweight liveness probes for upstream data sources.
"""

from typing import Protocol

import httpx

from portfolio_sync.core.exceptions import UpstreamHTTPError
from portfolio_sync.observability.logger import get_logger

logger = get_logger(__name__)

DEFAULT_PROBE_URLS = {
    "amfi": "https://www.amfiindia.com/spages/NAVAll.txt",
    "yahoo_finance": "https://query1.finance.yahoo.com/v8/finance/chart/RELIANCE.NS",
    "nse": "https://www.nseindia.com/api/equity-stockIndices?index=NIFTY%2050",
    "bse": "https://api.bseindia.com/BseIndiaAPI/api/DefaultData/w",
    "alpha_vantage": (
        "https://www.alphavantage.co/query?function=TIME_SERIES_INTRADAY"
        "&symbol=IBM&interval=1min&apikey=demo"
    ),
}


class HealthProber(Protocol):
    async def __call__(self, source: str) -> None:
        """Return normally when ``source`` is alive, raise otherwise."""
        ...


class HttpHealthProber:
    """
    HEAD-request prober.

    Any status below 500 counts as alive. Sources without a probe URL
    are assumed alive.
    """

    def __init__(self, urls: dict[str, str] | None = None, timeout_s: float = 10.0,
                 client: httpx.AsyncClient | None = None):
        self.urls = dict(DEFAULT_PROBE_URLS if urls is None else urls)
        self.timeout_s = timeout_s
        self._client = client

    async def __call__(self, source: str) -> None:
        url = self.urls.get(source)
        if url is None:
            logger.debug(f"No probe URL for {source}, assuming healthy")
            return

        if self._client is not None:
            response = await self._client.head(url, timeout=self.timeout_s, follow_redirects=True)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.head(url, timeout=self.timeout_s, follow_redirects=True)

        if response.status_code >= 500:
            raise UpstreamHTTPError(response.status_code, f"Health probe for {source} returned HTTP {response.status_code}")
