"""
Source id to provider mapping.
"""

from portfolio_sync.core.exceptions import UnknownSourceError

from .base import DataProvider


class ProviderRegistry:
    def __init__(self, providers: dict[str, DataProvider] | None = None):
        self._providers: dict[str, DataProvider] = {}
        for source, provider in (providers or {}).items():
            self.register(source, provider)

    def register(self, source: str, provider: DataProvider) -> None:
        self._providers[str(getattr(source, "value", source))] = provider

    def get(self, source: str) -> DataProvider:
        """
        Raises:
            UnknownSourceError: If no provider is registered for the source
        """
        provider = self._providers.get(str(getattr(source, "value", source)))
        if provider is None:
            raise UnknownSourceError(source)
        return provider

    def __contains__(self, source: str) -> bool:
        return str(getattr(source, "value", source)) in self._providers

    @property
    def sources(self) -> list[str]:
        return list(self._providers)
