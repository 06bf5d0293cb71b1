from __future__ import annotations

from enum import Enum
from typing import Callable, Protocol

from deepest.config import Settings, settings
from deepest.errors import ConfigurationError
from deepest.models.research import SearchResult
from deepest.tools.brave_search import BraveSearchProvider
from deepest.tools.tavily_search import TavilySearchProvider


class WebSearchProvider(Protocol):
    name: str

    async def search(self, query: str, max_results: int) -> list[SearchResult]: ...

    async def test_connection(self) -> bool: ...


class SearchProviderName(str, Enum):
    TAVILY = "tavily"
    BRAVE = "brave"


SEARCH_PROVIDERS: dict[SearchProviderName, Callable[[Settings], WebSearchProvider]] = {
    SearchProviderName.TAVILY: lambda config: TavilySearchProvider(config.tavily_api_key),
    SearchProviderName.BRAVE: lambda config: BraveSearchProvider(config.brave_api_key),
}


def create_search_provider(config: Settings | None = None) -> WebSearchProvider:
    """Build the configured web-search provider or raise ``ConfigurationError``."""
    config = config or settings
    raw_name = str(config.search_provider or "").lower().strip()
    try:
        name = SearchProviderName(raw_name)
    except ValueError:
        raise ConfigurationError(f"Unsupported SEARCH_PROVIDER: {config.search_provider!r}") from None
    return SEARCH_PROVIDERS[name](config)

