from __future__ import annotations

import time
from typing import Any

from tavily import AsyncTavilyClient
from tavily.errors import InvalidAPIKeyError, MissingAPIKeyError

from deepest.errors import ConfigurationError, ProviderError
from deepest.models.research import SearchResult
from deepest.services import logger as log_service


class TavilySearchProvider:
    name = "tavily"

    def __init__(self, api_key: str, *, search_depth: str = "advanced", client: Any | None = None):
        if not api_key and client is None:
            raise ConfigurationError("TAVILY_API_KEY is not configured")
        self.api_key = api_key
        self.search_depth = search_depth
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = AsyncTavilyClient(api_key=self.api_key)
        return self._client

    async def search(self, query: str, max_results: int) -> list[SearchResult]:
        """Execute a Tavily web search, requesting the raw page content."""
        t0 = time.monotonic()
        try:
            response = await self.client.search(
                query=query,
                search_depth=self.search_depth,
                max_results=max_results,
                include_answer=False,
                include_raw_content=True,
                include_images=False,
            )
        except (InvalidAPIKeyError, MissingAPIKeyError) as e:
            log_service.log_search_call(self.name, query, error=str(e))
            raise ConfigurationError(f"Tavily rejected the API key: {e}") from e
        except Exception as e:
            log_service.log_search_call(self.name, query, error=str(e))
            raise ProviderError(f"Tavily search failed: {e}") from e

        results = [
            SearchResult(
                title=r.get("title", "") or "",
                url=r.get("url", "") or "",
                content=r.get("raw_content") or r.get("content") or None,
                relevance_score=r.get("score"),
            )
            for r in response.get("results", [])
        ]
        log_service.log_search_call(
            self.name,
            query,
            results_count=len(results),
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return results

    async def test_connection(self) -> bool:
        try:
            await self.client.search(query="test", search_depth="basic", max_results=1)
            return True
        except Exception as e:
            log_service.log_event(
                event_type="connection_test_failed",
                message="Tavily connection test failed",
                error=str(e),
            )
            return False
