from __future__ import annotations

import time
from typing import Any

import httpx

from deepest.errors import ConfigurationError, ProviderError
from deepest.models.research import SearchResult
from deepest.services import logger as log_service

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


def _to_search_result(item: dict[str, Any], rank: int, count: int) -> SearchResult:
    parts = [(item.get("description") or "").strip(), *(item.get("extra_snippets") or [])]
    content = " ".join(p for p in parts if p).strip()
    return SearchResult(
        title=item.get("title") or "",
        url=item.get("url") or "",
        content=content or None,
        # no relevance score in the API, rank order stands in for one
        relevance_score=1.0 - rank / count,
    )


class BraveSearchProvider:
    name = "brave"

    def __init__(self, api_key: str, *, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None):
        if not api_key:
            raise ConfigurationError("BRAVE_API_KEY is not configured")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def _get(self, params: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(
                BRAVE_SEARCH_URL,
                params=params,
                headers={
                    "Accept": "application/json",
                    "X-Subscription-Token": self.api_key,
                },
            )
            response.raise_for_status()
            return response.json()

    async def search(self, query: str, max_results: int) -> list[SearchResult]:
        t0 = time.monotonic()
        try:
            payload = await self._get({"q": query, "count": max_results})
        except httpx.HTTPStatusError as e:
            log_service.log_search_call(self.name, query, error=str(e))
            if e.response.status_code in (401, 403):
                raise ConfigurationError(f"Brave rejected the API key: {e}") from e
            raise ProviderError(f"Brave search failed: {e}") from e
        except httpx.ConnectError as e:
            log_service.log_search_call(self.name, query, error=str(e))
            raise ConfigurationError(f"Brave search is unreachable: {e}") from e
        except httpx.HTTPError as e:
            log_service.log_search_call(self.name, query, error=str(e))
            raise ProviderError(f"Brave search failed: {e}") from e

        items = (payload.get("web") or {}).get("results") or []
        results = [_to_search_result(item, rank, len(items)) for rank, item in enumerate(items)]
        log_service.log_search_call(
            self.name,
            query,
            results_count=len(results),
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return results

    async def test_connection(self) -> bool:
        """Issue a one-result query; any failure is logged and reported as False."""
        try:
            await self._get({"q": "connection check", "count": 1})
        except Exception as e:
            log_service.log_event("connection_test_failed", "Brave connection test failed", error=str(e))
            return False
        return True
