"""Tests for web-search providers and the search registry."""
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from tavily.errors import InvalidAPIKeyError

from deepest.config import Settings
from deepest.errors import ConfigurationError, ProviderError
from deepest.tools.brave_search import BraveSearchProvider
from deepest.tools.search_provider import create_search_provider
from deepest.tools.tavily_search import TavilySearchProvider


def tavily_client(response=None, error=None):
    client = MagicMock()
    client.search = AsyncMock(return_value=response, side_effect=error)
    return client


class TestTavily:
    @pytest.mark.asyncio
    async def test_prefers_raw_content(self):
        client = tavily_client(
            {
                "results": [
                    {"title": "A", "url": "https://a", "content": "snippet", "raw_content": "full page", "score": 0.8},
                    {"title": "B", "url": "https://b", "content": "only snippet", "raw_content": None, "score": 0.4},
                    {"title": "C", "url": "https://c", "content": "", "raw_content": None},
                ]
            }
        )
        provider = TavilySearchProvider("tvly-test", client=client)

        results = await provider.search("solar costs", max_results=3)

        assert [r.content for r in results] == ["full page", "only snippet", None]
        assert results[0].relevance_score == 0.8
        assert results[2].relevance_score is None
        kwargs = client.search.call_args.kwargs
        assert kwargs["max_results"] == 3
        assert kwargs["include_raw_content"] is True

    @pytest.mark.asyncio
    async def test_invalid_key_is_configuration_error(self):
        provider = TavilySearchProvider("tvly-bad", client=tavily_client(error=InvalidAPIKeyError("bad key")))

        with pytest.raises(ConfigurationError):
            await provider.search("q", max_results=1)

    @pytest.mark.asyncio
    async def test_other_failures_are_provider_errors(self):
        provider = TavilySearchProvider("tvly-test", client=tavily_client(error=RuntimeError("502")))

        with pytest.raises(ProviderError):
            await provider.search("q", max_results=1)

    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError, match="TAVILY_API_KEY"):
            TavilySearchProvider("")


def brave_transport(status=200, payload=None, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=payload or {})

    return httpx.MockTransport(handler)


class TestBrave:
    @pytest.mark.asyncio
    async def test_normalizes_results(self):
        seen = []
        payload = {
            "web": {
                "results": [
                    {"title": "A", "url": "https://a", "description": "Desc A", "extra_snippets": ["More A"]},
                    {"title": "B", "url": "https://b", "description": ""},
                ]
            }
        }
        provider = BraveSearchProvider("brave-key", transport=brave_transport(payload=payload, seen=seen))

        results = await provider.search("solar costs", max_results=2)

        assert results[0].content == "Desc A More A"
        assert results[1].content is None
        assert results[0].relevance_score > results[1].relevance_score
        assert seen[0].headers["X-Subscription-Token"] == "brave-key"
        assert seen[0].url.params["q"] == "solar costs"
        assert seen[0].url.params["count"] == "2"

    @pytest.mark.asyncio
    async def test_unauthorized_is_configuration_error(self):
        provider = BraveSearchProvider("bad", transport=brave_transport(status=401))

        with pytest.raises(ConfigurationError):
            await provider.search("q", max_results=1)

    @pytest.mark.asyncio
    async def test_server_error_is_provider_error(self):
        provider = BraveSearchProvider("key", transport=brave_transport(status=503))

        with pytest.raises(ProviderError):
            await provider.search("q", max_results=1)

    @pytest.mark.asyncio
    async def test_connection_check(self):
        ok = BraveSearchProvider("key", transport=brave_transport(payload={"web": {"results": []}}))
        broken = BraveSearchProvider("key", transport=brave_transport(status=500))

        assert await ok.test_connection() is True
        assert await broken.test_connection() is False


class TestRegistry:
    def test_builds_tavily(self):
        provider = create_search_provider(Settings(_env_file=None, search_provider="tavily", tavily_api_key="tvly"))
        assert provider.name == "tavily"

    def test_builds_brave(self):
        provider = create_search_provider(Settings(_env_file=None, search_provider="Brave", brave_api_key="b"))
        assert provider.name == "brave"

    def test_unknown_provider_raises(self):
        with pytest.raises(ConfigurationError, match="Unsupported SEARCH_PROVIDER"):
            create_search_provider(Settings(_env_file=None, search_provider="bing"))

    def test_missing_key_raises(self):
        with pytest.raises(ConfigurationError, match="BRAVE_API_KEY"):
            create_search_provider(Settings(_env_file=None, search_provider="brave", brave_api_key=""))
