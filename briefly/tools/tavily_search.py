from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from briefly.models.research import SearchConfig, SearchResult
from briefly.research_core.errors import MissingCredentialsError
from briefly.tools.search_base import normalize_results, recency_bucket

TAVILY_MAX_RESULTS = 20


class TavilySearchProvider:
    name = "tavily"

    def __init__(self, api_key: str, *, search_depth: str = "advanced", client: Any | None = None):
        if not api_key and client is None:
            raise MissingCredentialsError("TAVILY_API_KEY is not configured")
        self.search_depth = search_depth
        self._client = client or AsyncTavilyClient(api_key=api_key)

    async def search(self, query: str, config: SearchConfig) -> list[SearchResult]:
        """Execute a Tavily web search and return normalized results."""
        kwargs: dict[str, Any] = {
            "query": query,
            "search_depth": self.search_depth,
            "max_results": min(config.max_results, TAVILY_MAX_RESULTS),
            "topic": "general",
            "include_raw_content": False,
        }
        bucket = recency_bucket(config.since)
        if bucket:
            kwargs["time_range"] = bucket

        response = await self._client.search(**kwargs)
        # Tavily already orders by its own relevance score.
        return normalize_results(
            (
                {
                    "url": r.get("url", ""),
                    "title": r.get("title", ""),
                    "snippet": r.get("content", ""),
                }
                for r in response.get("results", [])
            ),
            provider=self.name,
            max_results=config.max_results,
        )
