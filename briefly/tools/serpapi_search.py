from __future__ import annotations

from typing import Any

from loguru import logger

from briefly.models.research import SearchConfig, SearchResult
from briefly.research_core.errors import MissingCredentialsError, SearchError
from briefly.tools.search_base import HttpSearchProvider, normalize_results, recency_bucket

SERPAPI_URL = "https://serpapi.com/search"

FRESHNESS_MAP = {
    "day": "qdr:d",
    "week": "qdr:w",
    "month": "qdr:m",
    "year": "qdr:y",
}


class SerpApiSearchProvider(HttpSearchProvider):
    """Google results through SerpAPI (paid)."""

    name = "serpapi"
    min_interval_seconds = 1.0

    def __init__(self, api_key: str, **kwargs: Any):
        if not api_key:
            raise MissingCredentialsError("SERPAPI_API_KEY is not configured")
        super().__init__(**kwargs)
        self.api_key = api_key

    async def search(self, query: str, config: SearchConfig) -> list[SearchResult]:
        params: dict[str, Any] = {
            "q": query,
            "engine": "google",
            "api_key": self.api_key,
            "num": config.max_results,
            "hl": config.language,
        }
        bucket = recency_bucket(config.since)
        if bucket:
            params["tbs"] = FRESHNESS_MAP[bucket]

        response = await self._get(SERPAPI_URL, params=params)
        payload = response.json()
        if not isinstance(payload, dict):
            raise SearchError("SerpAPI returned a non-object payload")
        if payload.get("error"):
            raise SearchError(f"SerpAPI error: {payload['error']}")

        organic = payload.get("organic_results", []) or []
        ordered = sorted(organic, key=lambda item: int(item.get("position") or 0))
        results = normalize_results(
            (
                {
                    "url": item.get("link", ""),
                    "title": item.get("title", ""),
                    "snippet": item.get("snippet", ""),
                }
                for item in ordered
            ),
            provider=self.name,
            max_results=config.max_results,
        )
        logger.info(f"SerpAPI search completed: query={query!r} results={len(results)}")
        return results
