from __future__ import annotations

from datetime import timedelta
from typing import Any

from loguru import logger

from briefly.models.research import SearchConfig, SearchResult
from briefly.research_core.errors import MissingCredentialsError, SearchError
from briefly.tools.search_base import (
    HttpSearchProvider,
    normalize_results,
    since_date,
)

GOOGLE_CSE_URL = "https://www.googleapis.com/customsearch/v1"
GOOGLE_MAX_RESULTS = 10  # CSE caps num at 10 per request


class GoogleSearchProvider(HttpSearchProvider):
    """Google Custom Search JSON API."""

    name = "google"
    min_interval_seconds = 0.1

    def __init__(self, api_key: str, search_id: str, **kwargs: Any):
        if not api_key:
            raise MissingCredentialsError("GOOGLE_API_KEY is not configured")
        if not search_id:
            raise MissingCredentialsError("GOOGLE_SEARCH_ID is not configured")
        super().__init__(**kwargs)
        self.api_key = api_key
        self.search_id = search_id

    async def search(self, query: str, config: SearchConfig) -> list[SearchResult]:
        params: dict[str, Any] = {
            "key": self.api_key,
            "cx": self.search_id,
            "q": query,
            "num": min(config.max_results, GOOGLE_MAX_RESULTS),
            "lr": f"lang_{config.language}",
        }
        if config.since is not None and config.since > timedelta(0):
            params["sort"] = f"date:r:{since_date(config.since):%Y%m%d}:"

        response = await self._get(GOOGLE_CSE_URL, params=params)
        payload = response.json()
        error = payload.get("error") if isinstance(payload, dict) else None
        if error:
            raise SearchError(f"Google CSE error ({error.get('code')}): {error.get('message')}")

        items = payload.get("items", []) or []
        results = normalize_results(
            (
                {
                    "url": item.get("link", ""),
                    "title": item.get("title", ""),
                    "snippet": item.get("snippet", ""),
                }
                for item in items
            ),
            provider=self.name,
            max_results=config.max_results,
        )
        logger.info(f"Google Custom Search completed: query={query!r} results={len(results)}")
        return results
