from __future__ import annotations

from typing import Any

from briefly.models.research import SearchConfig, SearchResult
from briefly.research_core.errors import MissingCredentialsError
from briefly.tools.search_base import HttpSearchProvider, normalize_results, recency_bucket

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_MAX_RESULTS = 20  # API rejects count above 20

FRESHNESS_MAP = {
    "day": "pd",
    "week": "pw",
    "month": "pm",
    "year": "py",
}


class BraveSearchProvider(HttpSearchProvider):
    name = "brave"
    min_interval_seconds = 1.0

    def __init__(self, api_key: str, **kwargs: Any):
        if not api_key:
            raise MissingCredentialsError("BRAVE_API_KEY is not configured")
        super().__init__(**kwargs)
        self.api_key = api_key

    async def search(self, query: str, config: SearchConfig) -> list[SearchResult]:
        """Execute a Brave web search and normalize results."""
        params: dict[str, Any] = {
            "q": query,
            "count": min(config.max_results, BRAVE_MAX_RESULTS),
            "search_lang": config.language,
        }
        bucket = recency_bucket(config.since)
        if bucket:
            params["freshness"] = FRESHNESS_MAP[bucket]

        response = await self._get(
            BRAVE_SEARCH_URL,
            params=params,
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": self.api_key,
            },
        )
        payload = response.json()

        raw_results = payload.get("web", {}).get("results", []) or []
        mapped: list[dict[str, Any]] = []
        for item in raw_results:
            snippets = item.get("extra_snippets", []) or []
            description = item.get("description", "") or ""
            mapped.append(
                {
                    "url": item.get("url", ""),
                    "title": item.get("title", ""),
                    "snippet": description.strip() or " ".join(snippets).strip(),
                }
            )
        return normalize_results(mapped, provider=self.name, max_results=config.max_results)
