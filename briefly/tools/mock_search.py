from __future__ import annotations

from typing import Any, Iterable

from briefly.models.research import SearchConfig, SearchResult
from briefly.tools.search_base import normalize_results

DEFAULT_MOCK_RESULTS: tuple[dict[str, Any], ...] = (
    {
        "url": "https://example.com/article1",
        "title": "Example Article 1",
        "snippet": "This is a mock search result for testing purposes.",
    },
    {
        "url": "https://test.org/article2",
        "title": "Test Article 2",
        "snippet": "Another mock search result with different content.",
    },
    {
        "url": "https://demo.net/article3",
        "title": "Demo Article 3",
        "snippet": "Third mock result to simulate multiple search results.",
    },
)


class MockSearchProvider:
    """Offline provider returning canned results; titles carry the query."""

    name = "mock"

    def __init__(self, results: Iterable[dict[str, Any]] | None = None):
        self._results = list(results if results is not None else DEFAULT_MOCK_RESULTS)
        self.calls: list[str] = []

    def set_results(self, results: Iterable[dict[str, Any]]) -> None:
        self._results = list(results)

    async def search(self, query: str, config: SearchConfig) -> list[SearchResult]:
        self.calls.append(query)
        raw = [
            {**item, "title": f"{item.get('title', '')} (for query: {query})"}
            for item in self._results
        ]
        return normalize_results(raw, provider=self.name, max_results=config.max_results)
