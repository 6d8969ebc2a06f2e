from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

from briefly.config import Settings, settings
from briefly.models.research import SearchBackend, SearchConfig, SearchResult
from briefly.research_core.errors import UnsupportedProviderError
from briefly.tools.brave_search import BraveSearchProvider
from briefly.tools.duckduckgo_search import DuckDuckGoSearchProvider
from briefly.tools.google_search import GoogleSearchProvider
from briefly.tools.mock_search import MockSearchProvider
from briefly.tools.serpapi_search import SerpApiSearchProvider
from briefly.tools.tavily_search import TavilySearchProvider


@runtime_checkable
class SearchProvider(Protocol):
    name: str

    async def search(self, query: str, config: SearchConfig) -> list[SearchResult]: ...


ProviderConstructor = Callable[[Settings], SearchProvider]

_CONSTRUCTORS: dict[SearchBackend, ProviderConstructor] = {
    SearchBackend.DUCKDUCKGO: lambda s: DuckDuckGoSearchProvider(
        timeout_seconds=s.search_timeout_seconds,
    ),
    SearchBackend.SERPAPI: lambda s: SerpApiSearchProvider(
        s.serpapi_api_key,
        timeout_seconds=s.search_timeout_seconds,
    ),
    SearchBackend.GOOGLE: lambda s: GoogleSearchProvider(
        s.google_api_key,
        s.google_search_id,
        timeout_seconds=s.search_timeout_seconds,
    ),
    SearchBackend.BRAVE: lambda s: BraveSearchProvider(
        s.brave_api_key,
        timeout_seconds=s.search_timeout_seconds,
    ),
    SearchBackend.TAVILY: lambda s: TavilySearchProvider(s.tavily_api_key),
    SearchBackend.MOCK: lambda _s: MockSearchProvider(),
}


def parse_backend(value: str | SearchBackend) -> SearchBackend:
    if isinstance(value, SearchBackend):
        return value
    key = (value or "").lower().strip()
    try:
        return SearchBackend(key)
    except ValueError:
        raise UnsupportedProviderError(f"Unsupported search provider: {value!r}") from None


def available_backends() -> list[SearchBackend]:
    return list(_CONSTRUCTORS)


def create_search_provider(
    backend: str | SearchBackend,
    app_settings: Settings | None = None,
) -> SearchProvider:
    """Build the search backend for ``backend``; credentials come from settings."""
    kind = parse_backend(backend)
    return _CONSTRUCTORS[kind](app_settings or settings)
