from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

import httpx

from briefly.models.research import SearchConfig, SearchResult
from briefly.tools import web_utils


def recency_bucket(since: timedelta | None) -> str | None:
    """Map a recency window to the coarse buckets search engines understand."""
    if since is None or since <= timedelta(0):
        return None
    days = since.total_seconds() / 86400
    if days <= 1:
        return "day"
    if days <= 7:
        return "week"
    if days <= 30:
        return "month"
    if days <= 365:
        return "year"
    return None


def since_date(since: timedelta) -> datetime:
    """Earliest publication time a result may have for the recency window."""
    return datetime.now(timezone.utc) - since


def normalize_results(
    raw: Iterable[dict[str, Any]],
    *,
    provider: str,
    max_results: int,
) -> list[SearchResult]:
    """Turn backend-specific dicts (url/title/snippet) into SearchResult records.

    Entries without a usable http(s) URL are dropped; rank is the position in
    the normalized list, starting at 1.
    """
    results: list[SearchResult] = []
    for item in raw:
        url = str(item.get("url") or "").strip()
        if not web_utils.is_valid_url(url):
            continue
        results.append(
            SearchResult(
                url=url,
                title=web_utils.clean_text(str(item.get("title") or "")),
                snippet=web_utils.clean_text(str(item.get("snippet") or "")),
                domain=web_utils.extract_domain(url),
                provider=provider,
                rank=len(results) + 1,
                published_at=item.get("published_at"),
            )
        )
        if len(results) >= max_results:
            break
    return results


class HttpSearchProvider(ABC):
    """Shared plumbing for HTTP search backends: rate limit and client lifecycle."""

    name = "http"
    min_interval_seconds = 1.0

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client
        self._rate_lock = asyncio.Lock()
        self._last_call = 0.0

    async def _throttle(self) -> None:
        async with self._rate_lock:
            elapsed = time.monotonic() - self._last_call
            wait = self.min_interval_seconds - elapsed
            if self._last_call and wait > 0:
                await asyncio.sleep(wait)
            self._last_call = time.monotonic()

    async def _get(self, url: str, **kwargs: Any) -> httpx.Response:
        await self._throttle()
        if self._http_client is not None:
            response = await self._http_client.get(url, **kwargs)
        else:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                follow_redirects=True,
            ) as client:
                response = await client.get(url, **kwargs)
        response.raise_for_status()
        return response

    @abstractmethod
    async def search(self, query: str, config: SearchConfig) -> list[SearchResult]:
        """Run one query against the backend."""
