from __future__ import annotations

from typing import Any
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup
from loguru import logger

from briefly.models.research import SearchConfig, SearchResult
from briefly.research_core.errors import SearchBlockedError
from briefly.tools.search_base import HttpSearchProvider, normalize_results, recency_bucket

DUCKDUCKGO_HTML_URL = "https://html.duckduckgo.com/html/"

FRESHNESS_MAP = {
    "day": "d",
    "week": "w",
    "month": "m",
    "year": "y",
}

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "DNT": "1",
}


def unwrap_redirect(href: str) -> str:
    """DuckDuckGo links look like ``//duckduckgo.com/l/?uddg=<encoded>&rut=...``."""
    href = (href or "").strip()
    if not href:
        return ""
    parsed = urlparse(href if not href.startswith("//") else f"https:{href}")
    if parsed.path.startswith("/l/"):
        target = parse_qs(parsed.query).get("uddg", [""])[0]
        return target
    if href.startswith("http"):
        return href
    return ""


def parse_results_html(html: str) -> list[dict[str, Any]]:
    soup = BeautifulSoup(html, "html.parser")
    parsed: list[dict[str, Any]] = []
    for block in soup.select("div.result"):
        link = block.select_one("a.result__a")
        if link is None:
            continue
        url = unwrap_redirect(str(link.get("href", "")))
        if not url:
            continue
        snippet_node = block.select_one(".result__snippet")
        parsed.append(
            {
                "url": url,
                "title": link.get_text(" ", strip=True),
                "snippet": snippet_node.get_text(" ", strip=True) if snippet_node else "",
            }
        )
    return parsed


def _looks_blocked(html: str) -> bool:
    """A challenge page carries the anomaly modal or a challenge form, never result blocks."""
    soup = BeautifulSoup(html, "html.parser")
    if soup.select_one("div.result") is not None:
        return False
    markers = "#anomaly-modal, .anomaly-modal, form#challenge-form, form[action*=\"anomaly\"]"
    return soup.select_one(markers) is not None


class DuckDuckGoSearchProvider(HttpSearchProvider):
    """Keyless web search over DuckDuckGo's HTML endpoint."""

    name = "duckduckgo"
    min_interval_seconds = 2.0

    async def search(self, query: str, config: SearchConfig) -> list[SearchResult]:
        params: dict[str, Any] = {
            "q": query,
            "b": "0",
            "kl": "us-en" if config.language == "en" else f"wt-{config.language}",
        }
        bucket = recency_bucket(config.since)
        if bucket:
            params["df"] = FRESHNESS_MAP[bucket]

        response = await self._get(DUCKDUCKGO_HTML_URL, params=params, headers=BROWSER_HEADERS)
        html = response.text
        raw = parse_results_html(html)
        if not raw and _looks_blocked(html):
            raise SearchBlockedError("DuckDuckGo search blocked by CAPTCHA")

        results = normalize_results(
            raw,
            provider=self.name,
            max_results=config.max_results,
        )
        logger.info(f"DuckDuckGo search completed: query={query!r} results={len(results)}")
        return results
