from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from typing import Protocol

from loguru import logger

from briefly.models.research import Article, utc_now
from briefly.research_core.errors import FetchError
from briefly.tools.content_cache import ContentCache
from briefly.tools.content_extractor import extract_main_content
from briefly.tools.page_fetcher import PageFetcher

DEFAULT_FRESHNESS = timedelta(hours=24)
UNTITLED = "Untitled Article"


class ContentFetcher(Protocol):
    async def fetch_content(self, url: str, use_js: bool, *, refresh: bool = False) -> Article: ...


def clean_text_for_research(text: str, *, min_line_chars: int = 20) -> str:
    """Drop short lines (menus, bylines, share buttons) and keep substantive ones."""
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if len(line) > min_line_chars)


def title_from_content(content: str) -> str:
    for line in content.splitlines():
        line = line.strip()
        if 10 < len(line) < 200:
            return line
    return UNTITLED


class ResearchContentFetcher:
    """Resolves a URL to cleaned article text, consulting the content cache first."""

    def __init__(
        self,
        cache: ContentCache,
        page_fetcher: PageFetcher,
        *,
        freshness: timedelta = DEFAULT_FRESHNESS,
        max_chars: int = 120000,
        min_line_chars: int = 20,
        extract_in_thread: bool = True,
    ):
        self.cache = cache
        self.page_fetcher = page_fetcher
        self.freshness = freshness
        self.max_chars = max_chars
        self.min_line_chars = min_line_chars
        self.extract_in_thread = extract_in_thread

    async def fetch_content(self, url: str, use_js: bool, *, refresh: bool = False) -> Article:
        if not refresh:
            cached = self.cache.get_fresh(url, self.freshness)
            if cached is not None:
                logger.debug(f"Content cache hit: {url}")
                return cached

        page = await self.page_fetcher.fetch(url, use_js=use_js)

        if self.extract_in_thread:
            extracted = await asyncio.to_thread(
                extract_main_content, url, page.html, max_chars=self.max_chars
            )
        else:
            extracted = extract_main_content(url, page.html, max_chars=self.max_chars)

        cleaned = clean_text_for_research(extracted.text, min_line_chars=self.min_line_chars)
        if not cleaned:
            raise FetchError(f"no usable content extracted from {url}")

        article = Article(
            id=str(uuid.uuid4()),
            url=url,
            title=extracted.title or title_from_content(cleaned),
            cleaned_text=cleaned,
            fetched_at=utc_now(),
            status_code=page.status_code,
        )

        try:
            self.cache.upsert(article)
        except Exception as exc:
            logger.warning(f"Failed to cache article {url}: {exc}")

        return article
