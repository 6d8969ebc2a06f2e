from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx
from loguru import logger

from briefly.research_core.errors import FetchError
from briefly.tools.web_utils import extract_domain

# Hosts that need longer waits or full network idle before content exists.
DOMAIN_POLICY_OVERRIDES = {
    "x.com": {"wait_until": "networkidle", "timeout_seconds": 25.0},
    "twitter.com": {"wait_until": "networkidle", "timeout_seconds": 25.0},
    "medium.com": {"wait_until": "domcontentloaded", "timeout_seconds": 25.0},
}


@dataclass(frozen=True, slots=True)
class DomainPolicy:
    domain: str
    timeout_seconds: float
    wait_until: str
    max_attempts: int


@dataclass(slots=True)
class FetchedPage:
    url: str
    final_url: str
    status_code: int
    html: str
    attempts: int = 1
    timing_ms: int = 0
    rendered: bool = False


RawFetch = Callable[[str, DomainPolicy, bool], Awaitable[FetchedPage]]


def resolve_domain_policy(
    url: str,
    *,
    timeout_seconds: float = 20.0,
    retry_max: int = 1,
) -> DomainPolicy:
    domain = extract_domain(url)
    wait_until = "domcontentloaded"
    override = DOMAIN_POLICY_OVERRIDES.get(domain)
    if override:
        timeout_seconds = float(override.get("timeout_seconds", timeout_seconds))
        wait_until = str(override.get("wait_until", wait_until))
    return DomainPolicy(
        domain=domain,
        timeout_seconds=max(timeout_seconds, 1.0),
        wait_until=wait_until,
        max_attempts=max(int(retry_max), 0) + 1,
    )


class PageFetcher:
    """Fetches raw page markup over HTTP, or through headless Chromium for JS pages."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 20.0,
        retry_max: int = 1,
        user_agent: str = "BrieflyResearch/1.0",
        raw_fetch: RawFetch | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.retry_max = max(int(retry_max), 0)
        self.user_agent = user_agent
        self._raw_fetch = raw_fetch
        self._http_client = http_client

    async def fetch(self, url: str, *, use_js: bool = False) -> FetchedPage:
        policy = resolve_domain_policy(
            url,
            timeout_seconds=self.timeout_seconds,
            retry_max=self.retry_max,
        )
        raw_fetch = self._raw_fetch or self._fetch_default
        started = time.monotonic()
        last_error: Exception | None = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                page = await raw_fetch(url, policy, use_js)
                page.attempts = attempt
                page.timing_ms = int((time.monotonic() - started) * 1000)
                return page
            except FetchError:
                # Not retryable (bad status / unsupported content).
                raise
            except Exception as exc:
                last_error = exc
                logger.debug(f"Fetch attempt {attempt} failed for {url}: {exc}")
                if attempt < policy.max_attempts:
                    await asyncio.sleep(min(0.25 * attempt, 1.0))

        raise FetchError(f"failed to fetch {url}: {last_error}") from last_error

    async def _fetch_default(self, url: str, policy: DomainPolicy, use_js: bool) -> FetchedPage:
        if use_js:
            return await self._fetch_with_playwright(url, policy)
        return await self._fetch_with_httpx(url, policy)

    async def _fetch_with_httpx(self, url: str, policy: DomainPolicy) -> FetchedPage:
        headers = {"User-Agent": self.user_agent}
        if self._http_client is not None:
            response = await self._http_client.get(url, headers=headers, timeout=policy.timeout_seconds)
        else:
            async with httpx.AsyncClient(
                timeout=policy.timeout_seconds,
                follow_redirects=True,
            ) as client:
                response = await client.get(url, headers=headers)

        if response.status_code in (401, 403, 404, 410, 451):
            raise FetchError(f"failed to fetch {url}: status code {response.status_code}")
        response.raise_for_status()

        content_type = response.headers.get("content-type", "")
        if content_type and "html" not in content_type and "text" not in content_type:
            raise FetchError(f"unsupported content type for {url}: {content_type}")

        return FetchedPage(
            url=url,
            final_url=str(response.url),
            status_code=int(response.status_code),
            html=response.text,
        )

    async def _fetch_with_playwright(self, url: str, policy: DomainPolicy) -> FetchedPage:
        try:
            from playwright.async_api import async_playwright
        except Exception as exc:  # pragma: no cover - depends on optional package
            raise FetchError("JavaScript rendering requested but Playwright is not installed") from exc

        async with async_playwright() as playwright:  # pragma: no cover - integration behavior
            browser = await playwright.chromium.launch(headless=True)
            try:
                context = await browser.new_context(user_agent=self.user_agent)
                page = await context.new_page()
                response = await page.goto(
                    url,
                    wait_until=policy.wait_until,
                    timeout=int(policy.timeout_seconds * 1000),
                )
                html = await page.content()
                final_url = page.url
                status_code = int(response.status) if response is not None else 200
                await context.close()
            finally:
                await browser.close()

        return FetchedPage(
            url=url,
            final_url=final_url,
            status_code=status_code,
            html=html,
            rendered=True,
        )
