from __future__ import annotations

import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

BOILERPLATE_SELECTORS = (
    "script, style, nav, footer, header, aside, form, iframe, noscript, "
    ".sidebar, #sidebar, .ad, .advertisement, .popup, .modal, .cookie-banner"
)

MAIN_CONTENT_SELECTORS = (
    "article",
    "main",
    ".main-content",
    ".entry-content",
    ".post-content",
    ".post-body",
    ".article-body",
    "[role='main']",
    ".content",
    "#content",
)

NAV_MARKERS = (
    "main menu",
    "navigation",
    "skip to",
    "cookie",
    "subscribe",
    "sign in",
)


@dataclass
class ExtractedContent:
    url: str
    title: str
    text: str
    method: str
    fallback_used: bool
    raw_length: int
    extracted_length: int


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def extract_title(raw_html: str) -> str:
    """Title from ``<title>``, then ``og:title``, then the first ``<h1>``."""
    soup = BeautifulSoup(raw_html, "html.parser")
    if soup.title and soup.title.string and soup.title.string.strip():
        return _normalize_text(soup.title.string)
    og_title = soup.find("meta", attrs={"property": "og:title"})
    if og_title and str(og_title.get("content", "")).strip():
        return _normalize_text(str(og_title["content"]))
    h1 = soup.find("h1")
    if h1:
        return _normalize_text(h1.get_text(" "))
    return ""


def _looks_low_quality(text: str) -> bool:
    lowered = text.lower()
    marker_hits = sum(lowered.count(marker) for marker in NAV_MARKERS)
    if len(text) < 200:
        return True
    return marker_hits >= 4 and len(text) < 2500


def _extract_with_trafilatura(raw_html: str, url: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(raw_html, url=url, output_format="txt")
    if not isinstance(extracted, str):
        return ""
    return _normalize_text(extracted)


def _extract_with_soup(raw_html: str) -> str:
    soup = BeautifulSoup(raw_html, "html.parser")
    for node in soup.select(BOILERPLATE_SELECTORS):
        node.decompose()

    for selector in MAIN_CONTENT_SELECTORS:
        containers = soup.select(selector)
        text = "\n".join(container.get_text("\n") for container in containers)
        if text.strip():
            return _normalize_text(text)

    body = soup.body or soup
    return _normalize_text(body.get_text("\n"))


def extract_main_content(
    url: str,
    raw_content: str,
    *,
    max_chars: int = 120000,
) -> ExtractedContent:
    """Extract main article text from a fetched page, stripping boilerplate."""
    title = extract_title(raw_content)

    # Plain text or markdown bodies still go through the HTML pipeline.
    seems_html = "<html" in raw_content.lower() or "<body" in raw_content.lower()
    primary_input = raw_content if seems_html else f"<html><body>{raw_content}</body></html>"

    primary_text = _extract_with_trafilatura(primary_input, url)
    if primary_text and not _looks_low_quality(primary_text):
        clipped = _truncate(primary_text, max_chars)
        return ExtractedContent(
            url=url,
            title=title,
            text=clipped,
            method="trafilatura",
            fallback_used=False,
            raw_length=len(raw_content),
            extracted_length=len(clipped),
        )

    soup_text = _extract_with_soup(primary_input)
    best = soup_text if len(soup_text) >= len(primary_text) else primary_text
    clipped = _truncate(best, max_chars)
    return ExtractedContent(
        url=url,
        title=title,
        text=clipped,
        method="soup" if best is soup_text else "trafilatura",
        fallback_used=True,
        raw_length=len(raw_content),
        extracted_length=len(clipped),
    )
