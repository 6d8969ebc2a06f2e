from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SearchBackend(str, Enum):
    DUCKDUCKGO = "duckduckgo"
    SERPAPI = "serpapi"
    GOOGLE = "google"
    BRAVE = "brave"
    TAVILY = "tavily"
    MOCK = "mock"


class SourceType(str, Enum):
    PAPER = "paper"
    REPO = "repo"
    NEWS = "news"
    BLOG = "blog"
    WEB = "web"


class OutputFormat(str, Enum):
    MARKDOWN = "markdown"
    JSON = "json"


# Checked in order; first substring hit wins.
SOURCE_TYPE_PATTERNS: tuple[tuple[SourceType, tuple[str, ...]], ...] = (
    (SourceType.PAPER, ("arxiv.org", "doi.org", "pubmed.ncbi.nlm.nih.gov")),
    (SourceType.REPO, ("github.com", "gitlab.com", "bitbucket.org")),
    (SourceType.NEWS, ("news", "cnn", "bbc", "reuters", "apnews", "nytimes")),
    (SourceType.BLOG, ("blog", "medium.com", "substack.com")),
)


def infer_source_type(domain: str) -> SourceType:
    """Best-effort source category from the domain name."""
    lowered = (domain or "").lower()
    for source_type, patterns in SOURCE_TYPE_PATTERNS:
        if any(pattern in lowered for pattern in patterns):
            return source_type
    return SourceType.WEB


class ResearchConfig(BaseModel):
    """Parameters for a single research run."""

    max_sources: int = Field(default=20, ge=1)
    since: Optional[timedelta] = None
    model: str = ""
    search_provider: SearchBackend = SearchBackend.DUCKDUCKGO
    use_javascript: bool = False
    refresh_cache: bool = False
    output_format: OutputFormat = OutputFormat.MARKDOWN

    model_config = {"frozen": True}


class SearchConfig(BaseModel):
    max_results: int = Field(default=10, ge=1)
    since: Optional[timedelta] = None
    language: str = "en"

    model_config = {"frozen": True}


class SearchResult(BaseModel):
    """Normalized search hit, discarded once fetched into a Source."""

    url: str
    title: str = ""
    snippet: str = ""
    domain: str = ""
    provider: str = ""
    rank: int = 0
    published_at: Optional[datetime] = None


class Article(BaseModel):
    """Cleaned page content as returned by the content fetcher and stored in the cache."""

    id: str
    url: str
    title: str = ""
    cleaned_text: str = ""
    fetched_at: datetime = Field(default_factory=utc_now)
    status_code: int = 200
    from_cache: bool = False


class Source(BaseModel):
    id: str
    url: str
    title: str = ""
    domain: str = ""
    content: str = ""
    retrieved_at: datetime = Field(default_factory=utc_now)
    relevance: float = Field(default=0.0, ge=0.0, le=1.0)
    type: SourceType = SourceType.WEB

    model_config = {"frozen": True}

    def with_relevance(self, score: float) -> "Source":
        return self.model_copy(update={"relevance": min(max(float(score), 0.0), 1.0)})


class DetailedFinding(BaseModel):
    topic: str
    content: str
    citations: list[int] = Field(default_factory=list)  # zero-based indices into ResearchBrief.sources
    confidence: float = 0.8


class ResearchBrief(BaseModel):
    id: str
    topic: str
    executive_summary: str = ""
    detailed_findings: list[DetailedFinding] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)
    sources: list[Source] = Field(default_factory=list)
    sub_queries: list[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utc_now)
    config: Optional[ResearchConfig] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def invalid_citations(self) -> list[tuple[int, int]]:
        """Return (finding index, citation) pairs that do not resolve to a source."""
        limit = len(self.sources)
        bad: list[tuple[int, int]] = []
        for finding_index, finding in enumerate(self.detailed_findings):
            for citation in finding.citations:
                if citation < 0 or citation >= limit:
                    bad.append((finding_index, citation))
        return bad
