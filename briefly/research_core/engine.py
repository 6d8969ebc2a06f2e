"""Research orchestration: decompose, search, fetch, rank, synthesize."""
from __future__ import annotations

import asyncio
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from loguru import logger

from briefly.config import Settings, settings
from briefly.llm_client import TextGenerator, get_generator
from briefly.models.research import (
    Article,
    ResearchBrief,
    ResearchConfig,
    SearchConfig,
    SearchResult,
    Source,
    infer_source_type,
)
from briefly.research_core.errors import (
    CitationError,
    NoSourcesError,
    PlanningError,
    SearchExhaustedError,
    SynthesisError,
)
from briefly.research_core.fetcher import UNTITLED, ContentFetcher, ResearchContentFetcher
from briefly.research_core.planner import LLMPlanner, Planner
from briefly.research_core.ranker import Bm25Ranker, EmbeddingRanker, Ranker
from briefly.research_core.synthesizer import LLMSynthesizer, Synthesizer
from briefly.services.embeddings_local import LocalEmbeddingService
from briefly.services.logger import log_research_step
from briefly.tools.content_cache import ContentCache
from briefly.tools.page_fetcher import PageFetcher
from briefly.tools.search_provider import SearchProvider, create_search_provider
from briefly.tools.web_utils import canonical_url, extract_domain


@dataclass(slots=True)
class SubQueryOutcome:
    index: int
    query: str
    results: list[SearchResult] = field(default_factory=list)
    fetched: list[Article | Exception] = field(default_factory=list)
    error: Exception | None = None


def per_query_budget(max_sources: int, sub_query_count: int) -> int:
    return max(1, max_sources // max(sub_query_count, 1))


class ResearchEngine:
    """Runs one research pipeline end to end.

    Search and fetch run in separate bounded pools; ranking waits for every
    fetch to settle, so the final order never depends on completion timing.
    """

    def __init__(
        self,
        planner: Planner,
        searcher: SearchProvider,
        fetcher: ContentFetcher,
        ranker: Ranker,
        synthesizer: Synthesizer,
        *,
        search_concurrency: int = 4,
        fetch_concurrency: int = 8,
        language: str = "en",
    ):
        self.planner = planner
        self.searcher = searcher
        self.fetcher = fetcher
        self.ranker = ranker
        self.synthesizer = synthesizer
        self.search_concurrency = max(int(search_concurrency), 1)
        self.fetch_concurrency = max(int(fetch_concurrency), 1)
        self.language = language

    async def research(
        self,
        topic: str,
        config: ResearchConfig,
        *,
        sub_queries: Optional[list[str]] = None,
    ) -> ResearchBrief:
        """Produce a brief for ``topic``.

        ``sub_queries`` skips decomposition; callers use it to retry explicitly
        after a ``PlanningError``.
        """
        if not topic or not topic.strip():
            raise ValueError("topic must not be empty")
        run_id = str(uuid.uuid4())
        started = time.monotonic()

        if sub_queries is None:
            try:
                sub_queries = await self.planner.decompose_topic(topic)
            except PlanningError:
                log_research_step(run_id, "decompose", "failed")
                raise
            except Exception as exc:
                log_research_step(run_id, "decompose", "failed")
                raise PlanningError(f"failed to decompose topic: {exc}") from exc
        sub_queries = [query for query in sub_queries if query.strip()]
        if not sub_queries:
            raise PlanningError("failed to decompose topic: no sub-queries")
        log_research_step(run_id, "decompose", "completed", {"sub_queries": sub_queries})

        search_config = SearchConfig(
            max_results=per_query_budget(config.max_sources, len(sub_queries)),
            since=config.since,
            language=self.language,
        )
        outcomes = await self._gather_sources(sub_queries, search_config, config)

        failed_searches = sum(1 for outcome in outcomes if outcome.error is not None)
        if failed_searches == len(sub_queries):
            log_research_step(run_id, "search", "failed", {"failed_searches": failed_searches})
            first_error = outcomes[0].error
            raise SearchExhaustedError(
                f"all {failed_searches} searches failed: {first_error}"
            ) from first_error
        log_research_step(
            run_id,
            "search",
            "completed",
            {"failed_searches": failed_searches, "results": sum(len(o.results) for o in outcomes)},
        )

        candidates, failed_fetches, cache_hits = self._merge(outcomes)
        if not candidates:
            log_research_step(run_id, "fetch", "failed", {"failed_fetches": failed_fetches})
            raise NoSourcesError("no sources could be fetched for any sub-query")
        log_research_step(
            run_id,
            "fetch",
            "completed",
            {"sources": len(candidates), "failed_fetches": failed_fetches, "cache_hits": cache_hits},
        )

        metadata: dict[str, Any] = {
            "run_id": run_id,
            "sub_query_count": len(sub_queries),
            "failed_searches": failed_searches,
            "failed_fetches": failed_fetches,
            "candidate_count": len(candidates),
            "cache_hits": cache_hits,
            "search_provider": getattr(self.searcher, "name", type(self.searcher).__name__),
        }

        try:
            ranked = await self.ranker.rank_sources(candidates, topic)
        except Exception as exc:
            logger.warning(f"Ranking failed, keeping discovery order: {exc}")
            ranked = [source.with_relevance(0.0) for source in candidates]
            metadata["degraded"] = ["ranking"]
        sources = ranked[: config.max_sources]
        log_research_step(run_id, "rank", "completed", {"kept": len(sources)})

        try:
            drafted = await self.synthesizer.synthesize_brief(topic, sources, sub_queries)
        except SynthesisError:
            log_research_step(run_id, "synthesize", "failed")
            raise
        except Exception as exc:
            log_research_step(run_id, "synthesize", "failed")
            raise SynthesisError(f"failed to synthesize brief: {exc}") from exc

        metadata["duration_ms"] = int((time.monotonic() - started) * 1000)
        brief = drafted.model_copy(
            update={
                "topic": topic,
                "sources": sources,
                "sub_queries": list(sub_queries),
                "config": config,
                "metadata": {**drafted.metadata, **metadata},
            }
        )

        invalid = brief.invalid_citations()
        if invalid:
            log_research_step(run_id, "synthesize", "failed", {"invalid_citations": invalid})
            raise CitationError(
                f"brief cites {len(invalid)} source indices outside 0..{len(sources) - 1}",
                invalid,
            )

        log_research_step(
            run_id,
            "synthesize",
            "completed",
            {"findings": len(brief.detailed_findings), "sources": len(brief.sources)},
        )
        return brief

    async def _gather_sources(
        self,
        sub_queries: list[str],
        search_config: SearchConfig,
        config: ResearchConfig,
    ) -> list[SubQueryOutcome]:
        search_semaphore = asyncio.Semaphore(self.search_concurrency)
        fetch_semaphore = asyncio.Semaphore(self.fetch_concurrency)
        in_flight: dict[str, asyncio.Task[Article]] = {}

        async def fetch_once(url: str) -> Article:
            async with fetch_semaphore:
                return await self.fetcher.fetch_content(
                    url, config.use_javascript, refresh=config.refresh_cache
                )

        async def fetch_shared(url: str) -> Article | Exception:
            # One fetch per canonical URL per run; duplicates await the same task.
            key = canonical_url(url)
            task = in_flight.get(key)
            if task is None:
                task = asyncio.create_task(fetch_once(url))
                in_flight[key] = task
            try:
                return await task
            except Exception as exc:
                return exc

        async def run_sub_query(index: int, query: str) -> SubQueryOutcome:
            outcome = SubQueryOutcome(index=index, query=query)
            try:
                async with search_semaphore:
                    outcome.results = await self.searcher.search(query, search_config)
            except Exception as exc:
                logger.warning(f"Search failed for sub-query {query!r}: {exc}")
                outcome.error = exc
                return outcome
            outcome.fetched = list(
                await asyncio.gather(*(fetch_shared(result.url) for result in outcome.results))
            )
            return outcome

        try:
            return list(
                await asyncio.gather(
                    *(run_sub_query(index, query) for index, query in enumerate(sub_queries))
                )
            )
        finally:
            for task in in_flight.values():
                if not task.done():
                    task.cancel()

    @staticmethod
    def _merge(outcomes: list[SubQueryOutcome]) -> tuple[list[Source], int, int]:
        """Flatten outcomes in discovery order.

        A source is a duplicate when its canonical URL or its domain plus
        simplified title was already seen; the first occurrence wins.
        """
        sources: list[Source] = []
        seen_urls: set[str] = set()
        seen_titles: set[str] = set()
        seen_ids: set[str] = set()
        failed_fetches = 0
        cache_hits = 0

        for outcome in outcomes:
            for result, fetched in zip(outcome.results, outcome.fetched):
                key = canonical_url(result.url)
                if key in seen_urls:
                    continue
                seen_urls.add(key)
                if isinstance(fetched, Exception):
                    failed_fetches += 1
                    logger.warning(f"Fetch failed for {result.url}: {fetched}")
                    continue
                if fetched.from_cache:
                    cache_hits += 1
                source = source_from_article(result, fetched)
                title_key = title_dedup_key(source)
                if title_key is not None:
                    if title_key in seen_titles:
                        logger.debug(f"Dropping {result.url}: same page as an earlier source")
                        continue
                    seen_titles.add(title_key)
                if source.id in seen_ids:
                    source = source.model_copy(update={"id": str(uuid.uuid4())})
                seen_ids.add(source.id)
                sources.append(source)
        return sources, failed_fetches, cache_hits


def title_dedup_key(source: Source) -> str | None:
    """``domain|title`` with case, spaces, dashes and underscores folded away."""
    if not source.title or source.title == UNTITLED:
        return None
    simplified = re.sub(r"[\s_-]+", "", source.title.lower())[:50]
    if not simplified:
        return None
    return f"{source.domain.lower()}|{simplified}"


def source_from_article(result: SearchResult, article: Article) -> Source:
    title = article.title if article.title and article.title != UNTITLED else result.title
    domain = result.domain or extract_domain(result.url)
    return Source(
        id=article.id,
        url=result.url,
        title=title or UNTITLED,
        domain=domain,
        content=article.cleaned_text,
        retrieved_at=article.fetched_at,
        type=infer_source_type(domain),
    )


def build_ranker(app_settings: Settings) -> Ranker:
    backend = (app_settings.ranker_backend or "embedding").lower().strip()
    if backend == "bm25":
        return Bm25Ranker()
    if backend != "embedding":
        raise ValueError(f"Unsupported ranker backend: {app_settings.ranker_backend!r}")
    return EmbeddingRanker(
        LocalEmbeddingService(
            model_name=app_settings.local_embed_model,
            batch_size=app_settings.local_embed_batch_size,
        ),
        max_text_chars=app_settings.ranker_max_text_chars,
    )


def build_engine(
    app_settings: Settings | None = None,
    config: ResearchConfig | None = None,
    *,
    generator: TextGenerator | None = None,
    searcher: SearchProvider | None = None,
) -> ResearchEngine:
    """Wire the default components from settings for one invocation."""
    app_settings = app_settings or settings
    config = config or ResearchConfig()

    synth_generator = generator or get_generator(config.model or None)
    planner_generator = generator
    if planner_generator is None:
        planner_generator = (
            get_generator(app_settings.planner_model)
            if app_settings.planner_model
            else synth_generator
        )

    cache = ContentCache(app_settings.content_cache_dir, enabled=app_settings.content_cache_enabled)
    page_fetcher = PageFetcher(
        timeout_seconds=app_settings.fetch_timeout_seconds,
        retry_max=app_settings.fetch_retry_max,
        user_agent=app_settings.fetch_user_agent,
    )
    fetcher = ResearchContentFetcher(
        cache,
        page_fetcher,
        freshness=timedelta(hours=app_settings.content_cache_ttl_hours),
        max_chars=app_settings.extractor_max_page_chars,
        min_line_chars=app_settings.min_content_line_chars,
    )

    return ResearchEngine(
        planner=LLMPlanner(planner_generator, max_sub_queries=app_settings.planner_max_sub_queries),
        searcher=searcher or create_search_provider(config.search_provider, app_settings),
        fetcher=fetcher,
        ranker=build_ranker(app_settings),
        synthesizer=LLMSynthesizer(synth_generator, max_tokens=app_settings.synthesis_max_tokens),
        search_concurrency=app_settings.search_max_parallel,
        fetch_concurrency=app_settings.fetch_max_parallel,
        language=app_settings.search_language,
    )
