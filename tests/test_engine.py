from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from briefly.models.research import (
    Article,
    DetailedFinding,
    ResearchBrief,
    ResearchConfig,
    SearchConfig,
    SearchResult,
    Source,
    SourceType,
)
from briefly.research_core.engine import ResearchEngine, per_query_budget, source_from_article
from briefly.research_core.errors import (
    CitationError,
    FetchError,
    NoSourcesError,
    PlanningError,
    SearchExhaustedError,
    SearchError,
    SynthesisError,
)
from briefly.research_core.ranker import apply_scores


class StubPlanner:
    def __init__(self, queries: list[str] | None = None, error: Exception | None = None):
        self.queries = queries or ["q1", "q2", "q3"]
        self.error = error
        self.calls: list[str] = []

    async def decompose_topic(self, topic: str) -> list[str]:
        self.calls.append(topic)
        if self.error is not None:
            raise self.error
        return list(self.queries)


class StubSearch:
    name = "stub"

    def __init__(self, results: dict[str, list[str] | Exception]):
        self.results = results
        self.calls: list[tuple[str, SearchConfig]] = []

    async def search(self, query: str, config: SearchConfig) -> list[SearchResult]:
        self.calls.append((query, config))
        outcome = self.results.get(query, [])
        if isinstance(outcome, Exception):
            raise outcome
        return [
            SearchResult(url=url, title=f"title {url}", domain="example.com", provider="stub", rank=rank)
            for rank, url in enumerate(outcome[: config.max_results], start=1)
        ]


class StubFetcher:
    def __init__(
        self,
        failures: set[str] | None = None,
        delays: dict[str, float] | None = None,
        titles: dict[str, str] | None = None,
    ):
        self.failures = failures or set()
        self.delays = delays or {}
        self.titles = titles or {}
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def fetch_content(self, url: str, use_js: bool, *, refresh: bool = False) -> Article:
        self.calls.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delays.get(url, 0))
            if url in self.failures:
                raise FetchError(f"failed to fetch {url}")
            return Article(
                id=f"article:{url}",
                url=url,
                title=self.titles.get(url, f"Page {url}"),
                cleaned_text=f"Body of {url} with enough text",
            )
        finally:
            self.active -= 1


class ScoreRanker:
    def __init__(self, scores: dict[str, float] | None = None, error: Exception | None = None):
        self.scores = scores or {}
        self.error = error
        self.calls = 0

    async def rank_sources(self, sources: list[Source], topic: str) -> list[Source]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return apply_scores(sources, [self.scores.get(s.url, 0.0) for s in sources])


class StubSynthesizer:
    def __init__(self, citations: list[int] | None = None, error: Exception | None = None):
        self.citations = citations
        self.error = error
        self.received: list[list[Source]] = []

    async def synthesize_brief(self, topic, sources, sub_queries) -> ResearchBrief:
        self.received.append(list(sources))
        if self.error is not None:
            raise self.error
        citations = self.citations if self.citations is not None else list(range(min(len(sources), 2)))
        return ResearchBrief(
            id="brief-1",
            topic=topic,
            executive_summary="Summary [1].",
            detailed_findings=[DetailedFinding(topic="Finding", content="Text", citations=citations)],
            open_questions=["What next?"],
            sources=list(sources),
            sub_queries=list(sub_queries),
        )


def _engine(
    *,
    planner=None,
    search=None,
    fetcher=None,
    ranker=None,
    synthesizer=None,
    search_concurrency: int = 4,
    fetch_concurrency: int = 8,
) -> ResearchEngine:
    return ResearchEngine(
        planner or StubPlanner(),
        search
        or StubSearch(
            {
                "q1": ["https://a.example.com/1", "https://a.example.com/2"],
                "q2": ["https://b.example.com/1"],
                "q3": ["https://c.example.com/1"],
            }
        ),
        fetcher or StubFetcher(),
        ranker or ScoreRanker(),
        synthesizer or StubSynthesizer(),
        search_concurrency=search_concurrency,
        fetch_concurrency=fetch_concurrency,
    )


def test_per_query_budget_never_below_one():
    assert per_query_budget(20, 5) == 4
    assert per_query_budget(6, 4) == 1
    assert per_query_budget(2, 5) == 1


def test_source_from_article_infers_type_and_backfills_title():
    result = SearchResult(url="https://arxiv.org/abs/1", title="Search title", domain="arxiv.org")
    article = Article(id="a1", url=result.url, title="Untitled Article", cleaned_text="text")

    source = source_from_article(result, article)

    assert source.id == "a1"
    assert source.title == "Search title"
    assert source.type is SourceType.PAPER
    assert source.content == "text"


@pytest.mark.asyncio
async def test_ranked_sources_are_capped_to_budget():
    search = StubSearch(
        {"q1": ["https://x.com/low"], "q2": ["https://x.com/high"], "q3": ["https://x.com/mid"]}
    )
    ranker = ScoreRanker({"https://x.com/low": 0.2, "https://x.com/high": 0.9, "https://x.com/mid": 0.5})
    engine = _engine(search=search, ranker=ranker)

    brief = await engine.research("topic", ResearchConfig(max_sources=2))

    assert [s.relevance for s in brief.sources] == [0.9, 0.5]
    assert [s.url for s in brief.sources] == ["https://x.com/high", "https://x.com/mid"]
    assert brief.metadata["candidate_count"] == 3


@pytest.mark.asyncio
async def test_result_is_deterministic_regardless_of_fetch_timing():
    urls = {
        "q1": ["https://a.example.com/1", "https://a.example.com/2"],
        "q2": ["https://b.example.com/1", "https://b.example.com/2"],
        "q3": ["https://c.example.com/1"],
    }
    every_url = [url for group in urls.values() for url in group]
    fast_first = {url: 0.001 * i for i, url in enumerate(every_url)}
    slow_first = {url: 0.001 * (len(every_url) - i) for i, url in enumerate(every_url)}
    ranker_scores = {url: 0.5 for url in every_url}

    runs = []
    for delays in (fast_first, slow_first):
        engine = _engine(
            search=StubSearch(urls),
            fetcher=StubFetcher(delays=delays),
            ranker=ScoreRanker(ranker_scores),
        )
        runs.append(await engine.research("topic", ResearchConfig(max_sources=10)))

    first, second = runs
    assert [(s.id, s.relevance) for s in first.sources] == [(s.id, s.relevance) for s in second.sources]
    # Equal scores keep discovery order: sub-query order, then result rank.
    assert [s.url for s in first.sources] == every_url


@pytest.mark.asyncio
async def test_duplicate_urls_are_fetched_once_and_kept_once():
    search = StubSearch(
        {
            "q1": ["https://shared.example.com/post", "https://a.example.com/1"],
            "q2": ["https://SHARED.example.com/post/", "https://b.example.com/1"],
            "q3": ["https://shared.example.com/post#comments"],
        }
    )
    fetcher = StubFetcher()
    engine = _engine(search=search, fetcher=fetcher)

    brief = await engine.research("topic", ResearchConfig(max_sources=10))

    urls = [s.url for s in brief.sources]
    assert urls.count("https://shared.example.com/post") == 1
    assert len(urls) == 3
    assert len({s.id for s in brief.sources}) == len(brief.sources)
    assert len(fetcher.calls) == 3


@pytest.mark.asyncio
async def test_tracking_parameters_and_mirrored_titles_are_deduplicated():
    search = StubSearch(
        {
            "q1": ["https://news.example.com/story?id=1&utm_source=feed"],
            "q2": ["https://news.example.com/story?id=1", "https://news.example.com/amp/story"],
            "q3": ["https://other.example.com/1"],
        }
    )
    fetcher = StubFetcher(
        titles={
            "https://news.example.com/story?id=1&utm_source=feed": "Solid-State Battery Breakthrough",
            "https://news.example.com/amp/story": "solid state battery_breakthrough",
        }
    )
    engine = _engine(search=search, fetcher=fetcher)

    brief = await engine.research("topic", ResearchConfig(max_sources=10))

    assert [s.url for s in brief.sources] == [
        "https://news.example.com/story?id=1&utm_source=feed",
        "https://other.example.com/1",
    ]
    assert brief.metadata["candidate_count"] == 2
    assert "https://news.example.com/story?id=1" not in fetcher.calls


@pytest.mark.asyncio
async def test_one_failed_search_out_of_three_still_produces_brief():
    search = StubSearch(
        {
            "q1": ["https://a.example.com/1"],
            "q2": SearchError("rate limited"),
            "q3": ["https://c.example.com/1"],
        }
    )
    engine = _engine(search=search)

    brief = await engine.research("topic", ResearchConfig(max_sources=10))

    assert brief.metadata["failed_searches"] == 1
    assert {s.url for s in brief.sources} == {"https://a.example.com/1", "https://c.example.com/1"}
    assert brief.sub_queries == ["q1", "q2", "q3"]


@pytest.mark.asyncio
async def test_all_searches_failing_is_fatal():
    search = StubSearch({q: SearchError("down") for q in ("q1", "q2", "q3")})
    synthesizer = StubSynthesizer()
    engine = _engine(search=search, synthesizer=synthesizer)

    with pytest.raises(SearchExhaustedError):
        await engine.research("topic", ResearchConfig())
    assert synthesizer.received == []


@pytest.mark.asyncio
async def test_planner_failure_means_search_is_never_called():
    search = StubSearch({})
    engine = _engine(planner=StubPlanner(error=PlanningError("failed to decompose topic: boom")), search=search)

    with pytest.raises(PlanningError):
        await engine.research("topic", ResearchConfig())
    assert search.calls == []


@pytest.mark.asyncio
async def test_unexpected_planner_exception_is_wrapped():
    search = StubSearch({})
    engine = _engine(planner=StubPlanner(error=RuntimeError("socket closed")), search=search)

    with pytest.raises(PlanningError) as excinfo:
        await engine.research("topic", ResearchConfig())
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert search.calls == []


@pytest.mark.asyncio
async def test_explicit_sub_queries_skip_planner():
    planner = StubPlanner(error=PlanningError("unused"))
    search = StubSearch({"solar": ["https://s.example.com/1"]})
    engine = _engine(planner=planner, search=search)

    brief = await engine.research("solar", ResearchConfig(), sub_queries=["solar"])

    assert planner.calls == []
    assert brief.sub_queries == ["solar"]


@pytest.mark.asyncio
async def test_blank_topic_is_rejected():
    with pytest.raises(ValueError):
        await _engine().research("  ", ResearchConfig())


@pytest.mark.asyncio
async def test_failed_fetches_are_skipped_and_counted():
    fetcher = StubFetcher(failures={"https://a.example.com/2"})
    engine = _engine(fetcher=fetcher)

    brief = await engine.research("topic", ResearchConfig(max_sources=10))

    assert brief.metadata["failed_fetches"] == 1
    assert "https://a.example.com/2" not in {s.url for s in brief.sources}
    assert len(brief.sources) == 3


@pytest.mark.asyncio
async def test_zero_fetched_sources_is_fatal():
    every_url = {"https://a.example.com/1", "https://a.example.com/2", "https://b.example.com/1", "https://c.example.com/1"}
    synthesizer = StubSynthesizer()
    engine = _engine(fetcher=StubFetcher(failures=every_url), synthesizer=synthesizer)

    with pytest.raises(NoSourcesError):
        await engine.research("topic", ResearchConfig(max_sources=10))
    assert synthesizer.received == []


@pytest.mark.asyncio
async def test_searches_returning_nothing_is_no_sources():
    engine = _engine(search=StubSearch({}))

    with pytest.raises(NoSourcesError):
        await engine.research("topic", ResearchConfig())


@pytest.mark.asyncio
async def test_citations_outside_source_list_are_rejected():
    engine = _engine(synthesizer=StubSynthesizer(citations=[0, 99]))

    with pytest.raises(CitationError) as excinfo:
        await engine.research("topic", ResearchConfig(max_sources=10))
    assert excinfo.value.invalid == [(0, 99)]
    assert isinstance(excinfo.value, SynthesisError)


@pytest.mark.asyncio
async def test_every_citation_resolves_to_a_source():
    brief = await _engine().research("topic", ResearchConfig(max_sources=10))

    for finding in brief.detailed_findings:
        for citation in finding.citations:
            assert 0 <= citation < len(brief.sources)


@pytest.mark.asyncio
async def test_synthesis_failure_is_fatal():
    engine = _engine(synthesizer=StubSynthesizer(error=RuntimeError("model offline")))

    with pytest.raises(SynthesisError):
        await engine.research("topic", ResearchConfig())


@pytest.mark.asyncio
async def test_ranking_failure_keeps_discovery_order():
    engine = _engine(ranker=ScoreRanker(error=RuntimeError("embedding model missing")))

    brief = await engine.research("topic", ResearchConfig(max_sources=10))

    assert brief.metadata["degraded"] == ["ranking"]
    assert [s.url for s in brief.sources] == [
        "https://a.example.com/1",
        "https://a.example.com/2",
        "https://b.example.com/1",
        "https://c.example.com/1",
    ]
    assert all(s.relevance == 0.0 for s in brief.sources)


@pytest.mark.asyncio
async def test_search_budget_and_recency_are_passed_to_provider():
    search = StubSearch({})
    search.results = {q: ["https://a.example.com/1"] for q in ("q1", "q2", "q3")}
    engine = _engine(search=search)

    await engine.research("topic", ResearchConfig(max_sources=7, since=timedelta(days=7)))

    configs = [config for _query, config in search.calls]
    assert {c.max_results for c in configs} == {2}
    assert {c.since for c in configs} == {timedelta(days=7)}


@pytest.mark.asyncio
async def test_brief_carries_config_and_run_metadata():
    config = ResearchConfig(max_sources=10)
    brief = await _engine().research("topic", config)

    assert brief.config == config
    assert brief.topic == "topic"
    assert brief.metadata["sub_query_count"] == 3
    assert brief.metadata["failed_searches"] == 0
    assert brief.metadata["search_provider"] == "stub"
    assert len(brief.sources) <= config.max_sources


@pytest.mark.asyncio
async def test_fetch_pool_is_bounded():
    urls = {f"q{i}": [f"https://site{i}.example.com/{j}" for j in range(4)] for i in range(1, 4)}
    fetcher = StubFetcher(delays={url: 0.01 for group in urls.values() for url in group})
    engine = _engine(search=StubSearch(urls), fetcher=fetcher, fetch_concurrency=2)

    await engine.research("topic", ResearchConfig(max_sources=12))

    assert fetcher.max_active <= 2
    assert len(fetcher.calls) == 12


@pytest.mark.asyncio
async def test_cancellation_propagates_and_stops_fetches():
    started = asyncio.Event()
    never = asyncio.Event()

    class BlockingFetcher:
        cancelled = 0

        async def fetch_content(self, url, use_js, *, refresh=False):
            started.set()
            try:
                await never.wait()
            except asyncio.CancelledError:
                BlockingFetcher.cancelled += 1
                raise

    synthesizer = StubSynthesizer()
    engine = _engine(fetcher=BlockingFetcher(), synthesizer=synthesizer)

    task = asyncio.create_task(engine.research("topic", ResearchConfig(max_sources=10)))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert BlockingFetcher.cancelled >= 1
    assert synthesizer.received == []
