"""Briefly - Deep Research CLI

Turns a topic into a cited research brief, and manages the content cache.
"""

import argparse
import asyncio
import re
import sys
from datetime import timedelta

from briefly.config import settings
from briefly.llm_client import GenerationError
from briefly.models.research import OutputFormat, ResearchConfig
from briefly.research_core.engine import build_engine
from briefly.research_core.errors import PlanningError, ResearchError, SearchError
from briefly.services.logger import log_event
from briefly.services.report_writer import write_brief
from briefly.tools.content_cache import ContentCache
from briefly.tools.search_provider import available_backends, parse_backend

_SINCE = re.compile(r"^\s*(\d+)\s*([hdw])\s*$", re.IGNORECASE)
_SINCE_UNITS = {"h": "hours", "d": "days", "w": "weeks"}


def parse_since(value: str) -> timedelta:
    """Parse a recency window like ``24h``, ``7d`` or ``2w``."""
    match = _SINCE.match(value or "")
    if not match:
        raise argparse.ArgumentTypeError(f"invalid --since value {value!r}; use <n>h, <n>d or <n>w")
    amount = int(match.group(1))
    if amount <= 0:
        raise argparse.ArgumentTypeError("--since must be positive")
    return timedelta(**{_SINCE_UNITS[match.group(2).lower()]: amount})


def build_config(args: argparse.Namespace) -> ResearchConfig:
    return ResearchConfig(
        max_sources=args.max_sources or settings.max_sources,
        since=args.since,
        model=args.model or "",
        search_provider=parse_backend(args.provider or settings.search_provider),
        use_javascript=args.js,
        refresh_cache=args.refresh,
        output_format=OutputFormat(args.format),
    )


async def run_research(args: argparse.Namespace) -> int:
    """Run one research invocation and write the brief."""
    topic = " ".join(args.topic).strip()
    config = build_config(args)
    print(f"Research topic: {topic}")
    print("-" * 50)

    engine = build_engine(settings, config)
    try:
        brief = await engine.research(topic, config)
    except PlanningError as exc:
        if not args.single_query_fallback:
            raise
        print(f"[!] Planner failed ({exc}); retrying with the topic as the only query")
        brief = await engine.research(topic, config, sub_queries=[topic])
        degraded = [*brief.metadata.get("degraded", []), "planner_fallback"]
        brief = brief.model_copy(update={"metadata": {**brief.metadata, "degraded": degraded}})

    print(f"\n[*] Sub-queries ({len(brief.sub_queries)}):")
    for index, query in enumerate(brief.sub_queries, 1):
        print(f"  {index}. {query}")

    meta = brief.metadata
    print("\n[*] Research Complete!")
    print(f"   Sources: {len(brief.sources)} of {meta.get('candidate_count', 0)} candidates")
    print(f"   Failed searches: {meta.get('failed_searches', 0)}")
    print(f"   Failed fetches: {meta.get('failed_fetches', 0)}")
    print(f"   Runtime: {meta.get('duration_ms')}ms")
    if meta.get("degraded"):
        print(f"   Degraded: {', '.join(meta['degraded'])}")

    path = write_brief(brief, args.output or settings.output_dir, config.output_format)
    log_event("brief_written", f"Brief written to {path}", brief_id=brief.id, sources=len(brief.sources))
    print(f"\n[+] Brief written to {path}")
    return 0


def run_cache(args: argparse.Namespace) -> int:
    cache = ContentCache(settings.content_cache_dir)
    if args.cache_command == "clear":
        removed = cache.clear()
        log_event("cache_cleared", f"Removed {removed} cached articles", cache_dir=str(cache.cache_dir))
        print(f"[+] Removed {removed} cached articles from {cache.cache_dir}")
        return 0

    stats = cache.stats(timedelta(hours=settings.content_cache_ttl_hours))
    print(f"[*] Content cache: {cache.cache_dir}")
    print(f"   Entries: {stats.entries}")
    print(f"   Fresh (< {settings.content_cache_ttl_hours}h): {stats.fresh}")
    print(f"   Size: {stats.total_bytes / 1024:.1f} KiB")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Briefly Deep Research Tool")
    commands = parser.add_subparsers(dest="command", required=True)

    research = commands.add_parser("research", help="Research a topic and write a brief")
    research.add_argument("topic", nargs="+", help="Research topic")
    research.add_argument("--max-sources", "-n", type=int, help="Maximum sources in the brief")
    research.add_argument("--since", type=parse_since, help="Recency window, e.g. 24h, 7d, 2w")
    research.add_argument("--model", "-m", help="Model to use (default: from config)")
    research.add_argument(
        "--provider",
        "-p",
        choices=[backend.value for backend in available_backends()],
        help="Search backend (default: from config)",
    )
    research.add_argument("--js", action="store_true", help="Render pages with a headless browser")
    research.add_argument("--refresh", action="store_true", help="Ignore cached page content")
    research.add_argument(
        "--format",
        "-f",
        choices=[fmt.value for fmt in OutputFormat],
        default=OutputFormat.MARKDOWN.value,
    )
    research.add_argument("--output", "-o", help="Output directory (default: from config)")
    research.add_argument(
        "--single-query-fallback",
        action="store_true",
        help="If topic decomposition fails, research the topic as a single query",
    )

    cache = commands.add_parser("cache", help="Inspect or clear the content cache")
    cache.add_argument("cache_command", choices=["stats", "clear"])
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "cache":
        return run_cache(args)

    try:
        return asyncio.run(run_research(args))
    except ResearchError as exc:
        print(f"\n[!] Error ({exc.stage}): {exc}")
        return 1
    except (SearchError, GenerationError, ValueError) as exc:
        print(f"\n[!] Configuration error: {exc}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
