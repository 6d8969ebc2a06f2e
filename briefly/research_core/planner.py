from __future__ import annotations

import re
from datetime import date
from typing import Protocol

from loguru import logger

from briefly.llm_client import TextGenerator
from briefly.research_core.errors import PlanningError
from briefly.services.prompt_store import render_prompt

_LIST_MARKER = re.compile(r"^\s*(?:[-*•]|\(?\d{1,2}[.)])\s+")


class Planner(Protocol):
    async def decompose_topic(self, topic: str) -> list[str]: ...


def parse_query_list(text: str, *, max_queries: int) -> list[str]:
    """Pull search queries out of a numbered or bulleted list.

    Markdown headings, lines ending in ``:`` and exact duplicates are dropped;
    order is kept. When the text contains a list, prose lines around it are
    ignored.
    """
    lines = [
        line.strip()
        for line in text.splitlines()
        if line.strip() and not line.strip().startswith(("```", "#"))
    ]
    if any(_LIST_MARKER.match(line) for line in lines):
        lines = [line for line in lines if _LIST_MARKER.match(line)]

    queries: list[str] = []
    seen: set[str] = set()
    for line in lines:
        line = _LIST_MARKER.sub("", line).strip()
        line = line.strip("\"'`").strip()
        line = re.sub(r"^\*\*(.+)\*\*$", r"\1", line)
        if not line or line.endswith(":"):
            continue
        line = " ".join(line.split())
        key = line.lower()
        if key in seen:
            continue
        seen.add(key)
        queries.append(line)
        if len(queries) >= max(max_queries, 1):
            break
    return queries


class LLMPlanner:
    """Decomposes a topic into complementary sub-queries with a language model."""

    def __init__(self, generator: TextGenerator, *, max_sub_queries: int = 5):
        self.generator = generator
        self.max_sub_queries = max(int(max_sub_queries), 1)

    async def decompose_topic(self, topic: str) -> list[str]:
        topic = " ".join((topic or "").split())
        if not topic:
            raise ValueError("topic must not be empty")

        today = date.today()
        prompt = render_prompt(
            "planner.decompose",
            topic=topic,
            max_queries=self.max_sub_queries,
            today_year=today.year,
        )
        system = render_prompt("planner.system_prompt", today_iso=today.isoformat())

        try:
            response = await self.generator.generate(
                prompt,
                system=system,
                max_tokens=400,
                temperature=0.7,
                caller="planner",
            )
        except Exception as exc:
            raise PlanningError(f"failed to decompose topic: {exc}") from exc

        queries = parse_query_list(response, max_queries=self.max_sub_queries)
        if not queries:
            raise PlanningError("failed to decompose topic: planner returned no sub-queries")

        logger.info(f"Planner produced {len(queries)} sub-queries for {topic!r}")
        return queries
