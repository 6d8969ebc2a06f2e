from __future__ import annotations

import re
import uuid
from typing import Protocol

from loguru import logger

from briefly.config import settings
from briefly.llm_client import TextGenerator
from briefly.models.research import DetailedFinding, ResearchBrief, Source
from briefly.research_core.errors import SynthesisError
from briefly.services.prompt_store import render_prompt

DEFAULT_CONFIDENCE = 0.8

_CITATION = re.compile(r"\[(\d+(?:\s*,\s*\d+)*)\]")
_SECTION = re.compile(r"^##\s+(.+?)\s*$", re.MULTILINE)
_SUBSECTION = re.compile(r"^###\s+(.+?)\s*$", re.MULTILINE)
_BULLET = re.compile(r"^\s*(?:[-*•]|\d{1,2}[.)])\s+(.*\S)\s*$")


class Synthesizer(Protocol):
    async def synthesize_brief(
        self, topic: str, sources: list[Source], sub_queries: list[str]
    ) -> ResearchBrief: ...


def format_sources(sources: list[Source], *, source_chars: int = 500) -> str:
    """Number sources from 1 in the order the brief will store them."""
    blocks: list[str] = []
    for index, source in enumerate(sources, start=1):
        content = " ".join(source.content.split())
        if source_chars > 0 and len(content) > source_chars:
            content = content[:source_chars].rstrip() + "..."
        blocks.append(
            f"[{index}] {source.title or 'Untitled'} - {source.domain} ({source.url})\n"
            f"Content: {content}\n"
        )
    return "\n".join(blocks)


def split_sections(text: str) -> dict[str, str]:
    """Map lowercased ``##`` headings to their bodies."""
    sections: dict[str, str] = {}
    matches = list(_SECTION.finditer(text))
    for position, match in enumerate(matches):
        end = matches[position + 1].start() if position + 1 < len(matches) else len(text)
        heading = match.group(1).strip().strip("#").strip().lower()
        sections[heading] = text[match.end():end].strip()
    return sections


def _section(sections: dict[str, str], name: str) -> str:
    for heading, body in sections.items():
        if heading.startswith(name):
            return body
    return ""


def extract_citations(text: str) -> list[int]:
    """Inline ``[n]`` / ``[n, m]`` markers as zero-based indices, first appearance first.

    Out-of-range numbers are kept as-is; validation happens on the finished brief.
    """
    citations: list[int] = []
    for match in _CITATION.finditer(text):
        for number in match.group(1).split(","):
            index = int(number.strip()) - 1
            if index not in citations:
                citations.append(index)
    return citations


def parse_findings(section: str) -> list[DetailedFinding]:
    findings: list[DetailedFinding] = []
    matches = list(_SUBSECTION.finditer(section))
    if not matches:
        body = section.strip()
        if body:
            findings.append(
                DetailedFinding(
                    topic="Findings",
                    content=body,
                    citations=extract_citations(body),
                    confidence=DEFAULT_CONFIDENCE,
                )
            )
        return findings

    for position, match in enumerate(matches):
        end = matches[position + 1].start() if position + 1 < len(matches) else len(section)
        body = section[match.end():end].strip()
        if not body:
            continue
        findings.append(
            DetailedFinding(
                topic=match.group(1).strip(),
                content=body,
                citations=extract_citations(body),
                confidence=DEFAULT_CONFIDENCE,
            )
        )
    return findings


def parse_open_questions(section: str) -> list[str]:
    questions: list[str] = []
    for line in section.splitlines():
        match = _BULLET.match(line)
        if match:
            questions.append(match.group(1))
    return questions


class LLMSynthesizer:
    """Turns ranked sources into a cited, sectioned research brief."""

    def __init__(
        self,
        generator: TextGenerator,
        *,
        max_tokens: int | None = None,
        source_chars: int | None = None,
    ):
        self.generator = generator
        self.max_tokens = max_tokens or int(settings.synthesis_max_tokens)
        self.source_chars = int(settings.synthesis_source_chars if source_chars is None else source_chars)

    async def synthesize_brief(
        self, topic: str, sources: list[Source], sub_queries: list[str]
    ) -> ResearchBrief:
        if not sources:
            raise SynthesisError("failed to synthesize brief: no sources to synthesize")

        prompt = render_prompt(
            "synthesizer.brief",
            topic=topic,
            sub_queries="\n".join(f"- {query}" for query in sub_queries),
            sources=format_sources(sources, source_chars=self.source_chars),
            source_count=len(sources),
        )
        try:
            response = await self.generator.generate(
                prompt,
                system=render_prompt("synthesizer.system_prompt"),
                max_tokens=self.max_tokens,
                temperature=0.3,
                caller="synthesizer",
            )
        except Exception as exc:
            raise SynthesisError(f"failed to synthesize brief: {exc}") from exc

        sections = split_sections(response)
        summary = _section(sections, "executive summary")
        if not sections:
            summary = response.strip()

        brief = ResearchBrief(
            id=str(uuid.uuid4()),
            topic=topic,
            executive_summary=summary,
            detailed_findings=parse_findings(_section(sections, "detailed findings")),
            open_questions=parse_open_questions(_section(sections, "open questions")),
            sources=list(sources),
            sub_queries=list(sub_queries),
        )
        logger.info(
            f"Synthesized brief with {len(brief.detailed_findings)} findings "
            f"from {len(sources)} sources"
        )
        return brief
