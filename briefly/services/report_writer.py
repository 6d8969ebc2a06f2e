from __future__ import annotations

import re
from pathlib import Path

from briefly.models.research import OutputFormat, ResearchBrief

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(text: str, *, max_length: int = 50) -> str:
    slug = _SLUG_STRIP.sub("-", (text or "").lower()).strip("-")
    slug = slug[:max_length].rstrip("-")
    return slug or "research"


def brief_filename(brief: ResearchBrief, fmt: OutputFormat) -> str:
    stamp = brief.generated_at.strftime("%Y-%m-%d-%H-%M")
    ext = "md" if fmt == OutputFormat.MARKDOWN else "json"
    return f"research-{slugify(brief.topic)}-{stamp}.{ext}"


def _cite(citations: list[int]) -> str:
    if not citations:
        return ""
    return " [" + ", ".join(str(index + 1) for index in citations) + "]"


def render_markdown(brief: ResearchBrief) -> str:
    """Human-readable brief; citations are shown 1-based to match the source list."""
    lines = [
        f"# Research Brief: {brief.topic}",
        "",
        f"*Generated {brief.generated_at.strftime('%Y-%m-%d %H:%M UTC')}"
        f" from {len(brief.sources)} sources*",
        "",
        "## Executive Summary",
        "",
        brief.executive_summary or "_No summary produced._",
        "",
    ]

    if brief.detailed_findings:
        lines += ["## Detailed Findings", ""]
        for finding in brief.detailed_findings:
            lines += [
                f"### {finding.topic}",
                "",
                finding.content,
                "",
                f"*Sources:{_cite(finding.citations) or ' none'} "
                f"(confidence {finding.confidence:.2f})*",
                "",
            ]

    if brief.open_questions:
        lines += ["## Open Questions", ""]
        lines += [f"- {question}" for question in brief.open_questions]
        lines.append("")

    if brief.sub_queries:
        lines += ["## Sub-queries", ""]
        lines += [f"{index}. {query}" for index, query in enumerate(brief.sub_queries, start=1)]
        lines.append("")

    lines += ["## Sources", ""]
    for index, source in enumerate(brief.sources, start=1):
        lines.append(
            f"{index}. [{source.title or source.url}]({source.url})"
            f" - {source.domain} ({source.type.value}, relevance {source.relevance:.2f})"
        )
    lines.append("")
    return "\n".join(lines)


def render_json(brief: ResearchBrief) -> str:
    return brief.model_dump_json(indent=2)


def write_brief(
    brief: ResearchBrief,
    output_dir: str | Path,
    fmt: OutputFormat = OutputFormat.MARKDOWN,
) -> Path:
    """Render ``brief`` and write it under ``output_dir``; returns the file path."""
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / brief_filename(brief, fmt)
    body = render_markdown(brief) if fmt == OutputFormat.MARKDOWN else render_json(brief)
    path.write_text(body, encoding="utf-8")
    return path
