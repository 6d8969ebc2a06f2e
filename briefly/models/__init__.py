from briefly.models.research import (
    Article,
    DetailedFinding,
    OutputFormat,
    ResearchBrief,
    ResearchConfig,
    SearchBackend,
    SearchConfig,
    SearchResult,
    Source,
    SourceType,
    infer_source_type,
)

__all__ = [
    "Article",
    "DetailedFinding",
    "OutputFormat",
    "ResearchBrief",
    "ResearchConfig",
    "SearchBackend",
    "SearchConfig",
    "SearchResult",
    "Source",
    "SourceType",
    "infer_source_type",
]
