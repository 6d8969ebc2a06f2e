from __future__ import annotations


class ResearchError(Exception):
    """A research run failed at a fatal stage; no brief was produced."""

    stage = "research"


class PlanningError(ResearchError):
    stage = "decompose"


class SearchExhaustedError(ResearchError):
    stage = "search"


class NoSourcesError(ResearchError):
    stage = "fetch"


class SynthesisError(ResearchError):
    stage = "synthesize"


class CitationError(SynthesisError):
    """A finding cites a source index outside the brief's source list."""

    def __init__(self, message: str, invalid: list[tuple[int, int]] | None = None):
        super().__init__(message)
        self.invalid = list(invalid or [])


class FetchError(Exception):
    """A single URL could not be turned into usable content."""


class SearchError(Exception):
    """A single search call failed."""


class UnsupportedProviderError(SearchError, ValueError):
    pass


class MissingCredentialsError(SearchError):
    pass


class SearchBlockedError(SearchError):
    pass
