"""briefly-research: retrieval-augmented research briefs from the command line."""

__version__ = "0.3.0"
