from __future__ import annotations

import math
import re
from typing import Protocol, Sequence

from loguru import logger
from rank_bm25 import BM25Okapi

from briefly.models.research import Source
from briefly.services.embeddings_local import Embedder

_TOKEN = re.compile(r"[a-z0-9]+")

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "is", "are", "was", "were", "be", "been", "have", "has",
        "had", "do", "does", "did", "will", "would", "could", "should", "what",
        "how", "why", "this", "that", "these", "those", "from", "into", "about",
    }
)


class Ranker(Protocol):
    async def rank_sources(self, sources: list[Source], topic: str) -> list[Source]: ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def apply_scores(sources: list[Source], scores: Sequence[float]) -> list[Source]:
    """Assign relevance and sort descending; equal scores keep discovery order."""
    scored = [source.with_relevance(score) for source, score in zip(sources, scores)]
    return sorted(scored, key=lambda source: source.relevance, reverse=True)


def source_text(source: Source, max_chars: int) -> str:
    text = f"{source.title}\n\n{source.content}".strip()
    return text[:max_chars] if max_chars > 0 else text


def tokenize(text: str) -> list[str]:
    return [token for token in _TOKEN.findall(text.lower()) if token not in STOP_WORDS and len(token) > 2]


class EmbeddingRanker:
    """Scores sources by cosine similarity between topic and source embeddings."""

    def __init__(self, embedder: Embedder, *, max_text_chars: int = 8000):
        self.embedder = embedder
        self.max_text_chars = max_text_chars

    async def rank_sources(self, sources: list[Source], topic: str) -> list[Source]:
        if not sources:
            return []

        texts = [topic] + [source_text(source, self.max_text_chars) for source in sources]
        vectors = await self.embedder.embed_texts(texts)
        if len(vectors) != len(texts):
            raise ValueError(f"embedder returned {len(vectors)} vectors for {len(texts)} texts")

        topic_vector, source_vectors = vectors[0], vectors[1:]
        # Negative similarity means unrelated; clamp into [0, 1].
        scores = [max(0.0, min(cosine_similarity(topic_vector, vec), 1.0)) for vec in source_vectors]
        ranked = apply_scores(sources, scores)
        logger.debug(
            f"Ranked {len(ranked)} sources; top relevance={ranked[0].relevance:.3f}"
        )
        return ranked


class Bm25Ranker:
    """Lexical ranking with BM25, normalized so the best match scores 1.0."""

    async def rank_sources(self, sources: list[Source], topic: str) -> list[Source]:
        if not sources:
            return []

        corpus = [tokenize(f"{source.title} {source.content}") or [""] for source in sources]
        query = tokenize(topic)
        if not query:
            return apply_scores(sources, [0.0] * len(sources))

        raw_scores = [float(score) for score in BM25Okapi(corpus).get_scores(query)]
        max_score = max(raw_scores)
        if max_score <= 0:
            return apply_scores(sources, [0.0] * len(sources))
        return apply_scores(sources, [max(score, 0.0) / max_score for score in raw_scores])
