from __future__ import annotations

import asyncio
from typing import Any, Protocol

from loguru import logger

from briefly.config import settings


class Embedder(Protocol):
    async def embed_texts(self, texts: list[str]) -> list[list[float]]: ...


class EmbeddingUnavailableError(RuntimeError):
    pass


class LocalEmbeddingService:
    """sentence-transformers embeddings, loaded once on first use in a worker thread."""

    def __init__(self, model_name: str | None = None, batch_size: int | None = None):
        self.model_name = model_name or settings.local_embed_model
        self.batch_size = batch_size or int(settings.local_embed_batch_size)
        self._model: Any | None = None
        self._lock = asyncio.Lock()

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        async with self._lock:
            if self._model is None:
                self._model = await asyncio.to_thread(self._load_model)
        return await asyncio.to_thread(self._embed_sync, texts)

    async def embed_text(self, text: str) -> list[float]:
        vectors = await self.embed_texts([text])
        return vectors[0]

    def _load_model(self) -> Any:
        from sentence_transformers import SentenceTransformer

        try:
            model = SentenceTransformer(self.model_name)
        except Exception as exc:
            raise EmbeddingUnavailableError(
                f"could not load embedding model {self.model_name}: {exc}"
            ) from exc
        logger.info(f"Loaded embedding model {self.model_name}")
        return model

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        vectors = self._model.encode(
            texts,
            batch_size=self.batch_size,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [list(map(float, row)) for row in vectors]
