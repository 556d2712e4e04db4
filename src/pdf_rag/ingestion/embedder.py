"""Embedding — map chunk text to vectors through a LangChain embedding model."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from pdf_rag.errors import EmbeddingError

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

    from pdf_rag.config import Settings

logger = logging.getLogger(__name__)


def get_embedding_function(settings: Settings) -> Embeddings:
    """Return the embedding model selected by ``settings.embedding_provider``."""
    if settings.embedding_provider == "openai":
        from langchain_openai import OpenAIEmbeddings

        return OpenAIEmbeddings(model=settings.embedding_model, api_key=settings.openai_api_key)

    from langchain_huggingface import HuggingFaceEmbeddings

    return HuggingFaceEmbeddings(model_name=settings.embedding_model)


class Embedder:
    """Async facade over an :class:`~langchain_core.embeddings.Embeddings` model.

    Parameters
    ----------
    model:
        Any LangChain embedding model.
    concurrency:
        Maximum number of in-flight embedding calls in :meth:`embed_many`.
    """

    def __init__(self, model: Embeddings, *, concurrency: int = 8) -> None:
        self._model = model
        self.concurrency = concurrency

    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Raises
        ------
        EmbeddingError
            The provider failed (rate limit, invalid input, …) or returned
            an empty vector.
        """
        try:
            vector = await self._model.aembed_query(text)
        except Exception as exc:
            raise EmbeddingError(f"Embedding provider failed: {exc}") from exc
        if not vector:
            raise EmbeddingError("Embedding provider returned an empty vector")
        return list(vector)

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* concurrently and return vectors in input order.

        All calls run inside one task group; the first failure cancels the
        remaining calls and is re-raised as-is.
        """
        if not texts:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(text: str) -> list[float]:
            async with semaphore:
                return await self.embed(text)

        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(_bounded(text)) for text in texts]
        except ExceptionGroup as eg:
            raise _first_error(eg) from None

        vectors = [task.result() for task in tasks]
        dimensions = {len(v) for v in vectors}
        if len(dimensions) > 1:
            raise EmbeddingError(f"Inconsistent embedding dimensions in one batch: {sorted(dimensions)}")
        logger.info("Embedded %d texts (dim=%d)", len(vectors), dimensions.pop())
        return vectors


def _first_error(eg: BaseExceptionGroup) -> BaseException:
    first = eg.exceptions[0]
    while isinstance(first, BaseExceptionGroup):
        first = first.exceptions[0]
    return first
