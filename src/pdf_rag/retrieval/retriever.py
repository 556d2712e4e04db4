"""Namespace retriever — top-K semantic search with source tagging.

This module is the **read side** of the pipeline.  It turns a query into
an embedding, runs it against one document's namespace, and returns
:class:`ContextSnippet` objects that carry the document's display name so
snippets from several documents can be concatenated into one prompt.

Usage::

    from pdf_rag.retrieval.models import assemble_context
    from pdf_rag.retrieval.retriever import NamespaceRetriever

    retriever = NamespaceRetriever(store, embedder)
    snippets = await retriever.search("docs/a.pdf", "What is the main claim?", k=5)
    prompt_context = assemble_context(snippets)
"""

from __future__ import annotations

import asyncio
import logging

from pdf_rag.ingestion.embedder import Embedder
from pdf_rag.ingestion.models import display_name
from pdf_rag.retrieval.base import VectorStoreBase, namespace_for
from pdf_rag.retrieval.models import ContextSnippet, QueryMatch

logger = logging.getLogger(__name__)


class NamespaceRetriever:
    """High-level retriever over a namespaced :class:`VectorStoreBase`.

    Parameters
    ----------
    store:
        A concrete vector-store backend.
    embedder:
        Used to embed query strings.
    default_k:
        Default number of results returned by :meth:`search`.
    score_threshold:
        Minimum similarity score; results below this are discarded.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: Embedder,
        *,
        default_k: int = 5,
        score_threshold: float | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.default_k = default_k
        self.score_threshold = score_threshold

    # -- public API -----------------------------------------------------------

    async def search(
        self,
        key: str,
        query: str,
        *,
        k: int | None = None,
        source_name: str | None = None,
    ) -> list[ContextSnippet]:
        """Embed *query* and search the namespace of document *key*."""
        embedding = await self._embedder.embed(query)
        return await self.search_by_embedding(key, embedding, k=k, source_name=source_name)

    async def search_by_embedding(
        self,
        key: str,
        embedding: list[float],
        *,
        k: int | None = None,
        source_name: str | None = None,
    ) -> list[ContextSnippet]:
        """Same as :meth:`search` but accepts a pre-computed embedding.

        Multi-document callers embed the query once and reuse it here for
        every namespace.
        """
        k = k or self.default_k
        matches = await asyncio.to_thread(self._store.query, namespace_for(key), embedding, top_k=k)
        snippets = self._to_snippets(matches, key, source_name or display_name(key))
        logger.info("Query against %s returned %d snippets", key, len(snippets))
        return snippets

    # -- internals ------------------------------------------------------------

    def _to_snippets(self, matches: list[QueryMatch], key: str, source_name: str) -> list[ContextSnippet]:
        snippets: list[ContextSnippet] = []
        for match in matches:
            if self.score_threshold is not None and match.score < self.score_threshold:
                continue
            page = match.metadata.get("page_number")
            snippets.append(
                ContextSnippet(
                    source=match.metadata.get("source", key),
                    source_name=match.metadata.get("source_name") or source_name,
                    text=match.text or match.metadata.get("text", ""),
                    score=match.score,
                    page_number=int(page) if page is not None else None,
                )
            )
        return snippets
