"""
Retrieval — namespaced vector index, top-K search, and context assembly.

This module wraps the vector store behind a clean interface so that
the ingestion orchestrator never needs to know which DB is backing it.

Public surface
--------------
- :class:`VectorStoreBase` — abstract backend (subclass for Pinecone, etc.).
- :class:`ChromaVectorStore` — default Chroma backend.
- :class:`NamespaceRetriever` — per-document top-K search with source tagging.
- :class:`VectorRecord`, :class:`QueryMatch`, :class:`ContextSnippet` — data models.
- :func:`namespace_for` — document key → namespace name.
"""

from pdf_rag.retrieval.base import VectorStoreBase, namespace_for
from pdf_rag.retrieval.models import ContextSnippet, QueryMatch, VectorRecord, assemble_context

__all__ = [
    "ChromaVectorStore",
    "ContextSnippet",
    "NamespaceRetriever",
    "QueryMatch",
    "VectorRecord",
    "VectorStoreBase",
    "assemble_context",
    "namespace_for",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy imports: chromadb is heavy, and the retriever depends on ingestion."""
    if name == "ChromaVectorStore":
        from pdf_rag.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    if name == "NamespaceRetriever":
        from pdf_rag.retrieval.retriever import NamespaceRetriever

        return NamespaceRetriever
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
