"""Chroma implementation of the vector-store abstraction.

Each namespace maps to its own Chroma collection.
"""

from __future__ import annotations

import logging
from typing import Any

import chromadb

from pdf_rag.errors import VectorStoreError
from pdf_rag.retrieval.base import VectorStoreBase
from pdf_rag.retrieval.models import QueryMatch, VectorRecord

logger = logging.getLogger(__name__)


def _flat_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Chroma metadata values must be flat str/int/float/bool; text lives in ``documents``."""
    return {
        k: v
        for k, v in metadata.items()
        if k != "text" and isinstance(v, (str, int, float, bool))
    }


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed, namespace-per-collection vector store.

    Parameters
    ----------
    client:
        A chromadb client (``HttpClient``, ``PersistentClient``, …).
    distance:
        Collection distance function (``cosine`` | ``l2`` | ``ip``).
    batch_size:
        Maximum records per upsert call.
    """

    def __init__(self, client: Any, *, distance: str = "cosine", batch_size: int = 100) -> None:
        super().__init__(batch_size)
        self._client = client
        self.distance = distance

    @classmethod
    def from_settings(cls, settings: Any) -> ChromaVectorStore:
        client = chromadb.HttpClient(host=settings.chroma_host, port=settings.chroma_port)
        return cls(client, distance=settings.chroma_distance, batch_size=settings.upsert_batch_size)

    def _collection(self, namespace: str) -> Any:
        return self._client.get_or_create_collection(
            name=namespace,
            metadata={"hnsw:space": self.distance},
        )

    # -- VectorStoreBase overrides --------------------------------------------

    def _upsert_batch(self, namespace: str, records: list[VectorRecord]) -> None:
        self._collection(namespace).upsert(
            ids=[r.id for r in records],
            embeddings=[r.values for r in records],
            documents=[r.text for r in records],
            metadatas=[_flat_metadata(r.metadata) for r in records],
        )

    def delete_all(self, namespace: str) -> None:
        # get_or_create keeps first-time ingestion from failing on a missing collection.
        try:
            collection = self._collection(namespace)
            ids = collection.get(include=[])["ids"]
            if ids:
                collection.delete(ids=ids)
        except Exception as exc:
            raise VectorStoreError(f"Clearing namespace {namespace!r} failed: {exc}") from exc
        logger.info("Cleared %d records from %s", len(ids), namespace)

    def query(self, namespace: str, vector: list[float], *, top_k: int = 5) -> list[QueryMatch]:
        try:
            collection = self._collection(namespace)
            available = collection.count()
            if available == 0:
                return []
            results = collection.query(
                query_embeddings=[vector],
                n_results=min(top_k, available),
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise VectorStoreError(f"Query against {namespace!r} failed: {exc}") from exc

        ids = results.get("ids", [[]])[0]
        docs = results.get("documents", [[]])[0]
        metas = results.get("metadatas", [[]])[0]
        distances = results.get("distances", [[]])[0]

        matches: list[QueryMatch] = []
        for record_id, text, meta, dist in zip(ids, docs, metas, distances):
            metadata = {**(meta or {}), "text": text or ""}
            matches.append(
                QueryMatch(id=record_id, score=self._similarity(dist), text=text or "", metadata=metadata)
            )
        return matches

    def count(self, namespace: str) -> int:
        try:
            return self._collection(namespace).count()
        except Exception as exc:
            raise VectorStoreError(f"Counting {namespace!r} failed: {exc}") from exc

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    # -- internals ------------------------------------------------------------

    def _similarity(self, distance: float) -> float:
        # Chroma reports cosine and ip as ``1 - similarity``; l2 is unbounded.
        if self.distance in ("cosine", "ip"):
            return 1.0 - distance
        return 1.0 / (1.0 + distance)
