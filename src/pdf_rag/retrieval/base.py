"""Abstract base class for namespaced vector-store backends.

Every document lives in its own namespace, so a query against one
namespace only ever sees that document's chunks.  Adding a backend
(Pinecone, Qdrant …) only requires subclassing :class:`VectorStoreBase`
and implementing the abstract methods; batching of upserts is handled
here.
"""

from __future__ import annotations

import hashlib
import logging
import re
from abc import ABC, abstractmethod

from pdf_rag.errors import VectorStoreError
from pdf_rag.retrieval.models import QueryMatch, VectorRecord

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^a-zA-Z0-9._-]+|\.{2,}")
_MAX_SLUG = 40


def namespace_for(key: str) -> str:
    """ASCII-safe, deterministic namespace name for a document key.

    ``"uploads/Q4 Report.pdf"`` → ``"uploads-Q4-Report.pdf-<sha1[:10]>"``.
    The hash suffix keeps keys that slugify identically apart.
    """
    slug = _UNSAFE.sub("-", key)[:_MAX_SLUG].strip("._-") or "doc"
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
    return f"{slug}-{digest}"


class VectorStoreBase(ABC):
    """Backend-agnostic, namespace-scoped vector index.

    Parameters
    ----------
    batch_size:
        Maximum number of records per upsert call.
    """

    def __init__(self, batch_size: int = 100) -> None:
        self.batch_size = batch_size

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def _upsert_batch(self, namespace: str, records: list[VectorRecord]) -> None:
        """Insert-or-replace one batch of records, keyed by id."""
        ...

    @abstractmethod
    def delete_all(self, namespace: str) -> None:
        """Remove every record in *namespace*.

        A namespace that does not exist is a no-op, not an error.
        """
        ...

    @abstractmethod
    def query(self, namespace: str, vector: list[float], *, top_k: int = 5) -> list[QueryMatch]:
        """Return up to *top_k* matches in descending similarity.

        An absent or empty namespace returns ``[]``.
        """
        ...

    @abstractmethod
    def count(self, namespace: str) -> int:
        """Number of records stored in *namespace*."""
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- shared behaviour -----------------------------------------------------

    def upsert(self, namespace: str, records: list[VectorRecord], *, batch_size: int | None = None) -> int:
        """Upsert *records* in sequential batches, ordered by id.

        Returns the number of records written.  A failing batch raises
        :class:`VectorStoreError` with ``upserted`` set to the count of
        records already written; those earlier batches are kept.
        """
        size = batch_size or self.batch_size
        ordered = sorted(records, key=lambda r: r.id)
        written = 0
        total_batches = -(-len(ordered) // size)
        for number, start in enumerate(range(0, len(ordered), size), 1):
            batch = ordered[start : start + size]
            try:
                self._upsert_batch(namespace, batch)
            except Exception as exc:
                raise VectorStoreError(
                    f"Upsert batch {number}/{total_batches} to {namespace!r} failed after "
                    f"{written} records: {exc}",
                    upserted=written,
                ) from exc
            written += len(batch)
            logger.info("  upserted batch %d/%d (%d records) → %s", number, total_batches, len(batch), namespace)
        return written
