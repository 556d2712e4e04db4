"""Shared pytest configuration, fakes and fixtures.

The fakes stand in for the three external collaborators (blob storage,
PDF bytes, vector index) so the orchestrator can be exercised end to end
without S3, Chroma or a model download.
"""

from __future__ import annotations

import math
from pathlib import Path

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding

from pdf_rag.errors import FetchError
from pdf_rag.ingestion.chunker import TextChunker
from pdf_rag.ingestion.embedder import Embedder
from pdf_rag.ingestion.fetcher import BlobFetcher, scratch_path
from pdf_rag.ingestion.models import Page
from pdf_rag.ingestion.orchestrator import IngestionOrchestrator
from pdf_rag.retrieval.base import VectorStoreBase
from pdf_rag.retrieval.models import QueryMatch, VectorRecord

PAGE_BREAK = "\f"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fakes ──────────────────────────────────────────────────────────────


class FakeFetcher(BlobFetcher):
    """Serves in-memory 'objects'; pages are separated by form feeds."""

    def __init__(self, scratch_dir: Path, objects: dict[str, str] | None = None) -> None:
        self.scratch_dir = scratch_dir
        self.objects: dict[str, str] = dict(objects or {})
        self.fetched: list[Path] = []

    def fetch(self, key: str) -> Path:
        if key not in self.objects:
            raise FetchError(f"Object {key!r} not found", not_found=True)
        path = scratch_path(self.scratch_dir, key)
        path.write_text(self.objects[key], encoding="utf-8")
        self.fetched.append(path)
        return path


class FakeParser:
    """Reads form-feed separated text instead of real PDF bytes."""

    def parse(self, path: str | Path) -> list[Page]:
        raw = Path(path).read_text(encoding="utf-8")
        return [
            Page(page_number=number, text=text.strip())
            for number, text in enumerate(raw.split(PAGE_BREAK), 1)
            if text.strip()
        ]


class InMemoryVectorStore(VectorStoreBase):
    """Dict-backed namespaced store with cosine similarity."""

    def __init__(self, batch_size: int = 100) -> None:
        super().__init__(batch_size)
        self.namespaces: dict[str, dict[str, VectorRecord]] = {}
        self.batch_calls: list[tuple[str, list[str]]] = []
        self.fail_on_batch: int | None = None
        self.calls: list[tuple[str, str]] = []

    def _upsert_batch(self, namespace: str, records: list[VectorRecord]) -> None:
        if self.fail_on_batch is not None and len(self.batch_calls) + 1 == self.fail_on_batch:
            raise RuntimeError("payload too large")
        self.batch_calls.append((namespace, [r.id for r in records]))
        self.calls.append(("upsert", namespace))
        bucket = self.namespaces.setdefault(namespace, {})
        for record in records:
            bucket[record.id] = record

    def delete_all(self, namespace: str) -> None:
        self.calls.append(("delete_all", namespace))
        self.namespaces.pop(namespace, None)

    def query(self, namespace: str, vector: list[float], *, top_k: int = 5) -> list[QueryMatch]:
        records = self.namespaces.get(namespace, {}).values()
        scored = sorted(
            (QueryMatch(id=r.id, score=_cosine(vector, r.values), text=r.text, metadata=r.metadata) for r in records),
            key=lambda m: m.score,
            reverse=True,
        )
        return scored[:top_k]

    def count(self, namespace: str) -> int:
        return len(self.namespaces.get(namespace, {}))

    def health_check(self) -> bool:
        return True


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture()
def scratch_dir(tmp_path: Path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture()
def fetcher(scratch_dir: Path) -> FakeFetcher:
    return FakeFetcher(scratch_dir)


@pytest.fixture()
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture()
def embedder() -> Embedder:
    return Embedder(DeterministicFakeEmbedding(size=16), concurrency=4)


@pytest.fixture()
def orchestrator(fetcher: FakeFetcher, store: InMemoryVectorStore, embedder: Embedder) -> IngestionOrchestrator:
    return IngestionOrchestrator(
        fetcher=fetcher,
        parser=FakeParser(),
        chunker=TextChunker(chunk_size=1000, chunk_overlap=200),
        embedder=embedder,
        store=store,
    )


def make_text(length: int, seed: str = "alpha") -> str:
    """Readable prose of exactly *length* characters."""
    sentence = f"The {seed} section explains one idea in plain words, then moves on. "
    text = (sentence * (length // len(sentence) + 1))[:length]
    return text
