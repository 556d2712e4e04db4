"""Ingestion orchestrator — fetch → parse → chunk → embed → clear → upsert.

One :class:`IngestionOrchestrator` coordinates the pipeline components,
all of which are injected so tests can substitute fakes.  Three entry
points cover the use cases of the request layer:

* :meth:`~IngestionOrchestrator.ingest_document` — single document; any
  stage failure is fatal and re-raised with the failing stage attached.
* :meth:`~IngestionOrchestrator.ingest_many` — several documents for
  cross-document synthesis; a failing document is logged and skipped.
* :meth:`~IngestionOrchestrator.query_document` — top-K semantic query
  against one document's namespace.

Scratch files created by the fetcher are removed in every exit path.
Clearing and upserting a namespace happen under a per-namespace lock, so
a ``delete_all`` never interleaves with another upsert to the same
namespace.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from pdf_rag.errors import PipelineError
from pdf_rag.ingestion.chunker import TextChunker
from pdf_rag.ingestion.embedder import Embedder, get_embedding_function
from pdf_rag.ingestion.fetcher import BlobFetcher, S3BlobFetcher, discard_scratch
from pdf_rag.ingestion.loader import PdfParser, join_pages
from pdf_rag.ingestion.models import (
    Chunk,
    DocumentOutcome,
    IngestionResult,
    MultiDocumentResult,
    SourceDocument,
    Stage,
)
from pdf_rag.retrieval.base import VectorStoreBase, namespace_for
from pdf_rag.retrieval.models import ContextSnippet, VectorRecord
from pdf_rag.retrieval.retriever import NamespaceRetriever

if TYPE_CHECKING:
    from pdf_rag.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_QUERY = "Create a mind map from this content"


def record_id(key: str, index: int) -> str:
    """Vector id for chunk *index* of *key*; lexical order equals chunk order."""
    return f"{key}-{index:06d}"


@dataclass
class _Run:
    """Mutable state of one document moving through the pipeline."""

    document: SourceDocument
    namespace: str
    stage: Stage = Stage.FETCHING
    scratch: Path | None = None
    chunks: list[Chunk] = field(default_factory=list)
    vectors: list[list[float]] = field(default_factory=list)
    preview: str = ""

    def advance(self, stage: Stage) -> None:
        self.stage = stage
        logger.info("[%s] %s", self.document.key, stage.value)


def _annotate(run: _Run, exc: Exception) -> PipelineError:
    """Attach the current stage to *exc*, wrapping non-pipeline errors."""
    if isinstance(exc, PipelineError):
        if exc.stage is None:
            exc.stage = run.stage
        return exc
    return PipelineError(f"{run.stage.value} failed for {run.document.key!r}: {exc}", stage=run.stage)


class IngestionOrchestrator:
    """Supervise the ingestion pipeline for one or several documents.

    Parameters
    ----------
    fetcher, parser, chunker, embedder, store:
        Pipeline components, leaf-first.
    retriever:
        Read side used for queries; built from *store* and *embedder*
        when omitted.
    default_query:
        Query issued by :meth:`ingest_many` when the caller supplies none.
    default_top_k:
        Matches requested per namespace when the caller supplies none.
    preview_chars:
        Length of the per-document text preview in multi-document results.
    """

    def __init__(
        self,
        fetcher: BlobFetcher,
        parser: PdfParser,
        chunker: TextChunker,
        embedder: Embedder,
        store: VectorStoreBase,
        retriever: NamespaceRetriever | None = None,
        *,
        default_query: str = DEFAULT_QUERY,
        default_top_k: int = 5,
        preview_chars: int = 500,
    ) -> None:
        self._fetcher = fetcher
        self._parser = parser
        self._chunker = chunker
        self._embedder = embedder
        self._store = store
        self._retriever = retriever or NamespaceRetriever(store, embedder, default_k=default_top_k)
        self.default_query = default_query
        self.default_top_k = default_top_k
        self.preview_chars = preview_chars
        self._locks: dict[str, asyncio.Lock] = {}

    # -- public API -----------------------------------------------------------

    async def ingest_document(self, document: SourceDocument | str) -> IngestionResult:
        """Run the full pipeline for one document.

        Re-ingesting a key first clears its namespace, so no chunk of a
        previous run survives.

        Raises
        ------
        PipelineError
            The first failure, with ``stage`` set to where it happened.
        """
        if isinstance(document, str):
            document = SourceDocument(key=document)
        run = await self._prepare(document)
        written = await self._persist(run)
        run.advance(Stage.DONE)
        return IngestionResult(
            document=document,
            namespace=run.namespace,
            chunks=run.chunks,
            vector_count=written,
        )

    async def ingest_many(
        self,
        keys: list[str],
        query: str | None = None,
        top_k: int | None = None,
    ) -> MultiDocumentResult:
        """Ingest several documents and gather source-tagged context.

        Per-document pipelines (fetch → embed) run concurrently; each
        prepared document is then cleared and upserted into its own
        namespace, and finally *query* is issued once per namespace.  A
        document failing at any point is recorded as skipped and never
        aborts the others.
        """
        query = query or self.default_query
        ordered_keys = list(dict.fromkeys(keys))
        documents: list[SourceDocument] = []
        outcomes: dict[str, DocumentOutcome] = {}
        for key in ordered_keys:
            try:
                documents.append(SourceDocument(key=key))
            except ValidationError as exc:
                outcomes[key] = self._rejected(key, exc)

        async with asyncio.TaskGroup() as group:
            prepare_tasks = [group.create_task(self._prepare_isolated(doc)) for doc in documents]
        runs = [task.result() for task in prepare_tasks]

        prepared: list[_Run] = []
        for doc, run in zip(documents, runs):
            if isinstance(run, DocumentOutcome):
                outcomes[doc.key] = run
            else:
                prepared.append(run)

        async with asyncio.TaskGroup() as group:
            persist_tasks = [group.create_task(self._persist_isolated(run)) for run in prepared]
        for task in persist_tasks:
            outcome = task.result()
            outcomes[outcome.document.key] = outcome

        snippets = await self._gather_snippets(query, top_k, outcomes, documents)

        result = MultiDocumentResult(
            query=query,
            documents=[outcomes[key] for key in ordered_keys],
            snippets=snippets,
        )
        logger.info(
            "Multi-document ingestion: %d ingested, %d skipped, %d snippets",
            len(result.ingested), len(result.skipped), len(result.snippets),
        )
        return result

    async def query_document(
        self,
        key: str,
        query: str,
        top_k: int | None = None,
    ) -> list[ContextSnippet]:
        """Top-K semantic query against the namespace of document *key*."""
        run = _Run(SourceDocument(key=key), namespace_for(key), stage=Stage.QUERYING)
        try:
            return await self._retriever.search(key, query, k=top_k or self.default_top_k)
        except Exception as exc:
            failure = _annotate(run, exc)
            logger.error("Query against %s failed: %s", key, failure)
            if failure is exc:
                raise
            raise failure from exc

    async def delete_document(self, key: str) -> None:
        """Remove every vector stored for document *key*."""
        run = _Run(SourceDocument(key=key), namespace_for(key), stage=Stage.CLEARING)
        try:
            async with self._lock(run.namespace):
                await asyncio.to_thread(self._store.delete_all, run.namespace)
        except Exception as exc:
            failure = _annotate(run, exc)
            if failure is exc:
                raise
            raise failure from exc
        logger.info("Deleted vectors of %s (%s)", key, run.namespace)

    # -- stages ---------------------------------------------------------------

    async def _prepare(self, document: SourceDocument) -> _Run:
        """Fetching → Parsing → Chunking → Embedding for one document."""
        run = _Run(document, namespace_for(document.key))
        try:
            run.advance(Stage.FETCHING)
            run.scratch = await asyncio.to_thread(self._fetcher.fetch, document.key)

            run.advance(Stage.PARSING)
            pages = await asyncio.to_thread(self._parser.parse, run.scratch)
            full_text, page_offsets = join_pages(pages)
            run.preview = full_text[: self.preview_chars]

            run.advance(Stage.CHUNKING)
            run.chunks = self._chunker.split(full_text, document.key, page_offsets)

            run.advance(Stage.EMBEDDING)
            run.vectors = await self._embedder.embed_many([c.text for c in run.chunks])
        except Exception as exc:
            failure = _annotate(run, exc)
            logger.error("Ingestion of %s failed at %s: %s", document.key, run.stage.value, failure)
            if failure is exc:
                raise
            raise failure from exc
        finally:
            self._cleanup(run.scratch)
        return run

    async def _persist(self, run: _Run) -> int:
        """Clearing → Upserting into the document's own namespace."""
        records = [
            VectorRecord(
                id=record_id(run.document.key, chunk.index),
                values=vector,
                metadata={
                    "text": chunk.text,
                    "source": run.document.key,
                    "source_name": run.document.name,
                    "page_number": chunk.page_number,
                    "chunk_index": chunk.index,
                },
            )
            for chunk, vector in zip(run.chunks, run.vectors)
        ]
        try:
            async with self._lock(run.namespace):
                run.advance(Stage.CLEARING)
                await asyncio.to_thread(self._store.delete_all, run.namespace)

                run.advance(Stage.UPSERTING)
                written = await asyncio.to_thread(self._store.upsert, run.namespace, records)
        except Exception as exc:
            failure = _annotate(run, exc)
            logger.error("Ingestion of %s failed at %s: %s", run.document.key, run.stage.value, failure)
            if failure is exc:
                raise
            raise failure from exc
        logger.info("Stored %d vectors for %s in %s", written, run.document.key, run.namespace)
        return written

    # -- multi-document helpers -----------------------------------------------

    async def _prepare_isolated(self, document: SourceDocument) -> _Run | DocumentOutcome:
        try:
            return await self._prepare(document)
        except PipelineError as exc:
            return self._skipped(document, exc)

    async def _persist_isolated(self, run: _Run) -> DocumentOutcome:
        try:
            written = await self._persist(run)
        except PipelineError as exc:
            return self._skipped(run.document, exc)
        run.advance(Stage.DONE)
        return DocumentOutcome(
            document=run.document,
            namespace=run.namespace,
            status="ingested",
            chunk_count=written,
            preview=run.preview,
        )

    async def _gather_snippets(
        self,
        query: str,
        top_k: int | None,
        outcomes: dict[str, DocumentOutcome],
        documents: list[SourceDocument],
    ) -> list[ContextSnippet]:
        ingested = [doc for doc in documents if outcomes[doc.key].status == "ingested"]
        if not ingested:
            return []

        try:
            embedding = await self._embedder.embed(query)
        except PipelineError:
            logger.error("Could not embed query %r; returning no snippets", query, exc_info=True)
            return []

        async def _search(doc: SourceDocument) -> list[ContextSnippet] | PipelineError:
            try:
                return await self._retriever.search_by_embedding(
                    doc.key, embedding, k=top_k or self.default_top_k, source_name=doc.name
                )
            except Exception as exc:
                return _annotate(_Run(doc, namespace_for(doc.key), stage=Stage.QUERYING), exc)

        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(_search(doc)) for doc in ingested]

        snippets: list[ContextSnippet] = []
        for doc, task in zip(ingested, tasks):
            found = task.result()
            if isinstance(found, PipelineError):
                logger.error("Query against %s failed: %s", doc.key, found)
                outcomes[doc.key] = self._skipped(doc, found)
                continue
            snippets.extend(found)
        return snippets

    # -- internals ------------------------------------------------------------

    def _skipped(self, document: SourceDocument, exc: PipelineError) -> DocumentOutcome:
        logger.warning("Skipping %s (failed at %s): %s", document.key, getattr(exc.stage, "value", exc.stage), exc)
        return DocumentOutcome(
            document=document,
            namespace=namespace_for(document.key),
            status="skipped",
            failed_stage=exc.stage,
            error=exc.message,
        )

    def _rejected(self, key: str, exc: ValidationError) -> DocumentOutcome:
        """Outcome for a key that cannot address a document at all."""
        reason = "; ".join(error["msg"] for error in exc.errors())
        logger.warning("Skipping invalid document key %r: %s", key, reason)
        return DocumentOutcome(
            # model_construct: the key itself is what failed validation
            document=SourceDocument.model_construct(key=key, name=key),
            namespace=namespace_for(key),
            status="skipped",
            failed_stage=Stage.FETCHING,
            error=f"Invalid document key {key!r}: {reason}",
        )

    def _lock(self, namespace: str) -> asyncio.Lock:
        return self._locks.setdefault(namespace, asyncio.Lock())

    @staticmethod
    def _cleanup(path: Path | None) -> None:
        """Delete the scratch file together with its private directory."""
        if path is None:
            return
        try:
            discard_scratch(path)
        except OSError:
            logger.error("Could not delete scratch file %s", path, exc_info=True)


def build_orchestrator(settings: Settings) -> IngestionOrchestrator:
    """Wire the production components described by *settings*."""
    from pdf_rag.retrieval.chroma_store import ChromaVectorStore

    embedder = Embedder(get_embedding_function(settings), concurrency=settings.embed_concurrency)
    store = ChromaVectorStore.from_settings(settings)
    return IngestionOrchestrator(
        fetcher=S3BlobFetcher.from_settings(settings),
        parser=PdfParser(),
        chunker=TextChunker(settings.chunk_size, settings.chunk_overlap),
        embedder=embedder,
        store=store,
        retriever=NamespaceRetriever(
            store,
            embedder,
            default_k=settings.default_top_k,
            score_threshold=settings.score_threshold,
        ),
        default_query=settings.mindmap_query,
        default_top_k=settings.default_top_k,
        preview_chars=settings.preview_chars,
    )
