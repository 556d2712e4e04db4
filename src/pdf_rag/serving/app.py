"""FastAPI application exposing document ingestion and retrieval as a REST API."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pdf_rag.config import settings
from pdf_rag.errors import PipelineError
from pdf_rag.ingestion.models import MultiDocumentResult, SourceDocument
from pdf_rag.ingestion.orchestrator import IngestionOrchestrator, build_orchestrator
from pdf_rag.retrieval.models import ContextSnippet, assemble_context

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="PDF RAG API",
    version="0.1.0",
    description="Ingest PDFs into a namespaced vector index and query them.",
)


@lru_cache(maxsize=1)
def get_orchestrator() -> IngestionOrchestrator:
    """Process-wide orchestrator built from the global settings."""
    return build_orchestrator(settings)


# ── Request / Response schemas ────────────────────────────────────────
class IngestRequest(BaseModel):
    """A single document to (re-)ingest."""

    file_key: str = Field(min_length=1)
    file_name: str = ""


class IngestResponse(BaseModel):
    source: str
    namespace: str
    chunk_count: int


class QueryRequest(BaseModel):
    """Top-K query against one document."""

    file_key: str = Field(min_length=1)
    query: str = Field(min_length=1)
    top_k: int | None = Field(default=None, ge=1, le=100)


class QueryResponse(BaseModel):
    snippets: list[ContextSnippet] = []
    context: str = ""


class BatchRequest(BaseModel):
    """Several documents ingested together, then queried once each."""

    file_keys: list[Annotated[str, Field(min_length=1)]] = Field(min_length=1)
    query: str | None = None
    top_k: int | None = Field(default=None, ge=1, le=100)


# ── Error handling ────────────────────────────────────────────────────
@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ── Routes ────────────────────────────────────────────────────────────
@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}


@app.post("/documents", response_model=IngestResponse)
async def ingest(
    request: IngestRequest,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> IngestResponse:
    """Download, chunk, embed and store one PDF, replacing earlier vectors."""
    result = await orchestrator.ingest_document(SourceDocument(key=request.file_key, name=request.file_name))
    return IngestResponse(source=result.document.key, namespace=result.namespace, chunk_count=result.chunk_count)


@app.post("/documents/query", response_model=QueryResponse)
async def query(
    request: QueryRequest,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> QueryResponse:
    """Return the passages of one document closest to the query."""
    snippets = await orchestrator.query_document(request.file_key, request.query, request.top_k)
    return QueryResponse(snippets=snippets, context=assemble_context(snippets))


@app.post("/documents/batch", response_model=MultiDocumentResult)
async def ingest_batch(
    request: BatchRequest,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> MultiDocumentResult:
    """Ingest several PDFs and gather source-tagged context across them."""
    return await orchestrator.ingest_many(request.file_keys, request.query, request.top_k)


@app.delete("/documents/{file_key:path}", status_code=204)
async def delete(
    file_key: str,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Drop every vector stored for a document."""
    await orchestrator.delete_document(file_key)
    return Response(status_code=204)
