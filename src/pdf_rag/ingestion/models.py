"""Domain models for the ingestion pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pdf_rag.retrieval.models import ContextSnippet, assemble_context


class Stage(str, Enum):
    """Pipeline stages, in the order a single ingestion walks through them."""

    FETCHING = "fetching"
    PARSING = "parsing"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    CLEARING = "clearing"
    UPSERTING = "upserting"
    QUERYING = "querying"
    DONE = "done"
    FAILED = "failed"


def display_name(key: str) -> str:
    """Last path segment of a storage key (``"docs/a.pdf"`` → ``"a.pdf"``)."""
    return key.rstrip("/").rsplit("/", 1)[-1] or key


class SourceDocument(BaseModel):
    """A document addressed by its opaque storage key."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(min_length=1)
    name: str = ""

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("key") and not data.get("name"):
            data = {**data, "name": display_name(data["key"])}
        return data


class Page(BaseModel):
    """Trimmed text of one PDF page."""

    page_number: int = Field(ge=1)
    text: str


class Chunk(BaseModel):
    """A contiguous, size-bounded slice of a document's concatenated text.

    Attributes
    ----------
    text:
        The chunk content (whitespace-trimmed).
    source:
        Storage key of the originating document.
    index:
        Sequence number of the chunk within the document.
    page_number:
        Best-effort page attribution — metadata only.
    start_index:
        Character offset of ``text`` within the concatenated document text.
    """

    text: str
    source: str
    index: int
    page_number: int = 1
    start_index: int = 0


class IngestionResult(BaseModel):
    """Terminal value of a successful single-document ingestion."""

    document: SourceDocument
    namespace: str
    chunks: list[Chunk] = Field(default_factory=list)
    vector_count: int = 0

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)


class DocumentOutcome(BaseModel):
    """Per-document status within a multi-document request."""

    document: SourceDocument
    namespace: str
    status: Literal["ingested", "skipped"] = "ingested"
    chunk_count: int = 0
    failed_stage: Stage | None = None
    error: str | None = None
    preview: str = ""


class MultiDocumentResult(BaseModel):
    """Outcome of ingesting and querying several documents together."""

    query: str
    documents: list[DocumentOutcome] = Field(default_factory=list)
    snippets: list[ContextSnippet] = Field(default_factory=list)

    @property
    def ingested(self) -> list[DocumentOutcome]:
        return [d for d in self.documents if d.status == "ingested"]

    @property
    def skipped(self) -> list[DocumentOutcome]:
        return [d for d in self.documents if d.status == "skipped"]

    def context(self) -> str:
        """Render the snippets, one ``[From <name>]: <text>`` per line."""
        return assemble_context(self.snippets)

    def summaries(self) -> str:
        """Per-document previews for priming a synthesis prompt."""
        return "\n\n".join(
            f"Summary of {d.document.name}:\n{d.preview}..." for d in self.ingested if d.preview
        )
