"""Error taxonomy for the ingestion and retrieval pipeline.

Every error carries an ``error_code`` and an HTTP-equivalent
``status_code`` so the request layer can render it without inspecting
the type.  ``stage`` is filled in by the orchestrator when the error
crosses a pipeline stage boundary.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    error_code = "PIPELINE_ERROR"
    status_code = 500

    def __init__(self, message: str, *, stage: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    def to_dict(self) -> dict[str, Any]:
        stage = getattr(self.stage, "value", self.stage)
        return {"error": self.error_code, "message": self.message, "stage": stage}


class FetchError(PipelineError):
    """The source object could not be downloaded."""

    error_code = "FETCH_ERROR"
    status_code = 502

    def __init__(self, message: str, *, not_found: bool = False, stage: Any = None) -> None:
        super().__init__(message, stage=stage)
        self.not_found = not_found
        if not_found:
            self.status_code = 404


class ParseError(PipelineError):
    """The source bytes are not a readable PDF. Never retried."""

    error_code = "PARSE_ERROR"
    status_code = 422


class ChunkingError(PipelineError):
    """Invalid chunker configuration or an unexpected splitter failure."""

    error_code = "CHUNKING_ERROR"
    status_code = 500


class EmbeddingError(PipelineError):
    """The embedding provider rejected or failed a request."""

    error_code = "EMBEDDING_ERROR"
    status_code = 502


class VectorStoreError(PipelineError):
    """An upsert, query or delete against the vector index failed.

    ``upserted`` is the number of records written before the failure;
    earlier batches are not rolled back.
    """

    error_code = "VECTOR_STORE_ERROR"
    status_code = 502

    def __init__(self, message: str, *, upserted: int = 0, stage: Any = None) -> None:
        super().__init__(message, stage=stage)
        self.upserted = upserted
