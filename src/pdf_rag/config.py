"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Blob storage (S3 or any S3-compatible endpoint)
    aws_region: str = "eu-north-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    s3_bucket: str = ""
    s3_endpoint_url: str = Field(
        default="",
        description="Custom endpoint for S3-compatible stores (MinIO, LocalStack). Empty means AWS.",
    )

    # Fetch
    fetch_max_attempts: int = Field(default=3, ge=1)
    fetch_retry_delay: float = Field(default=1.0, ge=0, description="Base backoff delay in seconds")
    fetch_timeout: float = Field(default=30.0, gt=0, description="Hard per-attempt transfer deadline in seconds")
    fetch_read_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Socket connect/read timeout; bounds one stalled read beyond fetch_timeout",
    )
    scratch_dir: Path = Path(tempfile.gettempdir()) / "pdf-rag"

    # Chunking
    chunk_size: int = 1000
    chunk_overlap: int = 200

    # Embedding
    embedding_provider: Literal["huggingface", "openai"] = "huggingface"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    openai_api_key: str = Field(default="", description="Only used when embedding_provider='openai'")
    embed_concurrency: int = Field(default=8, ge=1)

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_distance: Literal["cosine", "l2", "ip"] = "cosine"
    upsert_batch_size: int = Field(default=100, ge=1)

    # Query
    default_top_k: int = Field(default=5, ge=1)
    score_threshold: float | None = Field(default=None, description="Drop matches scoring below this")
    mindmap_query: str = "Create a mind map from this content"
    preview_chars: int = 500

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


# Singleton — import `settings` wherever needed.
settings = Settings()
