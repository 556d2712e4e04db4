"""Blob fetcher — download a source object into a local scratch file.

The fetcher is the only retry layer for downloads: the boto3 client is
built with botocore retries disabled, and :class:`S3BlobFetcher` retries
transient failures itself with exponential backoff.  Each attempt is
bounded by a hard transfer deadline; a timed-out attempt deletes its
partial file before the next one starts.

Usage::

    from pdf_rag.config import settings
    from pdf_rag.ingestion.fetcher import S3BlobFetcher, create_s3_client

    fetcher = S3BlobFetcher(create_s3_client(settings), bucket=settings.s3_bucket)
    path = fetcher.fetch("uploads/report.pdf")   # caller deletes ``path``
"""

from __future__ import annotations

import logging
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    IncompleteReadError,
    NoCredentialsError,
    ReadTimeoutError,
    ResponseStreamingError,
)

from pdf_rag.errors import FetchError

if TYPE_CHECKING:
    from pdf_rag.config import Settings

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "404", "NotFound"})
_AUTH_CODES = frozenset({
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "403",
})
_TRANSIENT_ERRORS = (
    ReadTimeoutError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ConnectionClosedError,
    # connection dropped while the body was streaming
    ResponseStreamingError,
    IncompleteReadError,
)

_READ_CHUNK_BYTES = 64 * 1024


class DownloadTimeout(Exception):
    """A single transfer attempt exceeded its deadline."""


class BlobFetcher(ABC):
    """Backend-agnostic ``key → local file`` interface."""

    @abstractmethod
    def fetch(self, key: str) -> Path:
        """Download *key* into a new scratch file and return its path.

        The caller owns the returned file and must delete it.

        Raises
        ------
        FetchError
            Object missing, credentials rejected, or retries exhausted.
        """
        ...


def scratch_path(scratch_dir: Path, key: str) -> Path:
    """Scratch location for *key* inside a new private directory under *scratch_dir*.

    The directory belongs to one download only, so removing it once it is
    empty never affects a concurrent run sharing *scratch_dir*.
    """
    scratch_dir = Path(scratch_dir)
    scratch_dir.mkdir(parents=True, exist_ok=True)
    run_dir = Path(tempfile.mkdtemp(prefix="fetch-", dir=scratch_dir))
    return run_dir / (Path(key).name or "download")


def discard_scratch(path: Path) -> None:
    """Delete *path* and its private directory if nothing else is left in it."""
    path.unlink(missing_ok=True)
    try:
        path.parent.rmdir()
    except OSError:
        logger.debug("Scratch directory %s not removed", path.parent, exc_info=True)


def create_s3_client(settings: Settings) -> Any:
    """Build the boto3 S3 client described by *settings*.

    ``read_timeout`` bounds a single stalled socket read, which the
    per-attempt deadline cannot interrupt; one attempt therefore lasts at
    most ``fetch_timeout + fetch_read_timeout``.
    """
    kwargs: dict[str, Any] = {
        "region_name": settings.aws_region,
        "config": Config(
            connect_timeout=settings.fetch_read_timeout,
            read_timeout=settings.fetch_read_timeout,
            retries={"max_attempts": 1, "mode": "standard"},
        ),
    }
    if settings.aws_access_key_id:
        kwargs["aws_access_key_id"] = settings.aws_access_key_id
        kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
    if settings.s3_endpoint_url:
        kwargs["endpoint_url"] = settings.s3_endpoint_url
    return boto3.client("s3", **kwargs)


class S3BlobFetcher(BlobFetcher):
    """Fetch objects from one S3 bucket with bounded retries.

    Parameters
    ----------
    client:
        A boto3 S3 client (see :func:`create_s3_client`).
    bucket:
        Bucket holding the source documents.
    scratch_dir:
        Directory for downloaded files; created on demand.
    max_attempts:
        Total number of attempts for transient failures.
    retry_delay:
        Base backoff in seconds; attempt *n* waits ``retry_delay * 2**(n-1)``.
    timeout:
        Hard deadline in seconds for one transfer attempt.
    """

    def __init__(
        self,
        client: Any,
        bucket: str,
        *,
        scratch_dir: Path,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
    ) -> None:
        self._client = client
        self._bucket = bucket
        self.scratch_dir = Path(scratch_dir)
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, client: Any | None = None) -> S3BlobFetcher:
        return cls(
            client if client is not None else create_s3_client(settings),
            settings.s3_bucket,
            scratch_dir=settings.scratch_dir,
            max_attempts=settings.fetch_max_attempts,
            retry_delay=settings.fetch_retry_delay,
            timeout=settings.fetch_timeout,
        )

    def fetch(self, key: str) -> Path:
        last_exc: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                path = self._download(key)
                logger.info("Fetched s3://%s/%s → %s (attempt %d)", self._bucket, key, path, attempt)
                return path
            except (DownloadTimeout, *_TRANSIENT_ERRORS) as exc:
                last_exc = exc
                if attempt < self.max_attempts:
                    wait = self.retry_delay * 2 ** (attempt - 1)
                    logger.warning(
                        "Retry %d/%d for %s (wait %.1fs): %s",
                        attempt, self.max_attempts, key, wait, exc,
                    )
                    time.sleep(wait)
            except ClientError as exc:
                raise self._classify(key, exc) from exc
            except NoCredentialsError as exc:
                raise FetchError(f"No credentials available to fetch {key!r}") from exc
            except BotoCoreError as exc:
                raise FetchError(f"Failed to fetch {key!r}: {exc}") from exc

        raise FetchError(
            f"Failed to fetch {key!r} after {self.max_attempts} attempts: {last_exc}"
        ) from last_exc

    # -- internals ------------------------------------------------------------

    def _download(self, key: str) -> Path:
        """One transfer attempt; removes the partial file on any failure."""
        path = scratch_path(self.scratch_dir, key)
        deadline = time.monotonic() + self.timeout

        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            body = response.get("Body")
            if body is None:
                raise FetchError(f"Empty response body for {key!r}")
            with open(path, "wb") as fh:
                for chunk in body.iter_chunks(chunk_size=_READ_CHUNK_BYTES):
                    if time.monotonic() > deadline:
                        raise DownloadTimeout(f"Download of {key!r} exceeded {self.timeout:.0f}s")
                    fh.write(chunk)
        except BaseException:
            discard_scratch(path)
            raise
        return path

    def _classify(self, key: str, exc: ClientError) -> FetchError:
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        if code in _NOT_FOUND_CODES:
            return FetchError(f"Object {key!r} not found in bucket {self._bucket!r}", not_found=True)
        if code in _AUTH_CODES:
            return FetchError(f"Access to {key!r} denied ({code}); check storage credentials")
        return FetchError(f"Failed to fetch {key!r}: {code or exc}")
