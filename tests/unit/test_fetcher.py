"""Unit tests for the S3 blob fetcher.

The boto3 client is a ``MagicMock``; ``time.sleep`` is patched so retry
backoff is observed instead of waited for.
"""

from __future__ import annotations

import itertools
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest
from botocore.exceptions import (
    ClientError,
    EndpointConnectionError,
    IncompleteReadError,
    ReadTimeoutError,
    ResponseStreamingError,
)

from pdf_rag.config import Settings
from pdf_rag.errors import FetchError
from pdf_rag.ingestion.fetcher import S3BlobFetcher, create_s3_client, discard_scratch, scratch_path

PDF_BYTES = [b"%PDF-1.4\n", b"1 0 obj << >> endobj\n", b"%%EOF\n"]


def _body(chunks: list[bytes] | None = None) -> MagicMock:
    body = MagicMock()
    body.iter_chunks.return_value = iter(chunks or PDF_BYTES)
    return body


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "GetObject")


def _fetcher(client: MagicMock, scratch_dir: Path, **kwargs) -> S3BlobFetcher:
    return S3BlobFetcher(client, "bucket", scratch_dir=scratch_dir, **kwargs)


class TestS3BlobFetcher:
    def test_downloads_into_scratch_file(self, scratch_dir: Path) -> None:
        client = MagicMock()
        client.get_object.return_value = {"Body": _body()}

        path = _fetcher(client, scratch_dir).fetch("uploads/report.pdf")

        assert path.parent.parent == scratch_dir
        assert path.name == "report.pdf"
        assert path.read_bytes() == b"".join(PDF_BYTES)
        client.get_object.assert_called_once_with(Bucket="bucket", Key="uploads/report.pdf")

    def test_retries_timeouts_then_succeeds(self, scratch_dir: Path) -> None:
        """Timeouts on attempts 1 and 2, success on 3 → backoff of 1×, 2×."""
        client = MagicMock()
        client.get_object.side_effect = [
            ReadTimeoutError(endpoint_url="https://s3"),
            ReadTimeoutError(endpoint_url="https://s3"),
            {"Body": _body()},
        ]

        with patch("time.sleep") as sleep:
            path = _fetcher(client, scratch_dir, retry_delay=1.0).fetch("a.pdf")

        assert path.is_file()
        assert path.read_bytes().startswith(b"%PDF-")
        assert sleep.call_args_list == [call(1.0), call(2.0)]
        assert client.get_object.call_count == 3

    def test_network_errors_are_retried(self, scratch_dir: Path) -> None:
        client = MagicMock()
        client.get_object.side_effect = [EndpointConnectionError(endpoint_url="https://s3"), {"Body": _body()}]

        with patch("time.sleep") as sleep:
            path = _fetcher(client, scratch_dir, retry_delay=0.5).fetch("a.pdf")

        assert path.is_file()
        sleep.assert_called_once_with(0.5)

    @pytest.mark.parametrize(
        "reset",
        [
            ResponseStreamingError(error="Connection reset by peer"),
            IncompleteReadError(actual_bytes=9, expected_bytes=4096),
        ],
    )
    def test_connection_dropped_mid_stream_is_retried(self, scratch_dir: Path, reset: Exception) -> None:
        def _dropping_chunks(**_):
            yield b"%PDF-1.4\n"
            raise reset

        dropped = MagicMock()
        dropped.iter_chunks.side_effect = _dropping_chunks
        client = MagicMock()
        client.get_object.side_effect = [{"Body": dropped}, {"Body": _body()}]

        with patch("time.sleep") as sleep:
            path = _fetcher(client, scratch_dir, retry_delay=1.0).fetch("a.pdf")

        assert path.read_bytes() == b"".join(PDF_BYTES)
        assert client.get_object.call_count == 2
        sleep.assert_called_once_with(1.0)
        assert [p for p in scratch_dir.rglob("*") if p.is_file()] == [path]

    def test_retries_exhausted_raises_fetch_error(self, scratch_dir: Path) -> None:
        client = MagicMock()
        client.get_object.side_effect = ReadTimeoutError(endpoint_url="https://s3")

        with patch("time.sleep") as sleep, pytest.raises(FetchError, match="after 3 attempts"):
            _fetcher(client, scratch_dir, max_attempts=3).fetch("a.pdf")

        assert client.get_object.call_count == 3
        assert sleep.call_count == 2

    def test_transfer_deadline_deletes_partial_file(self, scratch_dir: Path) -> None:
        """A transfer slower than the deadline times out and leaves nothing behind."""
        client = MagicMock()
        client.get_object.side_effect = lambda **_: {"Body": _body()}

        with (
            patch("time.sleep"),
            patch("time.monotonic", side_effect=itertools.count(0, 100)),
            pytest.raises(FetchError, match="after 2 attempts"),
        ):
            _fetcher(client, scratch_dir, max_attempts=2, timeout=30).fetch("slow.pdf")

        assert list(scratch_dir.iterdir()) == []

    @pytest.mark.parametrize("code", ["NoSuchKey", "404"])
    def test_missing_object_is_not_retried(self, scratch_dir: Path, code: str) -> None:
        client = MagicMock()
        client.get_object.side_effect = _client_error(code)

        with patch("time.sleep") as sleep, pytest.raises(FetchError) as excinfo:
            _fetcher(client, scratch_dir).fetch("missing.pdf")

        assert excinfo.value.not_found
        assert excinfo.value.status_code == 404
        client.get_object.assert_called_once()
        sleep.assert_not_called()

    @pytest.mark.parametrize("code", ["AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"])
    def test_auth_failures_are_not_retried(self, scratch_dir: Path, code: str) -> None:
        client = MagicMock()
        client.get_object.side_effect = _client_error(code)

        with patch("time.sleep") as sleep, pytest.raises(FetchError, match="denied"):
            _fetcher(client, scratch_dir).fetch("secret.pdf")

        client.get_object.assert_called_once()
        sleep.assert_not_called()

    def test_other_client_errors_propagate_immediately(self, scratch_dir: Path) -> None:
        client = MagicMock()
        client.get_object.side_effect = _client_error("InternalError")

        with patch("time.sleep") as sleep, pytest.raises(FetchError, match="InternalError"):
            _fetcher(client, scratch_dir).fetch("a.pdf")

        sleep.assert_not_called()


def test_scratch_paths_are_unique(tmp_path: Path) -> None:
    paths = {scratch_path(tmp_path, "docs/a.pdf") for _ in range(100)}
    assert len(paths) == 100
    assert len({p.parent for p in paths}) == 100


def test_discarding_one_scratch_file_keeps_other_runs_intact(tmp_path: Path) -> None:
    """A finished run removing its directory never pulls the rug from a pending download."""
    finished = scratch_path(tmp_path, "a.pdf")
    finished.write_bytes(b"%PDF-1.4")
    pending = scratch_path(tmp_path, "b.pdf")

    discard_scratch(finished)

    assert not finished.parent.exists()
    assert pending.parent.is_dir()
    pending.write_bytes(b"%PDF-1.4")
    assert pending.is_file()


def test_concurrent_downloads_survive_each_others_cleanup(scratch_dir: Path) -> None:
    """b's transfer starts only after a's scratch file has been discarded."""
    a_discarded = threading.Event()
    client = MagicMock()

    def _get_object(Bucket: str, Key: str) -> dict:
        if Key == "b.pdf":
            assert a_discarded.wait(timeout=5)
        return {"Body": _body()}

    client.get_object.side_effect = _get_object
    fetcher = _fetcher(client, scratch_dir)

    def _fetch_a() -> None:
        discard_scratch(fetcher.fetch("a.pdf"))
        a_discarded.set()

    with ThreadPoolExecutor(max_workers=2) as pool:
        b_future = pool.submit(fetcher.fetch, "b.pdf")
        pool.submit(_fetch_a).result(timeout=10)
        b_path = b_future.result(timeout=10)

    assert b_path.read_bytes() == b"".join(PDF_BYTES)


def test_from_settings_uses_fetch_configuration(tmp_path: Path) -> None:
    settings = Settings(
        s3_bucket="notebooks",
        scratch_dir=tmp_path,
        fetch_max_attempts=5,
        fetch_retry_delay=0.25,
        fetch_timeout=10,
    )
    fetcher = S3BlobFetcher.from_settings(settings, client=MagicMock())
    assert fetcher.max_attempts == 5
    assert fetcher.retry_delay == 0.25
    assert fetcher.timeout == 10
    assert fetcher.scratch_dir == tmp_path


def test_create_s3_client_disables_botocore_retries() -> None:
    settings = Settings(
        aws_access_key_id="AKIA",
        aws_secret_access_key="secret",
        s3_endpoint_url="http://minio:9000",
        fetch_timeout=30,
        fetch_read_timeout=5,
    )
    with patch("boto3.client") as factory:
        create_s3_client(settings)

    _, kwargs = factory.call_args
    assert factory.call_args.args == ("s3",)
    assert kwargs["aws_access_key_id"] == "AKIA"
    assert kwargs["endpoint_url"] == "http://minio:9000"
    assert kwargs["config"].retries["max_attempts"] == 1
    # a stalled read is bounded separately from the whole-transfer deadline
    assert kwargs["config"].read_timeout == 5
    assert kwargs["config"].connect_timeout == 5
