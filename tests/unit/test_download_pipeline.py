from __future__ import annotations

from pathlib import Path
from urllib.error import URLError

import pytest

from services.update import DownloadError, DownloadPipeline, IntegrityError, NetworkError
from tests.unit.update_test_utils import (
    ONE_MB,
    TEST_SETTINGS,
    FakeOpener,
    FakeResponse,
    http_error,
    http_response,
    serve_files,
)

URL = "https://downloads.invalid/StreamGo-9.9.9-Linux.AppImage"


def _pipeline(opener: FakeOpener | None = None, sleeps: list[float] | None = None, **kwargs) -> DownloadPipeline:
    recorded = sleeps if sleeps is not None else []
    return DownloadPipeline(opener=opener, settings=TEST_SETTINGS, sleep=recorded.append, **kwargs)


def test_truncated_stream_fails_with_integrity_error_after_all_attempts(tmp_path: Path) -> None:
    opener = FakeOpener()
    opener.queue(URL, lambda: http_response(b"x" * 900, content_length=1000))
    sleeps: list[float] = []
    destination = tmp_path / "artifact.AppImage"

    with pytest.raises(IntegrityError) as excinfo:
        _pipeline(opener, sleeps, min_artifact_bytes=100).download(URL, destination)

    error = excinfo.value
    assert error.observed_bytes == 900
    assert error.expected_bytes == 1000
    assert "900" in str(error) and "1000" in str(error)
    assert len(opener.requests) == 3
    assert sleeps == [0.5, 0.5]
    assert not destination.exists()
    assert list(tmp_path.iterdir()) == []


def test_small_artifact_with_matching_length_is_treated_as_corrupt(tmp_path: Path) -> None:
    payload = b"z" * (10 * 1024)
    opener = FakeOpener()
    opener.queue(URL, lambda: http_response(payload))

    with pytest.raises(IntegrityError) as excinfo:
        _pipeline(opener).download(URL, tmp_path / "artifact.AppImage", max_attempts=2)

    assert excinfo.value.observed_bytes == 10 * 1024
    assert len(opener.requests) == 2
    assert not (tmp_path / "artifact.AppImage").exists()


def test_retry_restarts_from_scratch_and_succeeds(tmp_path: Path) -> None:
    payload = b"a" * (ONE_MB + 10)
    opener = FakeOpener()
    opener.queue(
        URL,
        http_response(payload[:1000], content_length=len(payload)),
        lambda: http_response(payload),
    )
    progress: list[tuple[int, int]] = []

    session = _pipeline(opener).download(URL, tmp_path / "artifact.AppImage", lambda done, total: progress.append((done, total)))

    assert session.attempt == 2
    assert session.retries == 1
    assert session.bytes_written == len(payload)
    assert session.expected_bytes == len(payload)
    assert len(session.failures) == 1
    assert (tmp_path / "artifact.AppImage").read_bytes() == payload
    assert progress[0] == (1000, len(payload))
    second_attempt = [done for done, _ in progress[1:]]
    assert second_attempt == sorted(second_attempt)
    assert progress[-1] == (len(payload), len(payload))


def test_redirects_are_followed_without_consuming_attempts(tmp_path: Path) -> None:
    payload = b"r" * ONE_MB
    target = "https://objects.invalid/files/StreamGo.AppImage"
    opener = FakeOpener()
    opener.queue(URL, lambda: http_error(URL, 302, location="https://cdn.invalid/step"))
    opener.queue("https://cdn.invalid/step", lambda: http_error("https://cdn.invalid/step", 301, location="/files/x"))
    opener.queue("https://cdn.invalid/files/x", lambda: http_error("https://cdn.invalid/files/x", 307, location=target))
    opener.queue(target, lambda: http_response(payload))

    session = _pipeline(opener).download(URL, tmp_path / "artifact.AppImage", max_attempts=1)

    assert session.attempt == 1
    assert session.retries == 0
    assert opener.requests == [URL, "https://cdn.invalid/step", "https://cdn.invalid/files/x", target]


def test_redirect_loop_is_reported(tmp_path: Path) -> None:
    opener = FakeOpener()
    opener.queue(URL, lambda: http_error(URL, 302, location=URL))

    with pytest.raises(NetworkError, match="Too many redirects"):
        _pipeline(opener).download(URL, tmp_path / "artifact.AppImage")


def test_network_failures_share_the_attempt_budget(tmp_path: Path) -> None:
    payload = b"n" * ONE_MB
    opener = FakeOpener()
    opener.queue(
        URL,
        URLError(ConnectionResetError("reset by peer")),
        lambda: http_error(URL, 503),
        lambda: http_response(payload),
    )
    sleeps: list[float] = []

    session = _pipeline(opener, sleeps).download(URL, tmp_path / "artifact.AppImage")

    assert session.attempt == 3
    assert sleeps == [0.5, 0.5]
    assert (tmp_path / "artifact.AppImage").stat().st_size == ONE_MB


def test_persistent_server_errors_surface_status(tmp_path: Path) -> None:
    opener = FakeOpener()
    opener.queue(URL, lambda: http_error(URL, 502))

    with pytest.raises(NetworkError) as excinfo:
        _pipeline(opener).download(URL, tmp_path / "artifact.AppImage")

    assert excinfo.value.status == 502
    assert len(opener.requests) == 3


def test_client_errors_fail_fast(tmp_path: Path) -> None:
    opener = FakeOpener()
    opener.queue(URL, lambda: http_error(URL, 404))

    with pytest.raises(NetworkError) as excinfo:
        _pipeline(opener).download(URL, tmp_path / "artifact.AppImage")

    assert excinfo.value.status == 404
    assert excinfo.value.retryable is False
    assert len(opener.requests) == 1


def test_unknown_length_only_checks_plausibility_floor(tmp_path: Path) -> None:
    payload = b"u" * ONE_MB
    opener = FakeOpener()
    opener.queue(URL, lambda: http_response(payload, content_length=-1))
    progress: list[tuple[int, int]] = []

    session = _pipeline(opener).download(URL, tmp_path / "artifact.AppImage", lambda d, t: progress.append((d, t)))

    assert session.expected_bytes is None
    assert all(total == 0 for _, total in progress)


def test_unwritable_destination_raises_download_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file", encoding="utf-8")
    opener = FakeOpener()
    opener.queue(URL, lambda: http_response(b"x" * ONE_MB))

    with pytest.raises(DownloadError):
        _pipeline(opener).download(URL, blocker / "artifact.AppImage")


def test_end_to_end_download_from_local_server(tmp_path: Path) -> None:
    payload = bytes(range(256)) * (5 * ONE_MB // 256)
    assert len(payload) == 5 * ONE_MB
    destination = tmp_path / "downloads" / "StreamGo-9.9.9-Linux.AppImage"

    with serve_files({"/artifact": payload}, redirects={"/latest": "/artifact"}) as base_url:
        pipeline = DownloadPipeline(settings=TEST_SETTINGS, sleep=lambda _: None)
        session = pipeline.download(f"{base_url}/latest", destination)

    assert session.retries == 0
    assert session.failures == []
    assert destination.stat().st_size == 5 * ONE_MB
    assert destination.read_bytes() == payload


class DroppingResponse(FakeResponse):
    """Delivers the first chunk, then the connection is reset."""

    def __init__(self, payload: bytes, *, content_length: int) -> None:
        super().__init__(payload, headers={"Content-Length": str(content_length)})
        self._reads = 0

    def read(self, size: int = -1) -> bytes:
        self._reads += 1
        if self._reads > 1:
            raise ConnectionResetError(104, "Connection reset by peer")
        return super().read(size)


def test_connection_reset_mid_stream_is_retried_from_scratch(tmp_path: Path) -> None:
    payload = b"d" * (ONE_MB + 512)
    opener = FakeOpener()
    opener.queue(
        URL,
        lambda: DroppingResponse(payload[:4096], content_length=len(payload)),
        lambda: http_response(payload),
    )
    sleeps: list[float] = []
    destination = tmp_path / "artifact.AppImage"

    session = _pipeline(opener, sleeps).download(URL, destination)

    assert session.attempt == 2
    assert "Connection lost" in session.failures[0]
    assert sleeps == [0.5]
    assert destination.read_bytes() == payload
    assert not (tmp_path / "artifact.AppImage.part").exists()


def test_connection_reset_on_every_attempt_surfaces_network_error(tmp_path: Path) -> None:
    opener = FakeOpener()
    opener.queue(URL, lambda: DroppingResponse(b"d" * 4096, content_length=ONE_MB))

    with pytest.raises(NetworkError, match="Connection lost") as excinfo:
        _pipeline(opener).download(URL, tmp_path / "artifact.AppImage")

    assert isinstance(excinfo.value.__cause__, ConnectionResetError)
    assert excinfo.value.retryable is True
    assert len(opener.requests) == 3
    assert list(tmp_path.iterdir()) == []


def test_zero_attempt_budget_still_downloads_once(tmp_path: Path) -> None:
    opener = FakeOpener()
    opener.queue(URL, http_error(URL, 503))

    with pytest.raises(NetworkError) as excinfo:
        _pipeline(opener, max_attempts=0).download(URL, tmp_path / "artifact.AppImage")

    assert excinfo.value.status == 503
    assert len(opener.requests) == 1
