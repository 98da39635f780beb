"""Streaming artifact downloads with byte-count verification and bounded retries."""

from __future__ import annotations

import http.client
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import urljoin
from urllib.request import HTTPRedirectHandler, OpenerDirector, Request, build_opener

from app.config import UpdateSettings, get_update_settings
from services.update.constants import DOWNLOAD_CHUNK_SIZE, USER_AGENT
from services.update.models import DownloadError, DownloadSession, IntegrityError, NetworkError

_LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

_PARTIAL_SUFFIX = ".part"


class _NoRedirectHandler(HTTPRedirectHandler):
    """Surface 3xx responses as :class:`HTTPError` so redirects are followed explicitly."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: D401 - urllib hook
        return None


def build_download_opener() -> OpenerDirector:
    return build_opener(_NoRedirectHandler)


class DownloadPipeline:
    """Download a URL to disk, verifying the result before it is kept.

    A download is accepted only when the bytes written match a positive
    ``Content-Length`` exactly and the file is at least ``min_artifact_bytes``
    long.  Rejected files are deleted and the download restarts from byte 0.
    Network failures and integrity failures share the same attempt budget;
    redirects never consume an attempt.
    """

    def __init__(
        self,
        *,
        opener: OpenerDirector | Any | None = None,
        settings: UpdateSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        min_artifact_bytes: int | None = None,
        retry_delay: float | None = None,
        timeout: float | None = None,
        max_redirects: int | None = None,
        max_attempts: int | None = None,
        user_agent: str = USER_AGENT,
    ) -> None:
        settings = settings or get_update_settings()
        self._opener = opener or build_download_opener()
        self._sleep = sleep
        self._min_bytes = settings.min_artifact_bytes if min_artifact_bytes is None else min_artifact_bytes
        self._retry_delay = settings.retry_delay_seconds if retry_delay is None else retry_delay
        self._timeout = settings.timeout_seconds if timeout is None else timeout
        self._max_redirects = settings.max_redirects if max_redirects is None else max_redirects
        self._max_attempts = settings.max_attempts if max_attempts is None else max_attempts
        self._user_agent = user_agent

    @property
    def min_artifact_bytes(self) -> int:
        return self._min_bytes

    def download(
        self,
        url: str,
        destination: Path,
        on_progress: ProgressCallback | None = None,
        *,
        max_attempts: int | None = None,
    ) -> DownloadSession:
        """Fetch ``url`` into ``destination`` and return the finished session.

        Raises the last :class:`IntegrityError` or :class:`NetworkError` once
        the attempt budget is exhausted, a non-retryable :class:`NetworkError`
        (4xx other than 429) immediately, and :class:`DownloadError` when the
        destination cannot be written.
        """

        attempts = max(1, max_attempts or self._max_attempts)
        destination = Path(destination)
        session = DownloadSession(url=url, destination_path=destination, max_attempts=attempts)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DownloadError(f"Cannot create download directory {destination.parent}: {exc}") from exc

        partial = _partial_path(destination)
        last_error: IntegrityError | NetworkError | None = None
        while session.attempt < attempts:
            session.begin_attempt()
            _LOGGER.info("Downloading %s (attempt %d/%d)", url, session.attempt, attempts)
            try:
                self._attempt(session, partial, on_progress)
            except NetworkError as exc:
                _discard(partial)
                if not exc.retryable:
                    _LOGGER.error("Download of %s failed: %s", url, exc)
                    raise
                last_error = exc
            except IntegrityError as exc:
                _discard(partial)
                last_error = exc
            except DownloadError:
                _discard(partial)
                raise
            else:
                _LOGGER.info(
                    "Downloaded %s to %s (%d bytes, %d retries)",
                    url,
                    destination,
                    session.bytes_written,
                    session.retries,
                )
                return session

            session.failures.append(str(last_error))
            _LOGGER.warning("Download attempt %d/%d failed: %s", session.attempt, attempts, last_error)
            if session.attempt < attempts and self._retry_delay > 0:
                self._sleep(self._retry_delay)

        if last_error is None:
            raise DownloadError(f"Download of {url} made no attempts")
        raise last_error

    def _attempt(
        self,
        session: DownloadSession,
        partial: Path,
        on_progress: ProgressCallback | None,
    ) -> None:
        response = self._open(session.url)
        try:
            total = _content_length(response)
            session.expected_bytes = total if total > 0 else None
            try:
                handle = partial.open("wb")
            except OSError as exc:
                raise DownloadError(f"Cannot write {partial}: {exc}") from exc
            with handle:
                self._stream(response, handle, session, total, on_progress)
        finally:
            response.close()

        self._verify(session, partial)
        try:
            os.replace(partial, session.destination_path)
        except OSError as exc:
            raise DownloadError(f"Cannot move download into place at {session.destination_path}: {exc}") from exc

    def _stream(self, response, handle, session: DownloadSession, total: int, on_progress) -> None:
        while True:
            try:
                chunk = response.read(DOWNLOAD_CHUNK_SIZE)
            except http.client.IncompleteRead:
                # Short body; verification reports the shortfall.
                break
            except (OSError, http.client.HTTPException) as exc:
                raise NetworkError(f"Connection lost while downloading: {exc}", url=session.url) from exc
            if not chunk:
                break
            try:
                handle.write(chunk)
            except OSError as exc:
                raise DownloadError(f"Cannot write download to disk: {exc}") from exc
            session.bytes_written += len(chunk)
            if on_progress is not None:
                on_progress(session.bytes_written, total)

    def _verify(self, session: DownloadSession, partial: Path) -> None:
        observed = partial.stat().st_size
        expected = session.expected_bytes
        if expected is not None and observed != expected:
            raise IntegrityError(
                f"Download truncated: received {observed} of {expected} bytes",
                observed_bytes=observed,
                expected_bytes=expected,
            )
        if observed < self._min_bytes:
            raise IntegrityError(
                f"Downloaded file is implausibly small ({observed} bytes, expected at least "
                f"{self._min_bytes}); treating it as corrupt",
                observed_bytes=observed,
                expected_bytes=expected,
            )

    def _open(self, url: str):
        current = url
        for _ in range(self._max_redirects + 1):
            request = Request(current, headers={"User-Agent": self._user_agent})
            try:
                response = self._opener.open(request, timeout=self._timeout)
            except HTTPError as exc:
                location = exc.headers.get("Location") if exc.headers is not None else None
                if getattr(exc, "fp", None) is not None:
                    exc.close()
                if 300 <= exc.code < 400 and location:
                    current = urljoin(current, location)
                    _LOGGER.debug("Following redirect %s to %s", exc.code, current)
                    continue
                raise NetworkError(
                    f"HTTP {exc.code}: {exc.reason}",
                    url=current,
                    status=exc.code,
                    retryable=exc.code >= 500 or exc.code == 429,
                ) from exc
            except (URLError, OSError) as exc:
                raise NetworkError(f"Download host unreachable: {exc}", url=current) from exc

            status = getattr(response, "status", None) or 200
            if status >= 300:
                response.close()
                raise NetworkError(f"Unexpected HTTP status {status}", url=current, status=status, retryable=False)
            return response

        raise NetworkError(f"Too many redirects fetching {url}", url=url, retryable=False)


def _content_length(response) -> int:
    headers = getattr(response, "headers", None)
    raw = headers.get("Content-Length") if headers is not None else None
    try:
        return max(0, int(raw)) if raw is not None else 0
    except (TypeError, ValueError):
        return 0


def _partial_path(destination: Path) -> Path:
    return destination.with_name(destination.name + _PARTIAL_SUFFIX)


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError:
        _LOGGER.debug("Unable to remove partial download %s", path, exc_info=True)


__all__ = ["DownloadPipeline", "ProgressCallback", "build_download_opener"]
