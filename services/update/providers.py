"""Release provider implementations."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from app.config import get_release_index_url, get_update_settings
from services.update.constants import USER_AGENT
from services.update.models import NetworkError, ReleaseAsset, ReleaseInfo
from services.update.release_assets import classify_asset
from services.update.versioning import normalize_version


_LOGGER = logging.getLogger(__name__)

LOCAL_RELEASE_METADATA = "release.json"


class ReleaseProvider(Protocol):
    """Protocol describing release metadata providers."""

    def get_latest_release(self) -> ReleaseInfo:
        """Return the newest published release.

        Raises :class:`NetworkError` when the index is unreachable, answers
        with a non-success status or returns malformed data.
        """


class GitHubReleaseProvider:
    """Fetch release metadata from the GitHub Releases API."""

    def __init__(
        self,
        api_url: str | None = None,
        *,
        timeout: float | None = None,
        user_agent: str = USER_AGENT,
    ) -> None:
        self._api_url = api_url or get_release_index_url()
        self._timeout = timeout if timeout is not None else get_update_settings().timeout_seconds
        self._user_agent = user_agent

    @property
    def api_url(self) -> str:
        return self._api_url

    def get_latest_release(self) -> ReleaseInfo:
        data = self._request_json(self._api_url)
        if not isinstance(data, dict):
            raise NetworkError(
                "Release index returned an unexpected payload", url=self._api_url, retryable=False
            )

        version = normalize_version(str(data.get("tag_name") or data.get("name") or ""))
        if not version:
            raise NetworkError("Release index entry has no version tag", url=self._api_url, retryable=False)

        assets = tuple(_parse_assets(data.get("assets")))
        _LOGGER.info("GitHub release %s lists %d asset(s)", version, len(assets))
        return ReleaseInfo(
            version=version,
            assets=assets,
            release_notes=_clean_text(data.get("body")),
            page_url=_clean_text(data.get("html_url")),
        )

    def _request_json(self, url: str) -> Any:
        request = Request(
            url,
            headers={"User-Agent": self._user_agent, "Accept": "application/vnd.github+json"},
        )
        try:
            with urlopen(request, timeout=self._timeout) as response:  # nosec - GitHub API over HTTPS
                raw = response.read()
        except HTTPError as exc:
            raise NetworkError(
                f"Release index request failed with HTTP {exc.code}",
                url=url,
                status=exc.code,
                retryable=exc.code >= 500 or exc.code == 429,
            ) from exc
        except (URLError, OSError) as exc:
            raise NetworkError(f"Release index unreachable: {exc}", url=url) from exc

        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise NetworkError("Release index returned malformed JSON", url=url, retryable=False) from exc


class LocalFolderReleaseProvider:
    """Serve release metadata from a local directory for testing.

    The folder holds a ``release.json`` such as::

        {"version": "1.2.0", "assets": ["StreamGo-1.2.0-Linux.AppImage"],
         "release_notes": "..."}
    """

    def __init__(self, folder: Path) -> None:
        self._folder = Path(folder)

    def get_latest_release(self) -> ReleaseInfo:
        metadata_path = self._folder / LOCAL_RELEASE_METADATA
        try:
            data = json.loads(metadata_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise NetworkError(f"Local release metadata missing: {metadata_path}", retryable=False) from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise NetworkError(f"Failed to read local release metadata: {exc}", retryable=False) from exc

        if not isinstance(data, dict):
            raise NetworkError("Local release metadata must be a JSON object", retryable=False)

        version = normalize_version(str(data.get("version", "")))
        if not version:
            raise NetworkError("Local release metadata has no version", retryable=False)

        assets: list[ReleaseAsset] = []
        for name in data.get("assets") or ():
            if not isinstance(name, str) or not name.strip():
                continue
            asset_path = self._folder / name.strip()
            if not asset_path.exists():
                _LOGGER.debug("Local release asset missing: %s", asset_path)
                continue
            assets.append(
                classify_asset(asset_path.name, asset_path.resolve().as_uri(), size=asset_path.stat().st_size)
            )

        _LOGGER.info("Local release %s supplies %d asset(s)", version, len(assets))
        return ReleaseInfo(
            version=version,
            assets=tuple(assets),
            release_notes=_clean_text(data.get("release_notes") or data.get("notes")),
            page_url=_clean_text(data.get("page_url")),
        )


def _parse_assets(raw: object) -> Iterable[ReleaseAsset]:
    if not isinstance(raw, list):
        return
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name") or "").strip()
        url = entry.get("browser_download_url")
        if not name or not isinstance(url, str) or not url.strip():
            continue
        size = entry.get("size")
        yield classify_asset(name, url.strip(), size=size if isinstance(size, int) and size > 0 else None)


def _clean_text(raw: object) -> str | None:
    if not isinstance(raw, str):
        return None
    cleaned = raw.strip()
    return cleaned or None


__all__ = [
    "GitHubReleaseProvider",
    "LOCAL_RELEASE_METADATA",
    "LocalFolderReleaseProvider",
    "ReleaseProvider",
]
