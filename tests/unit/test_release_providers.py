from __future__ import annotations

import json
from pathlib import Path
from urllib.error import URLError

import pytest

from services.update import GitHubReleaseProvider, LocalFolderReleaseProvider, NetworkError
from shared.platforms import ARCH_X64, Platform
from tests.unit.update_test_utils import FakeResponse, build_release, github_payload, http_error

API_URL = "https://api.example.invalid/repos/streamgo/releases/latest"


def _patch_urlopen(monkeypatch: pytest.MonkeyPatch, outcome, seen: list | None = None) -> None:
    def fake_urlopen(request, timeout=None):
        if seen is not None:
            seen.append((request, timeout))
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    monkeypatch.setattr("services.update.providers.urlopen", fake_urlopen)


def test_github_provider_parses_release(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list = []
    _patch_urlopen(monkeypatch, FakeResponse(github_payload(build_release("2.1.0"))), seen)

    release = GitHubReleaseProvider(API_URL, timeout=3.0).get_latest_release()

    assert release.version == "2.1.0"
    assert release.release_notes == "Notes"
    assert release.page_url == "https://downloads.invalid/page"
    assert len(release.assets) == 7
    linux = [a for a in release.assets if a.platform is Platform.LINUX and a.arch == ARCH_X64]
    assert [a.name for a in linux] == ["StreamGo-2.1.0-Linux.AppImage"]
    request, timeout = seen[0]
    assert timeout == 3.0
    assert request.get_header("User-agent") == "StreamGo-Updater"


@pytest.mark.parametrize(("code", "retryable"), [(404, False), (403, False), (429, True), (503, True)])
def test_github_provider_maps_http_errors(monkeypatch: pytest.MonkeyPatch, code: int, retryable: bool) -> None:
    _patch_urlopen(monkeypatch, http_error(API_URL, code))

    with pytest.raises(NetworkError) as excinfo:
        GitHubReleaseProvider(API_URL).get_latest_release()

    assert excinfo.value.status == code
    assert excinfo.value.retryable is retryable


def test_github_provider_reports_unreachable_host(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_urlopen(monkeypatch, URLError("Name or service not known"))

    with pytest.raises(NetworkError, match="unreachable"):
        GitHubReleaseProvider(API_URL).get_latest_release()


@pytest.mark.parametrize("payload", [b"not json", b"[1, 2, 3]", json.dumps({"assets": []}).encode()])
def test_github_provider_rejects_malformed_payloads(monkeypatch: pytest.MonkeyPatch, payload: bytes) -> None:
    _patch_urlopen(monkeypatch, FakeResponse(payload))

    with pytest.raises(NetworkError) as excinfo:
        GitHubReleaseProvider(API_URL).get_latest_release()

    assert excinfo.value.retryable is False


def test_local_folder_provider_lists_existing_assets(tmp_path: Path) -> None:
    (tmp_path / "StreamGo-3.0.0-Linux.AppImage").write_bytes(b"appimage")
    (tmp_path / "release.json").write_text(
        json.dumps(
            {
                "version": "v3.0.0",
                "assets": ["StreamGo-3.0.0-Linux.AppImage", "StreamGo-3.0.0-Windows.exe"],
                "notes": "Local build",
            }
        ),
        encoding="utf-8",
    )

    release = LocalFolderReleaseProvider(tmp_path).get_latest_release()

    assert release.version == "3.0.0"
    assert release.release_notes == "Local build"
    assert [asset.name for asset in release.assets] == ["StreamGo-3.0.0-Linux.AppImage"]
    asset = release.assets[0]
    assert asset.download_url.startswith("file://")
    assert asset.size == len(b"appimage")


def test_local_folder_provider_requires_metadata(tmp_path: Path) -> None:
    with pytest.raises(NetworkError, match="missing"):
        LocalFolderReleaseProvider(tmp_path).get_latest_release()
