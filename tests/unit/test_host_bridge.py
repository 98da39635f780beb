from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from services.companion import NotFoundError, RestartSkipped
from services.host_bridge import HostBridge
from services.update import (
    DownloadFailed,
    DownloadPipeline,
    InstallError,
    InstallFailed,
    UpdateError,
    UpdateOrchestrator,
    WindowsInstaller,
)
from shared.platforms import ARCH_X64, Platform
from tests.unit.companion_test_utils import build_controller
from tests.unit.update_test_utils import (
    ONE_MB,
    TEST_SETTINGS,
    FakeOpener,
    RecordingInstaller,
    StaticReleaseProvider,
    build_release,
    http_error,
    http_response,
)

ASSET_URL = "https://downloads.invalid/StreamGo-9.9.9-Linux.AppImage"


def _bridge(tmp_path: Path, opener: FakeOpener, installer: RecordingInstaller | None = None) -> HostBridge:
    installer = installer or RecordingInstaller()
    orchestrator = UpdateOrchestrator(
        StaticReleaseProvider(build_release()),
        current_version="1.0.0",
        pipeline=DownloadPipeline(opener=opener, settings=TEST_SETTINGS, sleep=lambda _: None),
        installer_factory=lambda _platform: installer,
        platform=Platform.LINUX,
        arch=ARCH_X64,
        download_dir=tmp_path / "downloads",
        settings=TEST_SETTINGS,
    )
    return HostBridge(orchestrator, build_controller(tmp_path).controller)


def test_update_calls_return_results(tmp_path: Path) -> None:
    opener = FakeOpener()
    opener.queue(ASSET_URL, lambda: http_response(b"a" * ONE_MB))
    installer = RecordingInstaller()
    bridge = _bridge(tmp_path, opener, installer)

    check = bridge.check_for_update()
    download = bridge.start_update_download()
    install = bridge.install_and_restart()

    assert check.is_ok() and check.unwrap().available
    assert download.unwrap() == tmp_path / "downloads" / "StreamGo-9.9.9-Linux.AppImage"
    assert install.is_ok()
    assert install.value is None
    assert installer.installed == [download.unwrap()]
    assert bridge.release_page_url == "https://downloads.invalid/page"


def test_download_failure_becomes_error_result(tmp_path: Path) -> None:
    opener = FakeOpener()
    opener.queue(ASSET_URL, lambda: http_error(ASSET_URL, 404))
    bridge = _bridge(tmp_path, opener)

    result = bridge.start_update_download()

    assert result.is_err()
    assert isinstance(result.unwrap_err(), DownloadFailed)
    assert result.unwrap_err().cause.status == 404


def test_missing_orchestrator_reports_unsupported(tmp_path: Path) -> None:
    bridge = HostBridge(None, build_controller(tmp_path).controller)

    for result in (bridge.check_for_update(), bridge.start_update_download(), bridge.install_and_restart()):
        assert isinstance(result.unwrap_err(), UpdateError)
        assert "not supported" in str(result.unwrap_err())
    assert bridge.release_page_url is None


def test_companion_calls_and_shutdown(tmp_path: Path) -> None:
    harness = build_controller(tmp_path, Platform.WINDOWS, spawn_runtime_child=True)
    bridge = HostBridge(None, harness.controller)

    started = bridge.start_companion_service()
    status = bridge.get_service_status()

    assert started.unwrap().started_by_us is True
    assert status.running is True
    assert status.bundled is True
    assert status.started_by_us is True

    bridge.shutdown()

    assert harness.table.processes == {}
    assert bridge.get_service_status().running is False


def test_companion_errors_become_results(tmp_path: Path) -> None:
    bridge = HostBridge(None, build_controller(tmp_path, Platform.WINDOWS, bundled=False).controller)

    result = bridge.start_companion_service()

    assert isinstance(result.unwrap_err(), NotFoundError)


def test_unwritable_helper_location_becomes_install_failed_result(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    artifact = tmp_path / "downloads" / "StreamGo.exe"
    artifact.parent.mkdir(parents=True)
    artifact.write_bytes(b"MZ" + b"\0" * 4094)
    launched: list[tuple[str, ...]] = []
    orchestrator = UpdateOrchestrator(
        StaticReleaseProvider(build_release()),
        current_version="1.0.0",
        pipeline=DownloadPipeline(opener=FakeOpener(), settings=TEST_SETTINGS, sleep=lambda _: None),
        installer_factory=lambda _platform: WindowsInstaller(
            app_path=tmp_path / "StreamGo" / "StreamGo.exe",
            launcher=lambda command, cwd=None: launched.append(tuple(command)),
            exit_after_launch=False,
            pid=1234,
            environ={},
            log_path=tmp_path / "logs" / "streamgo.log",
            failure_marker_path=tmp_path / "data" / "update_failed.json",
        ),
        platform=Platform.WINDOWS,
        arch=ARCH_X64,
        download_dir=tmp_path / "downloads",
        settings=TEST_SETTINGS,
    )
    bridge = HostBridge(orchestrator, build_controller(tmp_path, Platform.WINDOWS).controller)
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path / "missing-temp"))

    result = bridge.install_and_restart(artifact)

    assert result.is_err()
    error = result.unwrap_err()
    assert isinstance(error, InstallFailed)
    assert isinstance(error.cause, InstallError)
    assert launched == []
    assert artifact.exists()


def test_restart_companion_stops_an_externally_started_service(tmp_path: Path) -> None:
    harness = build_controller(tmp_path, Platform.LINUX)
    external = harness.table.add("stremio-service")
    bridge = HostBridge(None, harness.controller)

    result = bridge.restart_companion_service()

    assert result.is_ok()
    assert result.unwrap().started_by_us is True
    assert external not in harness.table.processes
    assert len(harness.control.spawned) == 1


def test_unforced_restart_of_external_service_is_reported(tmp_path: Path) -> None:
    harness = build_controller(tmp_path, Platform.LINUX)
    external = harness.table.add("stremio-service")
    bridge = HostBridge(None, harness.controller)

    result = bridge.restart_companion_service(force=False)

    assert isinstance(result.unwrap_err(), RestartSkipped)
    assert external in harness.table.processes
    assert harness.control.spawned == []
