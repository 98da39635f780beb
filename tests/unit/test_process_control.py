from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
from pathlib import Path
from typing import Sequence

import pytest

from services.companion import SpawnError, SystemProcessControl
from shared import processes
from shared.platforms import Platform

posix_only = pytest.mark.skipif(os.name == "nt", reason="POSIX process groups")


class RecordingRunner:
    def __init__(self, returncode: int = 0, *, error: BaseException | None = None) -> None:
        self.returncode = returncode
        self.error = error
        self.calls: list[tuple[list[str], float | None]] = []

    def __call__(self, args: Sequence[str], *, timeout: float | None = None) -> subprocess.CompletedProcess[str]:
        self.calls.append((list(args), timeout))
        if self.error is not None:
            raise self.error
        return subprocess.CompletedProcess(list(args), self.returncode, stdout="", stderr="ERROR: details")


@pytest.fixture
def signals(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, int, int]]:
    sent: list[tuple[str, int, int]] = []
    monkeypatch.setattr(
        "services.companion.process_control.os.kill", lambda pid, sig: sent.append(("kill", pid, sig))
    )
    if hasattr(os, "killpg"):
        monkeypatch.setattr(
            "services.companion.process_control.os.killpg", lambda pgid, sig: sent.append(("killpg", pgid, sig))
        )
    return sent


def test_windows_pid_kill_uses_forced_tree_taskkill() -> None:
    runner = RecordingRunner()
    control = SystemProcessControl(Platform.WINDOWS, runner=runner, timeout=3.0)

    control.kill_pid(4321, tree=True)
    control.kill_pid(4322, tree=False)

    assert runner.calls == [
        (["taskkill", "/F", "/PID", "4321", "/T"], 3.0),
        (["taskkill", "/F", "/PID", "4322"], 3.0),
    ]


def test_taskkill_not_found_status_is_process_lookup_error() -> None:
    control = SystemProcessControl(Platform.WINDOWS, runner=RecordingRunner(128))

    with pytest.raises(ProcessLookupError):
        control.kill_pid(4321, tree=True)


def test_other_taskkill_failures_are_os_errors() -> None:
    control = SystemProcessControl(Platform.WINDOWS, runner=RecordingRunner(1))

    with pytest.raises(OSError, match="status 1") as excinfo:
        control.kill_pid(4321, tree=True)

    assert not isinstance(excinfo.value, ProcessLookupError)


def test_missing_taskkill_falls_back_to_signal(signals: list[tuple[str, int, int]]) -> None:
    control = SystemProcessControl(Platform.WINDOWS, runner=RecordingRunner(error=FileNotFoundError("taskkill")))

    control.kill_pid(4321, tree=True)

    assert signals == [("kill", 4321, signal.SIGTERM)]


def test_windows_name_kill_targets_image_with_tree_flag() -> None:
    runner = RecordingRunner()
    control = SystemProcessControl(Platform.WINDOWS, runner=runner)

    assert control.kill_by_name("stremio-service", tree=True) is True
    assert control.kill_by_name("stremio-runtime.exe", tree=False) is True

    assert [args for args, _ in runner.calls] == [
        ["taskkill", "/F", "/IM", "stremio-service.exe", "/T"],
        ["taskkill", "/F", "/IM", "stremio-runtime.exe"],
    ]


def test_windows_name_kill_with_nothing_running_returns_false() -> None:
    control = SystemProcessControl(Platform.WINDOWS, runner=RecordingRunner(128))

    assert control.kill_by_name("stremio-service", tree=True) is False


@pytest.mark.parametrize("platform", [Platform.MACOS, Platform.LINUX])
def test_pkill_no_match_is_quietly_not_found(
    platform: Platform, caplog: pytest.LogCaptureFixture
) -> None:
    runner = RecordingRunner(1)
    control = SystemProcessControl(platform, runner=runner)

    with caplog.at_level(logging.WARNING, logger="services.companion.process_control"):
        assert control.kill_by_name("server.js", tree=True) is False

    assert runner.calls[0][0] == ["pkill", "-9", "-f", "server.js"]
    assert caplog.records == []


def test_pkill_errors_are_logged_and_reported_as_nothing_killed(caplog: pytest.LogCaptureFixture) -> None:
    control = SystemProcessControl(Platform.LINUX, runner=RecordingRunner(2))

    with caplog.at_level(logging.WARNING, logger="services.companion.process_control"):
        assert control.kill_by_name("stremio-service", tree=True) is False

    assert "exited with status 2" in caplog.text


def test_missing_kill_tool_is_not_fatal() -> None:
    control = SystemProcessControl(Platform.LINUX, runner=RecordingRunner(error=FileNotFoundError("pkill")))

    assert control.kill_by_name("stremio-service", tree=True) is False


@posix_only
def test_tree_kill_never_signals_our_own_process_group(
    monkeypatch: pytest.MonkeyPatch, signals: list[tuple[str, int, int]]
) -> None:
    own_group = os.getpgrp()
    monkeypatch.setattr("services.companion.process_control.os.getpgid", lambda pid: own_group)
    control = SystemProcessControl(Platform.LINUX)

    control.kill_pid(own_group, tree=True)
    control.kill_pid(own_group + 1, tree=True)

    assert signals == [("kill", own_group, signal.SIGTERM), ("kill", own_group + 1, signal.SIGTERM)]


@posix_only
def test_tree_kill_signals_group_of_session_leader(
    monkeypatch: pytest.MonkeyPatch, signals: list[tuple[str, int, int]]
) -> None:
    monkeypatch.setattr("services.companion.process_control.os.getpgid", lambda pid: pid)
    monkeypatch.setattr("services.companion.process_control.os.getpgrp", lambda: 1)
    control = SystemProcessControl(Platform.MACOS)

    control.kill_pid(5150, tree=True)
    control.kill_pid(5151, tree=False)

    assert signals == [("killpg", 5150, signal.SIGTERM), ("kill", 5151, signal.SIGTERM)]


@posix_only
@pytest.mark.skipif(shutil.which("sleep") is None, reason="needs sleep")
def test_tree_kill_stops_a_real_detached_child() -> None:
    child = subprocess.Popen(["sleep", "30"], start_new_session=True)
    try:
        assert os.getpgid(child.pid) == child.pid
        SystemProcessControl(Platform.LINUX).kill_pid(child.pid, tree=True)
        assert child.wait(timeout=10) == -signal.SIGTERM
    finally:
        if child.poll() is None:
            child.kill()
            child.wait(timeout=10)


@posix_only
def test_kill_of_vanished_pid_raises_process_lookup_error() -> None:
    child = subprocess.Popen(["true"])
    child.wait(timeout=10)

    with pytest.raises(ProcessLookupError):
        SystemProcessControl(Platform.LINUX).kill_pid(child.pid, tree=True)


class RecordingPopen:
    calls: list[tuple[list[str], dict]] = []

    def __init__(self, args, **kwargs) -> None:
        RecordingPopen.calls.append((list(args), kwargs))
        self.pid = 777


def test_spawn_detached_starts_a_new_session_in_the_service_directory(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    RecordingPopen.calls = []
    monkeypatch.setattr(processes.subprocess, "Popen", RecordingPopen)
    control = SystemProcessControl(Platform.LINUX)

    pid = control.spawn_detached([str(tmp_path / "stremio-service")], tmp_path)

    assert pid == 777
    args, kwargs = RecordingPopen.calls[0]
    assert args == [str(tmp_path / "stremio-service")]
    assert kwargs["cwd"] == str(tmp_path)
    assert kwargs["stdin"] is subprocess.DEVNULL
    assert kwargs["stdout"] is subprocess.DEVNULL
    assert kwargs["stderr"] is subprocess.DEVNULL
    if os.name == "nt":
        assert "start_new_session" not in kwargs
        assert kwargs["creationflags"] & subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        assert kwargs["start_new_session"] is True


def test_spawn_without_cwd_inherits_working_directory(monkeypatch: pytest.MonkeyPatch) -> None:
    RecordingPopen.calls = []
    monkeypatch.setattr(processes.subprocess, "Popen", RecordingPopen)

    processes.spawn_detached(["flatpak", "run", "com.stremio.Service"])

    assert RecordingPopen.calls[0][1]["cwd"] is None


def test_spawn_failure_becomes_spawn_error(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def refuse(args, **kwargs):
        raise PermissionError(13, "Permission denied", args[0])

    monkeypatch.setattr(processes.subprocess, "Popen", refuse)

    with pytest.raises(SpawnError, match="stremio-service"):
        SystemProcessControl(Platform.LINUX).spawn_detached([str(tmp_path / "stremio-service")], tmp_path)
