"""Spawning and killing processes, kept behind a seam so tests never kill anything."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from pathlib import Path
from typing import Protocol, Sequence

from services.companion.models import SpawnError
from services.companion.probe import CommandRunner
from shared.platforms import Platform
from shared.processes import run_command, spawn_detached

_LOGGER = logging.getLogger(__name__)

# taskkill reports "process not found" with exit status 128.
_TASKKILL_NOT_FOUND = 128


class ProcessControl(Protocol):
    """Operating system actions the service controller is allowed to take."""

    def spawn_detached(self, command: Sequence[str], cwd: Path | None) -> int | None:
        """Start ``command`` detached and return its pid when known."""

    def kill_pid(self, pid: int, *, tree: bool) -> None:
        """Kill ``pid``; raise ``ProcessLookupError`` if it is already gone."""

    def kill_by_name(self, name: str, *, tree: bool) -> bool:
        """Kill every process matching ``name``; return ``True`` if any were."""


class SystemProcessControl:
    """:class:`ProcessControl` backed by ``subprocess``, ``taskkill`` and ``pkill``."""

    def __init__(
        self,
        platform: Platform,
        *,
        runner: CommandRunner = run_command,
        timeout: float = 10.0,
    ) -> None:
        self._platform = platform
        self._runner = runner
        self._timeout = timeout

    def spawn_detached(self, command: Sequence[str], cwd: Path | None) -> int | None:
        try:
            return spawn_detached(command, cwd=cwd)
        except OSError as exc:
            raise SpawnError(f"Failed to start {command[0]}: {exc}") from exc

    def kill_pid(self, pid: int, *, tree: bool) -> None:
        if self._platform is Platform.WINDOWS:
            self._taskkill_pid(pid, tree=tree)
            return
        if tree:
            # Detached services lead their own process group; never signal ours.
            pgid = os.getpgid(pid)
            if pgid == pid and pgid != os.getpgrp():
                os.killpg(pgid, signal.SIGTERM)
                return
        os.kill(pid, signal.SIGTERM)

    def kill_by_name(self, name: str, *, tree: bool) -> bool:
        if self._platform is Platform.WINDOWS:
            image = name if name.lower().endswith(".exe") else f"{name}.exe"
            args = ["taskkill", "/F", "/IM", image]
            if tree:
                args.append("/T")
            not_found = _TASKKILL_NOT_FOUND
        else:
            args = ["pkill", "-9", "-f", name]
            not_found = 1
        try:
            result = self._runner(args, timeout=self._timeout)
        except (OSError, subprocess.SubprocessError) as exc:
            _LOGGER.warning("Unable to run %s: %s", args[0], exc)
            return False
        if result.returncode == 0:
            _LOGGER.info("Killed processes matching %s", name)
            return True
        if result.returncode != not_found:
            _LOGGER.warning(
                "%s %s exited with status %s: %s",
                args[0],
                name,
                result.returncode,
                (result.stderr or result.stdout or "").strip(),
            )
        return False

    def _taskkill_pid(self, pid: int, *, tree: bool) -> None:
        args = ["taskkill", "/F", "/PID", str(pid)]
        if tree:
            args.append("/T")
        try:
            result = self._runner(args, timeout=self._timeout)
        except (OSError, subprocess.SubprocessError) as exc:
            _LOGGER.warning("taskkill unavailable, falling back to os.kill: %s", exc)
            os.kill(pid, signal.SIGTERM)
            return
        if result.returncode == _TASKKILL_NOT_FOUND:
            raise ProcessLookupError(pid)
        if result.returncode != 0:
            raise OSError(
                f"taskkill failed for pid {pid} with status {result.returncode}: "
                f"{(result.stderr or result.stdout or '').strip()}"
            )


__all__ = ["ProcessControl", "SystemProcessControl"]
