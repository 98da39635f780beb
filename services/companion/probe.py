"""Liveness probes built on the operating system's process listing tools."""

from __future__ import annotations

import csv
import io
import logging
import subprocess
from typing import Callable, Sequence

from shared.platforms import Platform
from shared.processes import run_command

_LOGGER = logging.getLogger(__name__)

CommandRunner = Callable[..., "subprocess.CompletedProcess[str]"]


class ProcessProbe:
    """Answer "is it running, and under which pid" for a named executable.

    Probes never raise: when the listing tool cannot be run the answer is
    "not running" and a warning is logged.
    """

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

    @property
    def platform(self) -> Platform:
        return self._platform

    def is_running(self, executable_name: str) -> bool:
        return bool(self.find_pids(executable_name))

    def find_pid(self, executable_name: str) -> int | None:
        pids = self.find_pids(executable_name)
        return pids[0] if pids else None

    def find_pids(self, executable_name: str) -> list[int]:
        if self._platform is Platform.WINDOWS:
            return self._find_pids_windows(executable_name)
        return self._find_pids_posix(executable_name)

    def is_flatpak_running(self, app_id: str) -> bool:
        if self._platform is not Platform.LINUX:
            return False
        result = self._run(["flatpak", "ps", "--columns=application"])
        if result is None or result.returncode != 0:
            return False
        return any(line.strip() == app_id for line in result.stdout.splitlines())

    def command_succeeds(self, args: Sequence[str], *, expect_output: str | None = None) -> bool:
        """Return ``True`` when ``args`` exits cleanly (and mentions ``expect_output``)."""

        result = self._run(args, quiet=True)
        if result is None or result.returncode != 0:
            return False
        if expect_output is not None:
            return expect_output in (result.stdout or "")
        return True

    def _find_pids_windows(self, executable_name: str) -> list[int]:
        image = executable_name if executable_name.lower().endswith(".exe") else f"{executable_name}.exe"
        result = self._run(["tasklist", "/FI", f"IMAGENAME eq {image}", "/FO", "CSV", "/NH"])
        if result is None:
            return []
        pids: list[int] = []
        for row in csv.reader(io.StringIO(result.stdout or "")):
            if len(row) < 2 or row[0].strip().lower() != image.lower():
                continue
            try:
                pids.append(int(row[1].strip()))
            except ValueError:
                _LOGGER.debug("Ignoring unparsable tasklist row: %s", row)
        return pids

    def _find_pids_posix(self, executable_name: str) -> list[int]:
        result = self._run(["pgrep", "-f", executable_name])
        if result is None:
            return []
        if result.returncode == 1:
            return []
        if result.returncode != 0:
            _LOGGER.warning(
                "pgrep exited with status %s while probing %s: %s",
                result.returncode,
                executable_name,
                (result.stderr or "").strip(),
            )
            return []
        pids: list[int] = []
        for token in (result.stdout or "").split():
            if token.isdigit():
                pids.append(int(token))
        return pids

    def _run(self, args: Sequence[str], *, quiet: bool = False) -> subprocess.CompletedProcess[str] | None:
        try:
            return self._runner(list(args), timeout=self._timeout)
        except (OSError, subprocess.SubprocessError) as exc:
            log = _LOGGER.debug if quiet else _LOGGER.warning
            log("Unable to run %s: %s", args[0], exc)
            return None


__all__ = ["CommandRunner", "ProcessProbe"]
