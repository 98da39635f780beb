"""Thin wrappers over :mod:`subprocess` for short commands and detached launches."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Sequence

_LOGGER = logging.getLogger(__name__)


def _windows_popen_kwargs(*, detached: bool) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    if os.name != "nt":  # pragma: no cover - exercised on Windows
        return kwargs
    creationflags = 0
    if detached:
        creationflags |= getattr(subprocess, "DETACHED_PROCESS", 0)
        creationflags |= getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
    else:
        creationflags |= getattr(subprocess, "CREATE_NO_WINDOW", 0)
    if creationflags:
        kwargs["creationflags"] = creationflags
    return kwargs


def run_command(args: Sequence[str], *, timeout: float | None = None) -> subprocess.CompletedProcess[str]:
    """Run ``args`` to completion and capture its text output.

    ``OSError`` (tool missing) and ``subprocess.TimeoutExpired`` propagate; a
    non-zero exit status does not raise.
    """

    return subprocess.run(
        list(args),
        capture_output=True,
        text=True,
        timeout=timeout,
        stdin=subprocess.DEVNULL,
        check=False,
        **_windows_popen_kwargs(detached=False),
    )


def spawn_detached(args: Sequence[str], *, cwd: Path | None = None) -> int | None:
    """Start ``args`` so it outlives this process and return its pid.

    Nothing is kept that needs cleaning up later: stdio goes to the null device,
    POSIX children get their own session and Windows children are detached
    from the console and process group.
    """

    popen_kwargs = _windows_popen_kwargs(detached=True)
    if os.name != "nt":
        popen_kwargs["start_new_session"] = True
    _LOGGER.debug("Spawning detached process %s (cwd=%s)", list(args), cwd)
    process = subprocess.Popen(
        list(args),
        cwd=str(cwd) if cwd is not None else None,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        close_fds=True,
        **popen_kwargs,
    )
    return process.pid or None


__all__ = ["run_command", "spawn_detached"]
