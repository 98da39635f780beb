"""Installer implementations for platform-specific behaviour."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import time
from pathlib import Path
from typing import Callable, Mapping, Protocol

from services.update.models import (
    InstallError,
    InstallPermissionError,
    InstallPlan,
    ManualInstallRequired,
)
from services.update.paths import installed_app_path, user_data_directory
from services.update.recovery import clear_update_failure_marker, get_failure_marker_path
from services.update.scripts import (
    write_linux_replace_script,
    write_macos_install_script,
    write_windows_install_script,
)
from shared.logging_config import get_app_log_file
from shared.platforms import Platform, PlatformUnsupportedError
from shared.processes import spawn_detached

_LOGGER = logging.getLogger(__name__)

Launcher = Callable[..., object]


class PlatformInstaller(Protocol):
    """Protocol describing the platform-specific installation routine."""

    platform: Platform

    def plan(self, artifact: Path) -> InstallPlan:
        """Describe how ``artifact`` would be installed, writing any helper script."""

    def install(self, artifact: Path) -> InstallPlan:
        """Launch the install of ``artifact``; on success the process normally exits."""


def _exit_process() -> None:  # pragma: no cover - terminates the interpreter
    logging.shutdown()
    os._exit(0)


class _HelperScriptInstaller:
    """Shared flow: write a helper script, launch it detached, then exit.

    The helper waits for this process to exit before touching any files, so
    the caller must not keep running once :meth:`install` returns unless
    ``exit_after_launch`` is disabled (tests, dry runs).
    """

    platform: Platform

    def __init__(
        self,
        *,
        app_path: Path | None = None,
        exit_after_launch: bool = True,
        launcher: Launcher = spawn_detached,
        exit_hook: Callable[[], None] = _exit_process,
        pid: int | None = None,
        environ: Mapping[str, str] | None = None,
        log_path: Path | None = None,
        failure_marker_path: Path | None = None,
    ) -> None:
        self._environ = os.environ if environ is None else environ
        self._app_path = app_path
        self._exit_after_launch = exit_after_launch
        self._launcher = launcher
        self._exit_hook = exit_hook
        self._pid = pid if pid is not None else os.getpid()
        self._log_path = log_path
        self._failure_marker_path = failure_marker_path

    @property
    def app_path(self) -> Path | None:
        if self._app_path is not None:
            return self._app_path
        return installed_app_path(self.platform, environ=self._environ)

    @property
    def failure_marker_path(self) -> Path:
        if self._failure_marker_path is None:
            self._failure_marker_path = get_failure_marker_path(self.platform, self._environ)
        return self._failure_marker_path

    @property
    def log_path(self) -> Path:
        if self._log_path is None:
            self._log_path = get_app_log_file() or (
                user_data_directory(self.platform, self._environ)
                / f"{self.platform.value}.update.{time.strftime('%Y%m%d-%H%M%S')}.log"
            )
        return self._log_path

    def plan(self, artifact: Path) -> InstallPlan:
        raise NotImplementedError

    def install(self, artifact: Path) -> InstallPlan:
        artifact = _check_artifact(Path(artifact))
        try:
            plan = self.plan(artifact)
        except OSError as exc:
            raise _install_error("Cannot write update helper script", exc) from exc
        try:
            self._prepare(plan)
            clear_update_failure_marker(self.failure_marker_path)
            _LOGGER.info("Launching update helper for %s: %s", artifact.name, plan.helper_script_path)
            try:
                self._launcher(plan.command, cwd=plan.working_directory)
            except OSError as exc:
                raise InstallError(f"Failed to launch update helper: {exc}") from exc
        except InstallError:
            _discard_helper(plan)
            raise
        except OSError as exc:
            _discard_helper(plan)
            raise _install_error(f"Cannot prepare {artifact.name} for install", exc) from exc

        if self._exit_after_launch:
            _LOGGER.info("Exiting so the update helper can replace the application")
            self._exit_hook()
        return plan

    def _prepare(self, plan: InstallPlan) -> None:
        """Hook for work that must finish before the helper is launched."""


class WindowsInstaller(_HelperScriptInstaller):
    """Run the downloaded NSIS installer silently once the application has exited."""

    platform = Platform.WINDOWS

    def plan(self, artifact: Path) -> InstallPlan:
        if artifact.suffix.lower() != ".exe":
            raise InstallError(f"Expected a Windows installer (.exe), got {artifact.name}")
        script = write_windows_install_script()
        app_path = self.app_path
        command = (
            "powershell.exe",
            "-NoProfile",
            "-ExecutionPolicy",
            "Bypass",
            "-WindowStyle",
            "Hidden",
            "-File",
            str(script),
            "-ProcessId",
            str(self._pid),
            "-InstallerPath",
            str(artifact),
            "-ExecutablePath",
            str(app_path) if app_path is not None else "",
            "-LogPath",
            str(self.log_path),
            "-FailureMarkerPath",
            str(self.failure_marker_path),
        )
        return InstallPlan(
            platform=self.platform,
            artifact_path=artifact,
            installed_app_path=app_path,
            command=command,
            helper_script_path=script,
            working_directory=script.parent,
        )


class MacInstaller(_HelperScriptInstaller):
    """Mount the disk image and copy the new bundle over the installed one."""

    platform = Platform.MACOS

    def plan(self, artifact: Path) -> InstallPlan:
        if artifact.suffix.lower() != ".dmg":
            raise InstallError(f"Expected a disk image (.dmg), got {artifact.name}")
        app_path = self.app_path
        if app_path is None:
            raise InstallError("Unable to determine where the application bundle is installed")
        script = write_macos_install_script()
        command = (
            "/bin/bash",
            str(script),
            str(self._pid),
            str(artifact),
            str(app_path),
            str(self.log_path),
            str(self.failure_marker_path),
        )
        return InstallPlan(
            platform=self.platform,
            artifact_path=artifact,
            installed_app_path=app_path,
            command=command,
            helper_script_path=script,
            working_directory=script.parent,
        )

    def _prepare(self, plan: InstallPlan) -> None:
        parent = plan.installed_app_path.parent if plan.installed_app_path else None
        if parent is not None and parent.exists() and not os.access(parent, os.W_OK):
            raise InstallPermissionError(
                f"{parent} is not writable; copy the application from {plan.artifact_path} manually"
            )


class LinuxInstaller(_HelperScriptInstaller):
    """Swap a running AppImage for the downloaded one.

    Package-managed installs are never touched; they raise
    :class:`ManualInstallRequired` naming the downloaded file instead.
    """

    platform = Platform.LINUX

    def __init__(self, *, keep_backup: bool = False, **kwargs) -> None:
        super().__init__(**kwargs)
        self._keep_backup = keep_backup

    def plan(self, artifact: Path) -> InstallPlan:
        target = self.app_path
        if target is None:
            raise ManualInstallRequired(
                "StreamGo was not started from an AppImage, so it cannot replace itself. "
                f"Install the downloaded update from {artifact} with your package manager.",
                artifact,
            )
        script = write_linux_replace_script()
        command = (
            "/bin/sh",
            str(script),
            str(self._pid),
            str(_staged_path(target)),
            str(target),
            str(self.log_path),
            str(self.failure_marker_path),
        )
        return InstallPlan(
            platform=self.platform,
            artifact_path=artifact,
            installed_app_path=target,
            command=command,
            helper_script_path=script,
            working_directory=script.parent,
        )

    def _prepare(self, plan: InstallPlan) -> None:
        target = plan.installed_app_path
        artifact = plan.artifact_path
        if target is None:
            raise ManualInstallRequired(f"No AppImage to replace; install {artifact} manually.", artifact)

        ensure_executable(artifact)
        if not os.access(artifact, os.X_OK):
            raise InstallError(f"Downloaded AppImage {artifact} cannot be made executable")

        if not os.access(target.parent, os.W_OK):
            raise InstallPermissionError(
                f"{target.parent} is not writable; move {artifact} over {target} manually"
            )

        if self._keep_backup and target.exists():
            backup = target.with_name(target.name + ".backup")
            try:
                shutil.copy2(target, backup)
            except OSError as exc:
                _LOGGER.warning("Unable to back up %s: %s", target, exc)
            else:
                _LOGGER.info("Backed up current AppImage to %s", backup)

        staged = _staged_path(target)
        try:
            shutil.copy2(artifact, staged)
        except PermissionError as exc:
            raise InstallPermissionError(f"Cannot stage update next to {target}: {exc}") from exc
        except OSError as exc:
            raise InstallError(f"Cannot stage update next to {target}: {exc}") from exc
        ensure_executable(staged)
        _LOGGER.info("Staged %s at %s", artifact.name, staged)
        try:
            artifact.unlink()
        except OSError:
            _LOGGER.debug("Unable to remove downloaded update %s", artifact, exc_info=True)


def ensure_executable(path: Path) -> None:
    mode = path.stat().st_mode
    wanted = mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
    if wanted != mode:
        os.chmod(path, wanted)


def installer_for_platform(platform: Platform, **kwargs) -> PlatformInstaller:
    """Return the :class:`PlatformInstaller` implementation for ``platform``."""

    if platform is Platform.WINDOWS:
        return WindowsInstaller(**kwargs)
    if platform is Platform.MACOS:
        return MacInstaller(**kwargs)
    if platform is Platform.LINUX:
        return LinuxInstaller(**kwargs)
    raise PlatformUnsupportedError(f"No installer for platform {platform!r}")


def _staged_path(target: Path) -> Path:
    # Same directory as the target so the helper's move is a rename.
    return target.with_name(f".{target.name}.update")


def _install_error(message: str, exc: OSError) -> InstallError:
    if isinstance(exc, PermissionError):
        return InstallPermissionError(f"{message}: {exc}")
    return InstallError(f"{message}: {exc}")


def _discard_helper(plan: InstallPlan) -> None:
    if plan.helper_script_path is not None:
        shutil.rmtree(plan.helper_script_path.parent, ignore_errors=True)


def _check_artifact(artifact: Path) -> Path:
    try:
        size = artifact.stat().st_size
    except FileNotFoundError as exc:
        raise InstallError(f"Downloaded update is missing: {artifact}") from exc
    except OSError as exc:
        raise InstallError(f"Cannot read downloaded update {artifact}: {exc}") from exc
    if size == 0:
        raise InstallError(f"Downloaded update is empty: {artifact}")
    return artifact


__all__ = [
    "LinuxInstaller",
    "MacInstaller",
    "PlatformInstaller",
    "WindowsInstaller",
    "ensure_executable",
    "installer_for_platform",
]
