"""Lifecycle management for the companion streaming service."""

from __future__ import annotations

import dataclasses
import logging
import os
import time
from pathlib import Path
from typing import Callable, Mapping

from app.config import CompanionSettings, get_companion_settings
from services.companion.constants import (
    COMPANION_BINARIES,
    FLATPAK_APP_ID,
    MACOS_APP_BUNDLE,
    RUNTIME_NAME,
    SERVER_SCRIPT_NAME,
    SERVICE_NAME,
)
from services.companion.models import (
    LaunchTarget,
    NotFoundError,
    RestartSkipped,
    ServiceHandle,
    ServiceOrigin,
    ServiceState,
    ServiceStatus,
    SpawnError,
    TerminationOutcome,
)
from services.companion.paths import (
    bundled_service_candidates,
    resources_root,
    service_executable_name,
    system_service_candidates,
)
from services.companion.probe import ProcessProbe
from services.companion.process_control import ProcessControl, SystemProcessControl
from shared.platforms import Platform, detect_platform

_LOGGER = logging.getLogger(__name__)


class ServiceController:
    """Locate, start, supervise and stop the companion service.

    Each controller tracks at most one :class:`ServiceHandle`.  A plain
    :meth:`terminate` only ever kills a process this controller spawned;
    :meth:`force_terminate_all` is the explicit escape hatch used on shutdown.
    """

    def __init__(
        self,
        platform: Platform | None = None,
        *,
        probe: ProcessProbe | None = None,
        process_control: ProcessControl | None = None,
        resources: Path | None = None,
        environ: Mapping[str, str] | None = None,
        settings: CompanionSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._platform = platform or detect_platform()
        self._settings = settings or get_companion_settings()
        self._probe = probe or ProcessProbe(self._platform, timeout=self._settings.command_timeout_seconds)
        self._control = process_control or SystemProcessControl(
            self._platform, timeout=self._settings.command_timeout_seconds
        )
        self._environ = os.environ if environ is None else environ
        self._resources = resources if resources is not None else resources_root(self._environ)
        self._sleep = sleep
        self._handle: ServiceHandle | None = None
        self._state = ServiceState.UNKNOWN

    @property
    def platform(self) -> Platform:
        return self._platform

    @property
    def handle(self) -> ServiceHandle | None:
        return self._handle

    @property
    def state(self) -> ServiceState:
        return self._state

    # Discovery -----------------------------------------------------------------

    def bundled_service_path(self) -> Path | None:
        for candidate in bundled_service_candidates(self._platform, self._resources):
            if candidate.is_file():
                _LOGGER.debug("Found bundled companion service at %s", candidate)
                return candidate
        return None

    def has_bundled_service(self) -> bool:
        return self.bundled_service_path() is not None

    def is_installed(self) -> bool:
        """Return ``True`` when a system-installed copy exists (bundled copies excluded)."""

        if any(path.is_file() for path in system_service_candidates(self._platform, environ=self._environ)):
            return True
        if self._platform is not Platform.LINUX:
            return False
        return (
            self._probe.command_succeeds(["flatpak", "info", FLATPAK_APP_ID], expect_output=FLATPAK_APP_ID)
            or self._probe.command_succeeds(["dpkg", "-s", SERVICE_NAME])
            or self._probe.command_succeeds(["rpm", "-q", SERVICE_NAME])
        )

    def locate(self) -> LaunchTarget:
        """Resolve how to launch the service: bundled copy, then system install."""

        bundled = self.bundled_service_path()
        if bundled is not None:
            return LaunchTarget(
                command=(str(bundled),),
                origin=ServiceOrigin.BUNDLED,
                executable_path=bundled,
                working_directory=bundled.parent,
            )

        searched = tuple(system_service_candidates(self._platform, environ=self._environ))
        for candidate in searched:
            if candidate.is_file():
                _LOGGER.info("Using system-installed companion service at %s", candidate)
                if self._platform is Platform.MACOS:
                    return LaunchTarget(
                        command=("open", str(MACOS_APP_BUNDLE)),
                        origin=ServiceOrigin.SYSTEM_INSTALLED,
                        executable_path=candidate,
                    )
                return LaunchTarget(
                    command=(str(candidate),),
                    origin=ServiceOrigin.SYSTEM_INSTALLED,
                    executable_path=candidate,
                    working_directory=candidate.parent,
                )

        if self._platform is Platform.LINUX and self._probe.command_succeeds(
            ["flatpak", "info", FLATPAK_APP_ID], expect_output=FLATPAK_APP_ID
        ):
            _LOGGER.info("Using Flatpak installation %s", FLATPAK_APP_ID)
            return LaunchTarget(
                command=("flatpak", "run", FLATPAK_APP_ID),
                origin=ServiceOrigin.SYSTEM_INSTALLED,
            )

        raise NotFoundError(
            "Could not find the companion service executable",
            searched=(*bundled_service_candidates(self._platform, self._resources), *searched),
        )

    # Probing -------------------------------------------------------------------

    def is_running(self) -> bool:
        if self._probe.is_running(service_executable_name(self._platform)):
            return True
        return self._probe.is_flatpak_running(FLATPAK_APP_ID)

    def probe_state(self) -> ServiceState:
        running = self.is_running()
        if not running:
            if self._handle is not None:
                _LOGGER.info("Tracked companion service is no longer running")
            self._handle = None
            self._state = ServiceState.NOT_RUNNING
        elif self._handle is not None and self._handle.started_by_us:
            self._state = ServiceState.RUNNING_OWNED
        else:
            self._state = ServiceState.RUNNING_EXTERNAL
        return self._state

    def status(self) -> ServiceStatus:
        state = self.probe_state()
        handle = self._handle
        return ServiceStatus(
            running=state is not ServiceState.NOT_RUNNING,
            bundled=handle is not None and handle.origin is ServiceOrigin.BUNDLED,
            started_by_us=state is ServiceState.RUNNING_OWNED,
            pid=handle.pid if handle is not None else None,
        )

    # Lifecycle -----------------------------------------------------------------

    def start(self) -> ServiceHandle:
        """Start the service unless one is already running.

        When a service is already running no second instance is spawned and
        the returned handle has ``started_by_us=False``, even if an earlier
        call of this controller was the one that launched it.  Ownership of
        an earlier launch stays with the tracked handle.
        """

        if self.is_running():
            pid = self._probe.find_pid(service_executable_name(self._platform))
            _LOGGER.info("Companion service is already running (pid=%s); not starting another", pid)
            if self._handle is not None and self._handle.started_by_us:
                self._state = ServiceState.RUNNING_OWNED
                return dataclasses.replace(self._handle, started_by_us=False)
            handle = ServiceHandle(platform=self._platform, started_by_us=False, pid=pid)
            self._handle = handle
            self._state = ServiceState.RUNNING_EXTERNAL
            return handle

        target = self.locate()
        if target.origin is ServiceOrigin.BUNDLED and self._platform.is_posix and target.executable_path:
            ensure_executable_permissions(target.executable_path)

        _LOGGER.info("Starting companion service: %s", " ".join(target.command))
        pid = self._control.spawn_detached(target.command, target.working_directory)
        if not target.launches_directly:
            # The pid belongs to a launcher (open/flatpak), not the service.
            pid = None
        if pid is None:
            _LOGGER.warning("Companion service spawned but no pid is available")
        else:
            _LOGGER.info("Companion service started with pid %s", pid)

        handle = ServiceHandle(
            platform=self._platform,
            started_by_us=True,
            pid=pid,
            executable_path=target.executable_path,
            working_directory=target.working_directory,
            origin=target.origin,
            command=target.command,
        )
        self._handle = handle
        self._state = ServiceState.RUNNING_OWNED
        return handle

    def terminate(self) -> TerminationOutcome:
        """Stop the tracked service if, and only if, this controller started it."""

        handle = self._handle
        if handle is None or not handle.started_by_us:
            if self.is_running():
                _LOGGER.info("Companion service was not started by this app; leaving it running")
                return TerminationOutcome.SKIPPED
            self._handle = None
            self._state = ServiceState.NOT_RUNNING
            return TerminationOutcome.NOT_RUNNING

        pid = handle.pid or self._probe.find_pid(service_executable_name(self._platform))
        if pid is None:
            _LOGGER.info("Companion service started by this app is no longer running")
            self._clear()
            return TerminationOutcome.NOT_RUNNING

        _LOGGER.info("Terminating companion service (pid=%s)", pid)
        try:
            self._control.kill_pid(pid, tree=True)
        except ProcessLookupError:
            _LOGGER.info("Companion service pid %s already exited", pid)
            self._clear()
            return TerminationOutcome.NOT_RUNNING
        except OSError as exc:
            _LOGGER.error("Failed to terminate companion service pid %s: %s", pid, exc)
            return TerminationOutcome.FAILED

        if self._platform is Platform.WINDOWS:
            # The runtime child is not reliably taken down with its parent.
            self._control.kill_by_name(RUNTIME_NAME, tree=True)
        self._clear()
        _LOGGER.info("Companion service terminated")
        return TerminationOutcome.TERMINATED

    def terminate_if_started_by_us(self) -> bool:
        return self.terminate() is TerminationOutcome.TERMINATED

    def force_terminate_all(self) -> None:
        """Kill every companion process regardless of who started it.

        Only meant for full application shutdown.  "Nothing to kill" is not an
        error and nothing is raised.
        """

        _LOGGER.info("Force terminating all companion service processes")
        names = [service_executable_name(self._platform), RUNTIME_NAME]
        if self._platform is not Platform.WINDOWS:
            names.append(SERVER_SCRIPT_NAME)
        for name in names:
            self._control.kill_by_name(name, tree=True)
        if self._platform is Platform.LINUX and self._probe.is_flatpak_running(FLATPAK_APP_ID):
            self._probe.command_succeeds(["flatpak", "kill", FLATPAK_APP_ID])
        self._clear()

    def restart(self, *, force: bool = False) -> ServiceHandle:
        """Stop the service, start it again and confirm it is alive.

        A service owned by someone else is only stopped when ``force`` is set;
        otherwise :class:`RestartSkipped` is raised and the service is left
        running.  Raises :class:`SpawnError` when the post-start probe finds
        nothing.
        """

        _LOGGER.info("Restarting companion service")
        outcome = self.terminate()
        if outcome is TerminationOutcome.SKIPPED and force:
            self.force_terminate_all()
            outcome = TerminationOutcome.TERMINATED
        elif outcome is TerminationOutcome.SKIPPED:
            pid = self._probe.find_pid(service_executable_name(self._platform))
            raise RestartSkipped(
                "Companion service was started outside this app and was not restarted; "
                "restart with force to stop it",
                pid,
            )
        elif outcome is TerminationOutcome.FAILED:
            raise SpawnError("Could not stop the running companion service")

        if outcome is TerminationOutcome.TERMINATED:
            self._sleep(self._settings.restart_delay_seconds)

        handle = self.start()
        self._sleep(self._settings.verify_delay_seconds)
        if not self.is_running():
            self._clear()
            raise SpawnError("Companion service is not running after restart")
        _LOGGER.info("Companion service restarted successfully")
        return handle

    def dispose(self) -> None:
        """Forget the tracked handle without touching any process."""

        self._clear()
        self._state = ServiceState.UNKNOWN

    def _clear(self) -> None:
        self._handle = None
        self._state = ServiceState.NOT_RUNNING


def ensure_executable_permissions(executable_path: Path) -> None:
    """Restore execute bits on a bundled service and its sibling binaries."""

    targets = [executable_path]
    targets.extend(
        executable_path.parent / name
        for name in COMPANION_BINARIES
        if (executable_path.parent / name).is_file()
    )
    for target in targets:
        try:
            target.chmod(0o755)
        except OSError as exc:
            _LOGGER.warning("Failed to set execute permission on %s: %s", target, exc)
        else:
            _LOGGER.debug("Set execute permission on %s", target)


def build_service_controller(platform: Platform | None = None) -> ServiceController:
    """Construct a :class:`ServiceController` for the running application."""

    return ServiceController(platform)


__all__ = ["ServiceController", "build_service_controller", "ensure_executable_permissions"]
