"""Helpers for constructing and scheduling the update orchestrator."""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Callable

from app.config import get_release_index_url, get_update_settings
from app.version import get_app_version
from services.update.constants import LOCAL_RELEASE_ENV
from services.update.models import UpdateCheck, UpdateError
from services.update.orchestrator import UpdateOrchestrator
from services.update.providers import GitHubReleaseProvider, LocalFolderReleaseProvider, ReleaseProvider
from shared.platforms import PlatformUnsupportedError


_LOGGER = logging.getLogger(__name__)


def _build_provider_from_env() -> ReleaseProvider:
    local_dir = os.environ.get(LOCAL_RELEASE_ENV)
    if local_dir:
        folder = Path(local_dir)
        if folder.exists():
            _LOGGER.info("Using local update source at %s", folder)
            return LocalFolderReleaseProvider(folder)
        _LOGGER.warning("Configured local update directory does not exist: %s", folder)
    return GitHubReleaseProvider(get_release_index_url(), timeout=get_update_settings().timeout_seconds)


def build_update_orchestrator(provider: ReleaseProvider | None = None) -> UpdateOrchestrator | None:
    """Construct an :class:`UpdateOrchestrator` for the current environment."""

    provider = provider or _build_provider_from_env()
    try:
        return UpdateOrchestrator(provider, current_version=get_app_version())
    except PlatformUnsupportedError as exc:
        _LOGGER.info("Updates are not supported here: %s", exc)
        return None


def _run_update_check(
    orchestrator: UpdateOrchestrator,
    on_update_available: Callable[[UpdateOrchestrator, UpdateCheck], None] | None,
    on_complete: Callable[[], None] | None,
) -> None:
    try:
        check = orchestrator.check_for_update()
    except UpdateError as exc:
        _LOGGER.warning("Automatic update check failed: %s", exc)
        if on_complete:
            on_complete()
        return
    except Exception:  # pragma: no cover - background thread must not die silently
        _LOGGER.exception("Unexpected error while checking for updates")
        if on_complete:
            on_complete()
        return

    try:
        if check.available and on_update_available is not None:
            on_update_available(orchestrator, check)
    finally:
        if on_complete:
            on_complete()


def schedule_startup_update_check(
    orchestrator: UpdateOrchestrator | None = None,
    *,
    enabled: bool = True,
    on_update_available: Callable[[UpdateOrchestrator, UpdateCheck], None] | None = None,
    on_complete: Callable[[], None] | None = None,
) -> threading.Thread | None:
    """Kick off an asynchronous update check on a daemon thread."""

    if not enabled:
        _LOGGER.debug("Automatic updates disabled by user preference")
        return None

    orchestrator = orchestrator or build_update_orchestrator()
    if orchestrator is None:
        return None

    thread = threading.Thread(
        target=_run_update_check,
        args=(orchestrator, on_update_available, on_complete),
        name="streamgo-update",
        daemon=True,
    )
    thread.start()
    return thread


__all__ = [
    "build_update_orchestrator",
    "schedule_startup_update_check",
]
