"""Helpers for reporting update failures to the relaunched application."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from services.update.constants import UPDATE_FAILURE_MARKER_NAME
from services.update.paths import user_data_directory
from shared.platforms import Platform, PlatformUnsupportedError, detect_platform

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpdateFailureNotice:
    reason: str
    advice: str
    recorded_at: str | None = None


def get_failure_marker_path(
    platform: Platform | None = None, environ: Mapping[str, str] | None = None
) -> Path:
    """Return the sentinel file helper scripts write when an install fails."""

    return user_data_directory(platform or detect_platform(), environ) / UPDATE_FAILURE_MARKER_NAME


def clear_update_failure_marker(marker_path: Path | None = None) -> None:
    """Remove a stale marker before a new install attempt starts."""

    try:
        path = marker_path or get_failure_marker_path()
    except PlatformUnsupportedError:
        return
    _safe_remove(path)


def consume_update_failure_notice(marker_path: Path | None = None) -> UpdateFailureNotice | None:
    """Return the recorded failure, removing the marker."""

    try:
        path = marker_path or get_failure_marker_path()
    except PlatformUnsupportedError:
        return None

    if not path.exists():
        return None

    try:
        payload = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, json.JSONDecodeError):
        _LOGGER.debug("Unable to parse update failure marker at %s", path, exc_info=True)
        _safe_remove(path)
        return None

    if not isinstance(payload, dict):
        payload = {}
    notice = UpdateFailureNotice(
        reason=_coerce_text(payload.get("reason"), default="Unknown error."),
        advice=_coerce_text(payload.get("advice"), default="Please try again later."),
        recorded_at=payload.get("recorded_at") if isinstance(payload.get("recorded_at"), str) else None,
    )
    _LOGGER.info("Previous update attempt failed: %s", notice.reason)
    _safe_remove(path)
    return notice


def _coerce_text(value: Any, *, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    return default


def _safe_remove(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError:
        _LOGGER.debug("Unable to remove update failure marker at %s", path, exc_info=True)


__all__ = [
    "UpdateFailureNotice",
    "clear_update_failure_marker",
    "consume_update_failure_notice",
    "get_failure_marker_path",
]
