"""Application-wide configuration loaded from JSON resources."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from importlib import resources
from math import isfinite
from pathlib import Path
from typing import Any, Mapping

_CONFIG_RESOURCE = "app.json"
_APP_CONFIG_CACHE: AppConfig | None = None

RELEASE_INDEX_URL_ENV = "STREAMGO_RELEASE_INDEX_URL"

DEFAULT_RELEASE_INDEX_URL = "https://api.github.com/repos/Bo0ii/StreamGo/releases/latest"
DEFAULT_RELEASE_PAGE_URL = "https://github.com/Bo0ii/StreamGo/releases/latest"


@dataclass(frozen=True)
class UpdateSettings:
    """Knobs for release discovery and artifact downloads."""

    release_index_url: str
    release_page_url: str
    max_attempts: int
    retry_delay_seconds: float
    min_artifact_bytes: int
    timeout_seconds: float
    max_redirects: int


@dataclass(frozen=True)
class CompanionSettings:
    """Timings used when supervising the companion service."""

    restart_delay_seconds: float
    verify_delay_seconds: float
    command_timeout_seconds: float
    install_timeout_seconds: float = 300.0
    install_verify_seconds: float = 60.0


@dataclass(frozen=True)
class AppConfig:
    """Structured configuration values for the desktop shell."""

    update: UpdateSettings
    companion: CompanionSettings


def get_app_config() -> AppConfig:
    """Return the cached application configuration."""

    global _APP_CONFIG_CACHE
    if _APP_CONFIG_CACHE is None:
        _APP_CONFIG_CACHE = load_app_config()
    return _APP_CONFIG_CACHE


def reset_app_config_cache() -> None:
    """Reset the cached configuration for subsequent reloads."""

    global _APP_CONFIG_CACHE
    _APP_CONFIG_CACHE = None


def load_app_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from ``path`` or the bundled JSON resource."""

    data = _read_config_data(path)
    update_section = data.get("update") if isinstance(data, Mapping) else None
    companion_section = data.get("companion") if isinstance(data, Mapping) else None
    return AppConfig(
        update=_parse_update_section(update_section),
        companion=_parse_companion_section(companion_section),
    )


def get_update_settings() -> UpdateSettings:
    """Convenience accessor for the update configuration."""

    return get_app_config().update


def get_companion_settings() -> CompanionSettings:
    """Convenience accessor for the companion service configuration."""

    return get_app_config().companion


def get_release_index_url() -> str:
    """Return the release index URL, honouring :data:`RELEASE_INDEX_URL_ENV`."""

    override = os.environ.get(RELEASE_INDEX_URL_ENV, "").strip()
    if override:
        return override
    return get_update_settings().release_index_url


def _read_config_data(path: str | Path | None) -> Mapping[str, Any]:
    if path is not None:
        return _load_json_from_path(Path(path).expanduser())
    return _load_default_config_data()


def _load_json_from_path(path: Path) -> Mapping[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    return _parse_json(raw)


def _load_default_config_data() -> Mapping[str, Any]:
    try:
        resource = resources.files(__package__).joinpath(_CONFIG_RESOURCE)
        raw = resource.read_text(encoding="utf-8")
    except (FileNotFoundError, OSError):
        return {}
    return _parse_json(raw)


def _parse_json(raw: str) -> Mapping[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if isinstance(parsed, Mapping):
        return parsed
    return {}


def _parse_update_section(section: Mapping[str, Any] | None) -> UpdateSettings:
    if not isinstance(section, Mapping):
        section = {}
    return UpdateSettings(
        release_index_url=_coerce_url(section.get("release_index_url"), default=DEFAULT_RELEASE_INDEX_URL),
        release_page_url=_coerce_url(section.get("release_page_url"), default=DEFAULT_RELEASE_PAGE_URL),
        max_attempts=_coerce_positive_int(section.get("max_attempts"), default=3),
        retry_delay_seconds=_coerce_non_negative_float(section.get("retry_delay_seconds"), default=2.0),
        min_artifact_bytes=_coerce_positive_int(section.get("min_artifact_bytes"), default=1024 * 1024),
        timeout_seconds=_coerce_non_negative_float(section.get("timeout_seconds"), default=30.0),
        max_redirects=_coerce_positive_int(section.get("max_redirects"), default=10),
    )


def _parse_companion_section(section: Mapping[str, Any] | None) -> CompanionSettings:
    if not isinstance(section, Mapping):
        section = {}
    return CompanionSettings(
        restart_delay_seconds=_coerce_non_negative_float(section.get("restart_delay_seconds"), default=2.0),
        verify_delay_seconds=_coerce_non_negative_float(section.get("verify_delay_seconds"), default=1.0),
        command_timeout_seconds=_coerce_non_negative_float(section.get("command_timeout_seconds"), default=10.0),
        install_timeout_seconds=_coerce_non_negative_float(section.get("install_timeout_seconds"), default=300.0),
        install_verify_seconds=_coerce_non_negative_float(section.get("install_verify_seconds"), default=60.0),
    )


def _coerce_url(value: Any, *, default: str) -> str:
    if isinstance(value, str):
        candidate = value.strip()
        if candidate.startswith(("https://", "http://", "file://")):
            return candidate
    return default


def _coerce_positive_int(value: Any, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        candidate = int(value)
    elif isinstance(value, str):
        try:
            candidate = int(float(value))
        except ValueError:
            return default
    else:
        return default
    if candidate <= 0:
        return default
    return candidate


def _coerce_non_negative_float(value: Any, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        candidate = float(value)
    elif isinstance(value, str):
        try:
            candidate = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    if not isfinite(candidate) or candidate < 0:
        return default
    return candidate
