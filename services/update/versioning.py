"""Helpers for comparing dotted release versions."""

from __future__ import annotations

import re
from itertools import zip_longest

from packaging.version import InvalidVersion, Version


__all__ = ["compare_versions", "is_newer", "normalize_version"]


def normalize_version(version: str) -> str:
    """Strip whitespace and a leading ``v`` from a release tag."""

    cleaned = version.strip()
    if cleaned[:1] in {"v", "V"}:
        cleaned = cleaned[1:]
    return cleaned


def compare_versions(current_version: str, candidate: str) -> int:
    """Compare ``candidate`` against ``current_version``.

    Returns ``1`` when ``candidate`` is newer, ``-1`` when it is older and ``0``
    when the versions are equivalent.  Components are compared numerically, so
    ``1.10.0`` is newer than ``1.9.5``.  Strings that are not PEP 440 versions
    fall back to a component-wise comparison of their dotted parts.
    """

    current = normalize_version(current_version)
    other = normalize_version(candidate)
    if other == current:
        return 0

    try:
        candidate_version = Version(other)
        current_version_parsed = Version(current)
    except InvalidVersion:
        return _fallback_compare(current, other)

    if candidate_version == current_version_parsed:
        return 0
    if candidate_version > current_version_parsed:
        return 1
    return -1


def is_newer(candidate: str, current_version: str) -> bool:
    """Return ``True`` if ``candidate`` is newer than ``current_version``."""

    return compare_versions(current_version, candidate) > 0


_SEPARATORS = re.compile(r"[.\-+_]+")


def _component_key(part: str) -> tuple[int, int, str]:
    if part.isdigit():
        return (0, int(part), "")
    return (1, 0, part.lower())


def _fallback_compare(current_version: str, candidate: str) -> int:
    current_parts = [_component_key(p) for p in _SEPARATORS.split(current_version) if p]
    candidate_parts = [_component_key(p) for p in _SEPARATORS.split(candidate) if p]
    padding = (0, 0, "")
    for mine, theirs in zip_longest(current_parts, candidate_parts, fillvalue=padding):
        if mine != theirs:
            return 1 if theirs > mine else -1
    return 0
