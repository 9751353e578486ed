"""Resolve protected path patterns into concrete workspace files.

Literal entries pass through untouched (even when they do not exist yet) so a
file the agent proposes to create is still diffed.  Entries containing ``*``
are expanded against the live filesystem: ``*`` stays inside one path
segment while ``**`` crosses directory boundaries.
"""

from __future__ import annotations

import posixpath
import re
from functools import lru_cache
from typing import TYPE_CHECKING, Iterable, List

from .staging import INTERNAL_DIR, is_staging_path

if TYPE_CHECKING:
    from .tools.system_ops import SystemOperations


class PatternError(RuntimeError):
    """Raised when a pattern is malformed or cannot be expanded."""


def is_glob(pattern: str) -> bool:
    """Return ``True`` when ``pattern`` needs filesystem expansion."""

    return "*" in pattern


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    pieces = []
    for segment in pattern.split("**"):
        pieces.append("[^/]*".join(re.escape(part) for part in segment.split("*")))
    return re.compile("^" + ".*".join(pieces) + "$")


def match_glob(pattern: str, path: str) -> bool:
    """Return ``True`` when ``path`` matches ``pattern``."""

    return _compile(pattern).match(path) is not None


def normalise_pattern(pattern: str) -> str:
    """Normalise a configured entry into a slash separated relative form."""

    candidate = pattern.replace("\\", "/").strip()
    if not candidate:
        raise PatternError("Empty path pattern.")
    if candidate.startswith("/"):
        raise PatternError(f"Absolute paths are not allowed: {pattern}")
    normalised = posixpath.normpath(candidate)
    if normalised == ".." or normalised.startswith("../"):
        raise PatternError(f"Pattern escapes the workspace: {pattern}")
    return normalised


def is_internal_path(path: str) -> bool:
    """Return ``True`` for staging siblings and bookkeeping files."""

    if path == INTERNAL_DIR or path.startswith(INTERNAL_DIR + "/"):
        return True
    return is_staging_path(path)


def resolve_patterns(ops: "SystemOperations", patterns: Iterable[str]) -> List[str]:
    """Expand ``patterns`` into a sorted, de-duplicated list of paths.

    Internal paths are dropped before they reach the diff engine; a glob such
    as ``**/*.md`` would otherwise match the staging copies themselves.
    """

    from .tools.system_ops import SystemOpsError

    resolved: set[str] = set()
    for raw in patterns:
        pattern = normalise_pattern(raw)
        if not is_glob(pattern):
            resolved.add(pattern)
            continue
        try:
            matches = ops.glob(pattern)
        except SystemOpsError as error:
            raise PatternError(f"Unable to expand {pattern}: {error}") from error
        resolved.update(matches)

    return sorted(path for path in resolved if not is_internal_path(path))


def is_protected_path(patterns: Iterable[str], path: str) -> bool:
    """Return ``True`` when ``path`` is covered by one of ``patterns``.

    Staging siblings are never protected: they are where the agent is
    supposed to write.
    """

    try:
        candidate = normalise_pattern(path)
    except PatternError:
        return False
    if is_internal_path(candidate):
        return False
    for raw in patterns:
        try:
            pattern = normalise_pattern(raw)
        except PatternError:
            continue
        if pattern == candidate or (is_glob(pattern) and match_glob(pattern, candidate)):
            return True
    return False


__all__ = [
    "PatternError",
    "is_glob",
    "is_internal_path",
    "is_protected_path",
    "match_glob",
    "normalise_pattern",
    "resolve_patterns",
]
