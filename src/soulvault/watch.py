"""Record watch-tier files in version control.

Watch-tier files are edited by the agent directly; nothing is staged or
approved.  The owner keeps a history of them by committing whatever is
currently on disk.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from .diff import DiffError
from .patterns import PatternError, resolve_patterns
from .schema import VcsCommitResult
from .telemetry import emit_event
from .tools.system_ops import SystemOperations, SystemOpsError
from .tools.vcs import GitRepository, watch_commit_message

LOGGER = logging.getLogger(__name__)


def existing_watch_files(ops: SystemOperations, patterns: Sequence[str]) -> List[str]:
    """Return the watch-tier files that currently exist, sorted."""

    try:
        candidates = resolve_patterns(ops, patterns)
    except PatternError as error:
        raise DiffError(str(error)) from error
    files: List[str] = []
    for path in candidates:
        try:
            if ops.exists(path):
                files.append(path)
        except SystemOpsError as error:
            raise DiffError(f"Cannot check {path}: {error.message}", path=path) from error
    return files


def commit_watch_files(
    ops: SystemOperations,
    patterns: Sequence[str],
    vcs: GitRepository,
) -> VcsCommitResult | None:
    """Commit the current watch-tier files; ``None`` when none exist.

    Raises :class:`soulvault.tools.vcs.GitError` when git fails.
    """

    files = existing_watch_files(ops, patterns)
    if not files:
        LOGGER.info("No watch-tier files to record")
        return None
    result = vcs.commit_paths(files, watch_commit_message())
    emit_event("watch.recorded", paths=files, committed=result.committed)
    return result


__all__ = ["commit_watch_files", "existing_watch_files"]
