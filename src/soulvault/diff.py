"""Compare protected files against their staging copies.

The diff engine classifies every resolved path and derives the approval
token a reviewer hands back to :func:`soulvault.apply.apply`.  A partial view
is unsafe to act on, so any I/O failure on an existing file
aborts the whole diff with :class:`DiffError`.
"""

from __future__ import annotations

import hashlib
from typing import Iterable, List, Sequence

from .hashing import sha256_bytes, unified_diff
from .patterns import PatternError, resolve_patterns
from .schema import ChangeStatus, DiffResult, FileChange
from .staging import staging_path
from .tools.system_ops import SystemOperations, SystemOpsError


class DiffError(RuntimeError):
    """Raised when the change set cannot be computed reliably."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


def compute_approval_token(changes: Iterable[FileChange]) -> str:
    """Return the deterministic approval token for ``changes``.

    Entries are sorted by path so iteration order never matters.  Deletions
    contribute a sentinel plus the protected hash so an old approval cannot be
    replayed against a protected file that changed since.
    """

    digest = hashlib.sha256()
    for change in sorted(changes, key=lambda item: item.path):
        if change.status == ChangeStatus.DELETED:
            digest.update(f"{change.path}\0DELETED\0{change.protected_hash or ''}\0".encode("utf-8"))
        elif change.status in (ChangeStatus.MODIFIED, ChangeStatus.CREATED) and change.staged_hash:
            digest.update(f"{change.path}\0{change.staged_hash}\0".encode("utf-8"))
    return digest.hexdigest()


def _exists(ops: SystemOperations, path: str) -> bool:
    try:
        return ops.exists(path)
    except SystemOpsError as error:
        raise DiffError(f"Cannot check {path}: {error.message}", path=path) from error


def _hash(ops: SystemOperations, path: str) -> str:
    try:
        return ops.hash_file(path)
    except SystemOpsError as error:
        raise DiffError(f"Cannot hash {path}: {error.message}", path=path) from error


def _read(ops: SystemOperations, path: str) -> bytes:
    try:
        return ops.read_bytes(path)
    except SystemOpsError as error:
        raise DiffError(f"Cannot read {path}: {error.message}", path=path) from error


def classify_path(ops: SystemOperations, path: str) -> FileChange:
    """Compare one protected path with its staging sibling.

    Staged bytes are read exactly once; the hash, and the diff shown to the
    reviewer, are both computed from that single read.
    """

    staged = staging_path(path)
    protected_exists = _exists(ops, path)
    staged_exists = _exists(ops, staged)

    if not protected_exists and not staged_exists:
        return FileChange(path=path, status=ChangeStatus.STAGING_MISSING)
    if protected_exists and not staged_exists:
        return FileChange(path=path, status=ChangeStatus.DELETED, protected_hash=_hash(ops, path))
    if not protected_exists:
        return FileChange(path=path, status=ChangeStatus.CREATED, staged_hash=sha256_bytes(_read(ops, staged)))

    previous = _read(ops, path)
    current = _read(ops, staged)
    protected_hash = sha256_bytes(previous)
    staged_hash = sha256_bytes(current)
    if protected_hash == staged_hash:
        return FileChange(
            path=path,
            status=ChangeStatus.UNCHANGED,
            protected_hash=protected_hash,
            staged_hash=staged_hash,
        )

    return FileChange(
        path=path,
        status=ChangeStatus.MODIFIED,
        protected_hash=protected_hash,
        staged_hash=staged_hash,
        diff_text=unified_diff(path, previous, current),
    )


def diff(ops: SystemOperations, patterns: Sequence[str], *, only: Iterable[str] | None = None) -> DiffResult:
    """Classify every protected path and compute the approval token.

    ``only`` narrows the report to the given paths (display use); the token
    then only covers those paths, so apply always diffs the full set.
    """

    try:
        paths = resolve_patterns(ops, patterns)
    except PatternError as error:
        raise DiffError(str(error)) from error

    if only is not None:
        wanted = set(only)
        paths = [path for path in paths if path in wanted]

    changes: List[FileChange] = [classify_path(ops, path) for path in paths]
    token = None
    if any(change.actionable for change in changes):
        token = compute_approval_token(changes)
    return DiffResult(changes=tuple(changes), approval_token=token)


__all__ = ["DiffError", "classify_path", "compute_approval_token", "diff"]
