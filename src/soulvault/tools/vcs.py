"""Minimal git helpers for recording approved changes.

Commits are a convenience for the owner's history: the apply pipeline calls
them only after the protected files are already correct, and a failure here
never unwinds an apply.  Every git invocation goes through the OS operation
layer so tests can script its results.
"""

from __future__ import annotations

from typing import List, Sequence

from ..schema import VcsCommitResult
from .system_ops import ExecResult, SystemOperations, SystemOpsError

COMMIT_AUTHOR = "soulvault <soulvault@localhost>"


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


def protected_commit_message(paths: Sequence[str], note: str | None = None) -> str:
    """Build a human-readable commit message for approved changes."""

    base = f"soulvault: protected update ({', '.join(paths)})"
    if note:
        return f"{base}\n\n{note}"
    return base


def watch_commit_message() -> str:
    return "soulvault: watch sync"


class GitRepository:
    """Lightweight wrapper around ``git`` commands run in the workspace."""

    def __init__(self, ops: SystemOperations) -> None:
        self.ops = ops

    @classmethod
    def discover(cls, ops: SystemOperations) -> "GitRepository | None":
        """Return a repository for the workspace, or ``None`` without ``.git``."""

        try:
            if not ops.exists(".git"):
                return None
        except SystemOpsError:
            return None
        return cls(ops)

    # ------------------------------------------------------------------ git IO
    def _run_git(self, args: Sequence[str], *, check: bool = True) -> ExecResult:
        try:
            result = self.ops.exec("git", list(args))
        except SystemOpsError as error:
            raise GitError(f"git {' '.join(args)} failed: {error}") from error
        if check and not result.ok:
            message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
            raise GitError(f"git {' '.join(args)} failed: {message}")
        return result

    def git(self, *args: str, check: bool = True) -> ExecResult:
        """Execute ``git`` with ``args`` relative to the workspace root."""

        return self._run_git(list(args), check=check)

    def has_staged_changes(self) -> bool:
        """Return ``True`` when the index differs from ``HEAD``."""

        # exit code 0 means the index is clean, 1 means something is staged
        result = self._run_git(["diff", "--cached", "--quiet"], check=False)
        if result.returncode not in (0, 1):
            message = result.stderr.strip() or "unable to inspect the index"
            raise GitError(f"git diff --cached failed: {message}")
        return result.returncode == 1

    def commit_paths(self, paths: Sequence[str], message: str) -> VcsCommitResult:
        """Stage ``paths`` (including deletions) and commit them.

        Returns a result with ``committed=False`` when nothing changed.
        """

        staged: List[str] = list(paths)
        if not staged:
            return VcsCommitResult(committed=False, message=message)

        for path in staged:
            self._run_git(["add", "--all", "--", path])

        if not self.has_staged_changes():
            return VcsCommitResult(committed=False, message=message, paths=tuple(staged))

        self._run_git(["commit", "--author", COMMIT_AUTHOR, "-m", message])
        rev = self._run_git(["rev-parse", "HEAD"], check=False)
        sha = rev.stdout.strip() if rev.ok and rev.stdout.strip() else None
        return VcsCommitResult(committed=True, message=message, paths=tuple(staged), sha=sha)


__all__ = ["COMMIT_AUTHOR", "GitError", "GitRepository", "protected_commit_message", "watch_commit_message"]
