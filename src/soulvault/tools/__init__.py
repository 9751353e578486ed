"""OS and version control collaborators used by the approval pipeline."""

from .memory_ops import InMemorySystemOps, MemoryFile, RecordedOp
from .system_ops import (
    ExecResult,
    FileStat,
    LocalSystemOps,
    NotFoundError,
    OpsIOError,
    PermissionDeniedError,
    SystemOperations,
    SystemOpsError,
)
from .vcs import GitError, GitRepository, protected_commit_message, watch_commit_message

__all__ = [
    "ExecResult",
    "FileStat",
    "GitError",
    "GitRepository",
    "InMemorySystemOps",
    "LocalSystemOps",
    "MemoryFile",
    "NotFoundError",
    "OpsIOError",
    "PermissionDeniedError",
    "RecordedOp",
    "SystemOperations",
    "SystemOpsError",
    "protected_commit_message",
    "watch_commit_message",
]
