"""Typed records exchanged between the diff, guard and apply stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple


class ChangeStatus(str, Enum):
    """Classification of a tracked path after diffing."""

    UNCHANGED = "unchanged"
    MODIFIED = "modified"
    CREATED = "created"
    STAGING_MISSING = "staging_missing"
    DELETED = "deleted"


ACTIONABLE_STATUSES = frozenset({ChangeStatus.MODIFIED, ChangeStatus.CREATED, ChangeStatus.DELETED})


@dataclass(slots=True, frozen=True)
class FileChange:
    """Diff outcome for a single tracked path.

    ``protected_hash`` is kept for deletions so the approval token changes
    if the protected copy itself changes between review and apply.
    """

    path: str
    status: ChangeStatus
    protected_hash: str | None = None
    staged_hash: str | None = None
    diff_text: str | None = None

    @property
    def actionable(self) -> bool:
        return self.status in ACTIONABLE_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "status": self.status.value,
            "protected_hash": self.protected_hash,
            "staged_hash": self.staged_hash,
            "diff": self.diff_text,
        }


@dataclass(slots=True, frozen=True)
class DiffResult:
    """Ordered change list plus the approval token when anything is pending."""

    changes: Tuple[FileChange, ...] = ()
    approval_token: str | None = None

    @property
    def has_changes(self) -> bool:
        return any(change.actionable for change in self.changes)

    @property
    def actionable(self) -> Tuple[FileChange, ...]:
        return tuple(change for change in self.changes if change.actionable)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changes": [change.to_dict() for change in self.changes],
            "has_changes": self.has_changes,
            "approval_token": self.approval_token,
        }


class FrozenContent(Mapping[str, bytes]):
    """Read-only view of staged bytes captured from the holding area."""

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, bytes]) -> None:
        self._data = MappingProxyType(dict(data))

    def __getitem__(self, key: str) -> bytes:
        return self._data[key]

    def __iter__(self):
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"FrozenContent({sorted(self._data)!r})"


@dataclass(slots=True, frozen=True)
class VcsCommitResult:
    """Outcome of the best-effort version control commit."""

    committed: bool
    message: str
    paths: Tuple[str, ...] = ()
    sha: str | None = None


@dataclass(slots=True, frozen=True)
class ApplyOutcome:
    """Paths mutated by a successful apply."""

    applied_paths: Tuple[str, ...]
    vcs_commit: VcsCommitResult | None = None
    warnings: Tuple[str, ...] = field(default_factory=tuple)


__all__ = [
    "ACTIONABLE_STATUSES",
    "ApplyOutcome",
    "ChangeStatus",
    "DiffResult",
    "FileChange",
    "FrozenContent",
    "VcsCommitResult",
]
