"""Discard pending proposals by copying protected content back to staging."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from .config import FileOwnership
from .diff import diff
from .schema import ChangeStatus
from .staging import staging_path
from .telemetry import emit_event
from .tools.system_ops import SystemOperations, SystemOpsError

LOGGER = logging.getLogger(__name__)

_RESETTABLE = (ChangeStatus.MODIFIED, ChangeStatus.DELETED)


@dataclass(slots=True, frozen=True)
class ResetResult:
    reset_paths: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.errors


def reset_staging(
    ops: SystemOperations,
    patterns: Sequence[str],
    staging_ownership: FileOwnership | None = None,
) -> ResetResult:
    """Overwrite modified staging copies and recreate removed ones.

    Staged files without a protected counterpart are proposals for new files
    and are left alone.  Raises :class:`soulvault.diff.DiffError` when the
    current state cannot be determined.
    """

    result = diff(ops, patterns)
    reset: List[str] = []
    errors: List[str] = []
    for change in result.changes:
        if change.status not in _RESETTABLE:
            continue
        target = staging_path(change.path)
        try:
            ops.copy(change.path, target)
            if staging_ownership is not None:
                ops.chown(target, staging_ownership.user, staging_ownership.group)
                ops.chmod(target, staging_ownership.mode)
        except SystemOpsError as error:
            LOGGER.warning("Could not reset staging copy of %s: %s", change.path, error)
            errors.append(f"{change.path}: {error}")
            continue
        reset.append(change.path)

    emit_event("reset.done", paths=reset, errors=len(errors))
    return ResetResult(reset_paths=tuple(reset), errors=tuple(errors))


__all__ = ["ResetResult", "reset_staging"]
