"""Freeze staged content out of the agent's reach, then verify it.

Staged copies are agent-writable at every moment, so hashing them in place
would leave a window between the check and the write.  Instead each changed
file is copied into the holding area, the holding area is handed to the
protector identity, and only then is the approval token recomputed from the
copies.  Whatever passes verification is exactly what gets applied.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import replace
from typing import Dict, List, Sequence

from .config import FileOwnership
from .diff import compute_approval_token
from .errors import ApplyAborted, ApplyFailed, HashMismatch
from .hashing import sha256_bytes
from .schema import ChangeStatus, FileChange, FrozenContent
from .staging import HOLDING_DIR, holding_path, staging_path
from .telemetry import emit_event
from .tools.system_ops import SystemOperations, SystemOpsError

LOGGER = logging.getLogger(__name__)


def discard_holding_area(ops: SystemOperations) -> None:
    """Remove the holding area, logging rather than raising on failure."""

    try:
        if ops.exists(HOLDING_DIR):
            ops.delete(HOLDING_DIR)
    except SystemOpsError as error:
        LOGGER.warning("Failed to remove holding area %s: %s", HOLDING_DIR, error)


def _abort(ops: SystemOperations, message: str, error: SystemOpsError) -> ApplyAborted:
    discard_holding_area(ops)
    return ApplyAborted(
        ApplyFailed(message=f"{message}: {error.kind}", path=error.path, operation=error.operation)
    )


def freeze_and_verify(
    ops: SystemOperations,
    changes: Sequence[FileChange],
    approval_token: str,
    protector: FileOwnership,
) -> FrozenContent:
    """Copy, lock down, re-hash and verify the actionable ``changes``.

    Raises :class:`ApplyAborted` carrying ``apply_failed`` when a copy,
    ownership change or read fails, or ``hash_mismatch`` when the frozen
    content does not match ``approval_token``.  The holding area is removed
    before either error propagates.
    """

    content_changes = [change for change in changes if change.status != ChangeStatus.DELETED]

    # A previous attempt may have died before cleanup; never reuse its files.
    discard_holding_area(ops)

    try:
        ops.mkdir(HOLDING_DIR)
    except SystemOpsError as error:
        raise _abort(ops, "Cannot create holding area", error) from error

    for change in content_changes:
        try:
            ops.copy(staging_path(change.path), holding_path(change.path))
        except SystemOpsError as error:
            raise _abort(ops, f"Cannot copy staged {change.path} to holding area", error) from error

    try:
        ops.chown(HOLDING_DIR, protector.user, protector.group)
        for change in content_changes:
            ops.chown(holding_path(change.path), protector.user, protector.group)
    except SystemOpsError as error:
        raise _abort(ops, "Cannot protect holding area", error) from error

    frozen: Dict[str, bytes] = {}
    rehashed: List[FileChange] = []
    for change in changes:
        if change.status == ChangeStatus.DELETED:
            rehashed.append(change)
            continue
        try:
            content = ops.read_bytes(holding_path(change.path))
        except SystemOpsError as error:
            raise _abort(ops, f"Cannot read frozen {change.path}", error) from error
        frozen[change.path] = content
        rehashed.append(replace(change, staged_hash=sha256_bytes(content)))

    actual = compute_approval_token(rehashed)
    if not hmac.compare_digest(actual.encode("utf-8"), approval_token.strip().encode("utf-8")):
        discard_holding_area(ops)
        emit_event("apply.hash_mismatch", expected=approval_token, actual=actual)
        raise ApplyAborted(HashMismatch(expected=approval_token, actual=actual))

    LOGGER.debug("Froze %d staged file(s) under %s", len(frozen), HOLDING_DIR)
    return FrozenContent(frozen)


__all__ = ["discard_holding_area", "freeze_and_verify"]
