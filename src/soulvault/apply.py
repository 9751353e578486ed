"""Apply approved staging changes to the protected files.

Staging is the proposal: nothing is persisted between review and apply.
Each attempt re-derives the change set and walks a linear state machine::

    start -> diffed -> frozen -> verified -> guarded -> backed_up
          -> writing -> synced -> committed

Any failure after ``backed_up`` branches to ``rolling_back -> failed`` and
restores every protected file touched in this attempt before returning.
Errors are returned as values on :class:`ApplyResult`, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Sequence

from .config import CONFIG_FILENAME, FileOwnership, VaultConfig, protect_patterns
from .diff import DiffError, diff
from .errors import ApplyAborted, ApplyError, ApplyFailed, DiffFailed, NoChanges
from .freeze import discard_holding_area, freeze_and_verify
from .guards import (
    Policy,
    build_policy_context,
    check_self_protection,
    evaluate_policies,
    validate_policy_names,
)
from .schema import ApplyOutcome, ChangeStatus, FileChange, FrozenContent, VcsCommitResult
from .staging import BACKUP_DIR, backup_path, staging_path
from .telemetry import emit_event
from .tools.system_ops import SystemOperations, SystemOpsError
from .tools.vcs import GitError, GitRepository, protected_commit_message

LOGGER = logging.getLogger(__name__)


class ApplyState(str, Enum):
    """Phases of a single apply attempt."""

    START = "start"
    DIFFED = "diffed"
    FROZEN = "frozen"
    VERIFIED = "verified"
    GUARDED = "guarded"
    BACKED_UP = "backed_up"
    WRITING = "writing"
    SYNCED = "synced"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    FAILED = "failed"
    NO_CHANGES = "no_changes"


@dataclass(slots=True, frozen=True)
class ApplyResult:
    """Either an :class:`ApplyOutcome` or exactly one error variant."""

    outcome: ApplyOutcome | None = None
    error: ApplyError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def no_changes(self) -> bool:
        return isinstance(self.error, NoChanges)


@dataclass(slots=True)
class ApplyTransaction:
    """One apply attempt; use :func:`apply` rather than driving this directly."""

    ops: SystemOperations
    patterns: Sequence[str]
    approval_token: str
    protected_ownership: FileOwnership
    staging_ownership: FileOwnership | None = None
    policies: Sequence[Policy] = ()
    vcs: GitRepository | None = None
    config_path: str = CONFIG_FILENAME
    state: ApplyState = ApplyState.START
    history: List[ApplyState] = field(default_factory=list)
    _touched: List[str] = field(default_factory=list)
    _backups: Dict[str, str] = field(default_factory=dict)
    _warnings: List[str] = field(default_factory=list)

    # ------------------------------------------------------------ plumbing
    def _advance(self, state: ApplyState, **fields: object) -> None:
        self.history.append(state)
        self.state = state
        emit_event(f"apply.{state.value}", **fields)

    def _warn(self, message: str) -> None:
        LOGGER.warning(message)
        self._warnings.append(message)

    def _remove_area(self, path: str) -> str | None:
        try:
            if self.ops.exists(path):
                self.ops.delete(path)
        except SystemOpsError as error:
            return f"Cannot remove {path}: {error}"
        return None

    # --------------------------------------------------------------- phases
    def _diff(self) -> List[FileChange]:
        try:
            result = diff(self.ops, self.patterns)
        except DiffError as error:
            raise ApplyAborted(DiffFailed(message=str(error))) from error
        changes = list(result.actionable)
        if not changes:
            self._advance(ApplyState.NO_CHANGES)
            raise ApplyAborted(NoChanges())
        self._advance(ApplyState.DIFFED, paths=[change.path for change in changes])
        return changes

    def _guard(self, changes: Sequence[FileChange], frozen: FrozenContent) -> None:
        failure = check_self_protection(frozen, changes, config_path=self.config_path)
        if failure is not None:
            discard_holding_area(self.ops)
            raise ApplyAborted(failure)

        if self.policies:
            try:
                context = build_policy_context(self.ops, changes, frozen)
            except SystemOpsError as error:
                discard_holding_area(self.ops)
                raise ApplyAborted(
                    ApplyFailed(
                        message=f"Cannot read protected {error.path}: {error.kind}",
                        path=error.path,
                        operation=error.operation,
                    )
                ) from error
            violations = evaluate_policies(self.policies, context)
            if violations is not None:
                discard_holding_area(self.ops)
                raise ApplyAborted(violations)
        self._advance(ApplyState.GUARDED)

    def _backup(self, changes: Sequence[FileChange]) -> None:
        try:
            # Leftovers from an interrupted attempt must not be restored later.
            if self.ops.exists(BACKUP_DIR):
                self.ops.delete(BACKUP_DIR)
            self.ops.mkdir(BACKUP_DIR)
            for change in changes:
                if change.status == ChangeStatus.CREATED:
                    continue
                self.ops.copy(change.path, backup_path(change.path))
                self._backups[change.path] = backup_path(change.path)
        except SystemOpsError as error:
            self._remove_area(BACKUP_DIR)
            discard_holding_area(self.ops)
            raise ApplyAborted(
                ApplyFailed(
                    message=f"Backup of {error.path} failed: {error.kind}",
                    path=error.path,
                    operation="backup",
                )
            ) from error
        self._advance(ApplyState.BACKED_UP, paths=sorted(self._backups))

    def _write(self, changes: Sequence[FileChange], frozen: FrozenContent) -> List[str]:
        self._advance(ApplyState.WRITING)
        applied: List[str] = []
        owner = self.protected_ownership
        for change in changes:
            self._touched.append(change.path)
            operation = "delete" if change.status == ChangeStatus.DELETED else "write"
            try:
                if change.status == ChangeStatus.DELETED:
                    self.ops.delete(change.path)
                else:
                    self.ops.write_bytes(change.path, frozen[change.path])
                    operation = "chown"
                    self.ops.chown(change.path, owner.user, owner.group)
                    operation = "chmod"
                    self.ops.chmod(change.path, owner.mode)
            except SystemOpsError as error:
                rollback_errors = self._rollback()
                raise ApplyAborted(
                    ApplyFailed(
                        message=f"Cannot {operation} {change.path}: {error.kind}",
                        path=change.path,
                        operation=operation,
                        rollback_errors=tuple(rollback_errors),
                    )
                ) from error
            applied.append(change.path)
        return applied

    def _rollback(self) -> List[str]:
        """Restore every touched protected file to its pre-attempt state."""

        self._advance(ApplyState.ROLLING_BACK, paths=list(self._touched))
        owner = self.protected_ownership
        problems: List[str] = []
        for path in reversed(self._touched):
            try:
                backup = self._backups.get(path)
                if backup is None:
                    # Newly created file: the original state is "absent".
                    if self.ops.exists(path):
                        self.ops.delete(path)
                    continue
                self.ops.write_bytes(path, self.ops.read_bytes(backup))
                self.ops.chown(path, owner.user, owner.group)
                self.ops.chmod(path, owner.mode)
            except SystemOpsError as error:
                LOGGER.error("Rollback of %s failed: %s", path, error)
                problems.append(f"{path}: {error}")

        if problems:
            # Keep backups on disk so the owner can restore by hand.
            LOGGER.error("Rollback incomplete; backups kept under %s", BACKUP_DIR)
        else:
            failure = self._remove_area(BACKUP_DIR)
            if failure:
                LOGGER.warning(failure)
        discard_holding_area(self.ops)
        self._advance(ApplyState.FAILED, rollback_errors=problems)
        return problems

    def _resync_staging(self, changes: Sequence[FileChange]) -> None:
        for change in changes:
            if change.status == ChangeStatus.DELETED:
                continue
            target = staging_path(change.path)
            try:
                self.ops.copy(change.path, target)
                if self.staging_ownership is not None:
                    self.ops.chown(target, self.staging_ownership.user, self.staging_ownership.group)
                    self.ops.chmod(target, self.staging_ownership.mode)
            except SystemOpsError as error:
                self._warn(f"Staging resync of {change.path} failed: {error}")
        self._advance(ApplyState.SYNCED)

    def _cleanup(self) -> None:
        failure = self._remove_area(BACKUP_DIR)
        if failure:
            self._warn(failure)
        discard_holding_area(self.ops)

    def _commit(self, applied: Sequence[str]) -> VcsCommitResult | None:
        if self.vcs is None:
            return None
        message = protected_commit_message(applied)
        try:
            result = self.vcs.commit_paths(applied, message)
        except GitError as error:
            self._warn(f"Version control commit failed: {error}")
            return None
        self._advance(ApplyState.COMMITTED, committed=result.committed)
        return result

    # ------------------------------------------------------------------ run
    def run(self) -> ApplyResult:
        emit_event("apply.start", patterns=list(self.patterns))
        try:
            collision = validate_policy_names(self.policies)
            if collision is not None:
                raise ApplyAborted(collision)

            changes = self._diff()
            frozen = freeze_and_verify(self.ops, changes, self.approval_token, self.protected_ownership)
            self._advance(ApplyState.FROZEN, paths=sorted(frozen), token=self.approval_token.strip())
            self._advance(ApplyState.VERIFIED)
            self._guard(changes, frozen)
            self._backup(changes)
            applied = self._write(changes, frozen)
        except ApplyAborted as aborted:
            emit_event("apply.rejected", kind=aborted.error.kind, reason=aborted.error.describe())
            return ApplyResult(error=aborted.error)

        self._resync_staging(changes)
        self._cleanup()
        commit = self._commit(applied)
        return ApplyResult(
            outcome=ApplyOutcome(
                applied_paths=tuple(applied),
                vcs_commit=commit,
                warnings=tuple(self._warnings),
            )
        )


def apply(
    ops: SystemOperations,
    patterns: Sequence[str],
    approval_token: str,
    *,
    protected_ownership: FileOwnership,
    staging_ownership: FileOwnership | None = None,
    policies: Sequence[Policy] | None = None,
    vcs: GitRepository | None = None,
    config_path: str = CONFIG_FILENAME,
) -> ApplyResult:
    """Verify ``approval_token`` against frozen staged content and apply it.

    Self-protection always runs, whatever ``policies`` contains.  When
    ``vcs`` is given the applied paths are committed on a best-effort basis.
    """

    transaction = ApplyTransaction(
        ops=ops,
        patterns=list(patterns),
        approval_token=approval_token,
        protected_ownership=protected_ownership,
        staging_ownership=staging_ownership,
        policies=list(policies or ()),
        vcs=vcs,
        config_path=config_path,
    )
    return transaction.run()


def apply_with_config(
    ops: SystemOperations,
    config: VaultConfig,
    approval_token: str,
    *,
    policies: Sequence[Policy] | None = None,
    protected_ownership: FileOwnership | None = None,
    staging_ownership: FileOwnership | None = None,
    config_path: str = CONFIG_FILENAME,
) -> ApplyResult:
    """Apply using the patterns, identities and git setting from ``config``.

    ``config_path`` is the workspace-relative location ``config`` was loaded
    from; that file is guarded against deletion and invalid edits.
    """

    vcs = GitRepository.discover(ops) if config.git else None
    return apply(
        ops,
        protect_patterns(config),
        approval_token,
        protected_ownership=protected_ownership or config.ownership.protector,
        staging_ownership=staging_ownership or config.ownership.staging,
        policies=policies,
        vcs=vcs,
        config_path=config_path,
    )


__all__ = ["ApplyResult", "ApplyState", "ApplyTransaction", "apply", "apply_with_config"]
