"""Checks that run against frozen content before anything is written.

Two gates run in order:

``check_self_protection``
    Hardcoded and always evaluated, regardless of the policy list a caller
    passes.  It keeps the tool from being switched off through its own
    approval flow: the config file may not be deleted and its replacement
    must still load.

``evaluate_policies``
    Named, caller-supplied checks.  Every policy runs even after one fails so
    a single attempt reports every reason it was blocked.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Dict, List, Optional

from .config import CONFIG_FILENAME, ConfigError, parse_config
from .errors import PolicyNameCollision, PolicyViolation, PolicyViolationError, SelfProtectionError
from .hashing import decode_text, unified_diff
from .schema import ChangeStatus, FileChange, FrozenContent
from .tools.system_ops import SystemOperations

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PolicyContextEntry:
    """What a policy sees for one changed path."""

    final: str
    diff: str
    previous: str


PolicyContext = Mapping[str, PolicyContextEntry]
PolicyCheck = Callable[[PolicyContext], Optional[str]]


@dataclass(slots=True, frozen=True)
class Policy:
    """A named check; ``check`` returns ``None`` to allow or a message to block."""

    name: str
    check: PolicyCheck


def check_self_protection(
    frozen: FrozenContent,
    changes: Sequence[FileChange],
    *,
    config_path: str = CONFIG_FILENAME,
) -> SelfProtectionError | None:
    """Return an error when the change set would disable the tool itself."""

    if any(change.path == config_path and change.status == ChangeStatus.DELETED for change in changes):
        return SelfProtectionError(
            message=f"Cannot delete {config_path}; it is required for soulvault to function."
        )

    content = frozen.get(config_path)
    if content is None:
        return None
    try:
        parse_config(content)
    except ConfigError as error:
        return SelfProtectionError(message=f"{config_path} would be invalid after this change: {error}")
    return None


def validate_policy_names(policies: Sequence[Policy]) -> PolicyNameCollision | None:
    """Reject a batch in which two policies share a name."""

    seen: set[str] = set()
    duplicates: List[str] = []
    for policy in policies:
        if policy.name in seen and policy.name not in duplicates:
            duplicates.append(policy.name)
        seen.add(policy.name)
    if duplicates:
        return PolicyNameCollision(duplicates=tuple(duplicates))
    return None


def evaluate_policies(policies: Sequence[Policy], context: PolicyContext) -> PolicyViolationError | None:
    """Run every policy and collect violations in policy order."""

    violations: List[PolicyViolation] = []
    for policy in policies:
        try:
            outcome = policy.check(context)
        except Exception as error:  # noqa: BLE001 - a crashing policy blocks like a failing one
            LOGGER.debug("Policy %s raised", policy.name, exc_info=True)
            outcome = f"policy raised {type(error).__name__}: {error}"
        if outcome is not None:
            violations.append(PolicyViolation(policy=policy.name, message=str(outcome)))
    if violations:
        return PolicyViolationError(violations=tuple(violations))
    return None


def build_policy_context(
    ops: SystemOperations,
    changes: Sequence[FileChange],
    frozen: FrozenContent,
) -> PolicyContext:
    """Assemble the per-path view handed to policies.

    ``final`` always comes from the frozen copies; ``previous`` is read from
    the protected file, which the agent cannot write.  The diff is rebuilt
    from those two so it describes exactly what will be written.
    Raises :class:`SystemOpsError` when an existing protected file cannot be read.
    """

    context: Dict[str, PolicyContextEntry] = {}
    for change in changes:
        if change.status == ChangeStatus.DELETED:
            context[change.path] = PolicyContextEntry(
                final="",
                diff=f"File deleted: {change.path}",
                previous=decode_text(ops.read_bytes(change.path)),
            )
        elif change.status == ChangeStatus.MODIFIED:
            previous = ops.read_bytes(change.path)
            context[change.path] = PolicyContextEntry(
                final=decode_text(frozen[change.path]),
                diff=unified_diff(change.path, previous, frozen[change.path]),
                previous=decode_text(previous),
            )
        elif change.status == ChangeStatus.CREATED:
            context[change.path] = PolicyContextEntry(
                final=decode_text(frozen[change.path]),
                diff="",
                previous="",
            )
    return context


__all__ = [
    "Policy",
    "PolicyCheck",
    "PolicyContext",
    "PolicyContextEntry",
    "build_policy_context",
    "check_self_protection",
    "evaluate_policies",
    "validate_policy_names",
]
