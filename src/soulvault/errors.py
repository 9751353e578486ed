"""Closed set of reasons an apply attempt can end without applying.

Each variant is a frozen dataclass with a ``kind`` discriminant and only the
fields relevant to it, so callers can ``match`` on the class or branch on
``error.kind``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Literal, Tuple, Union

ErrorKind = Literal[
    "no_changes",
    "hash_mismatch",
    "self_protection",
    "policy_violation",
    "policy_name_collision",
    "apply_failed",
    "diff_failed",
]


@dataclass(slots=True, frozen=True)
class PolicyViolation:
    """A single policy that blocked the change set."""

    policy: str
    message: str


@dataclass(slots=True, frozen=True)
class NoChanges:
    kind: ClassVar[Literal["no_changes"]] = "no_changes"

    def describe(self) -> str:
        return "No changes to apply; staging matches the protected files."


@dataclass(slots=True, frozen=True)
class HashMismatch:
    kind: ClassVar[Literal["hash_mismatch"]] = "hash_mismatch"
    expected: str
    actual: str

    def describe(self) -> str:
        return f"Expected approval hash {self.expected} but the frozen content hashes to {self.actual}."


@dataclass(slots=True, frozen=True)
class SelfProtectionError:
    kind: ClassVar[Literal["self_protection"]] = "self_protection"
    message: str

    def describe(self) -> str:
        return self.message


@dataclass(slots=True, frozen=True)
class PolicyViolationError:
    kind: ClassVar[Literal["policy_violation"]] = "policy_violation"
    violations: Tuple[PolicyViolation, ...]

    def describe(self) -> str:
        return "; ".join(f"{item.policy}: {item.message}" for item in self.violations)


@dataclass(slots=True, frozen=True)
class PolicyNameCollision:
    kind: ClassVar[Literal["policy_name_collision"]] = "policy_name_collision"
    duplicates: Tuple[str, ...]

    def describe(self) -> str:
        return "Duplicate policy names: " + ", ".join(self.duplicates)


@dataclass(slots=True, frozen=True)
class ApplyFailed:
    """A step of the pipeline failed; protected files were restored."""

    kind: ClassVar[Literal["apply_failed"]] = "apply_failed"
    message: str
    path: str | None = None
    operation: str | None = None
    rollback_errors: Tuple[str, ...] = field(default_factory=tuple)

    def describe(self) -> str:
        if not self.rollback_errors:
            return self.message
        return f"{self.message} (rollback problems: {'; '.join(self.rollback_errors)})"


@dataclass(slots=True, frozen=True)
class DiffFailed:
    kind: ClassVar[Literal["diff_failed"]] = "diff_failed"
    message: str

    def describe(self) -> str:
        return self.message


ApplyError = Union[
    NoChanges,
    HashMismatch,
    SelfProtectionError,
    PolicyViolationError,
    PolicyNameCollision,
    ApplyFailed,
    DiffFailed,
]


class ApplyAborted(Exception):
    """Internal signal carrying the error variant that ends an attempt."""

    def __init__(self, error: ApplyError) -> None:
        super().__init__(error.describe())
        self.error = error


__all__ = [
    "ApplyAborted",
    "ApplyError",
    "ApplyFailed",
    "DiffFailed",
    "ErrorKind",
    "HashMismatch",
    "NoChanges",
    "PolicyNameCollision",
    "PolicyViolation",
    "PolicyViolationError",
    "SelfProtectionError",
]
