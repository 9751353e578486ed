"""Owner-approved changes to an agent's protected identity files."""

from .apply import ApplyResult, apply, apply_with_config
from .config import (
    ConfigError,
    FileOwnership,
    VaultConfig,
    load_config,
    parse_config,
    protect_patterns,
    watch_patterns,
)
from .diff import DiffError, compute_approval_token, diff
from .errors import (
    ApplyError,
    ApplyFailed,
    DiffFailed,
    HashMismatch,
    NoChanges,
    PolicyNameCollision,
    PolicyViolation,
    PolicyViolationError,
    SelfProtectionError,
)
from .guards import Policy, PolicyContext, PolicyContextEntry
from .patterns import PatternError, is_protected_path, resolve_patterns
from .reset import ResetResult, reset_staging
from .schema import ApplyOutcome, ChangeStatus, DiffResult, FileChange
from .staging import staging_path
from .watch import commit_watch_files

__all__ = [
    "ApplyError",
    "ApplyFailed",
    "ApplyOutcome",
    "ApplyResult",
    "ChangeStatus",
    "ConfigError",
    "DiffError",
    "DiffFailed",
    "DiffResult",
    "FileChange",
    "FileOwnership",
    "HashMismatch",
    "NoChanges",
    "PatternError",
    "Policy",
    "PolicyContext",
    "PolicyContextEntry",
    "PolicyNameCollision",
    "PolicyViolation",
    "PolicyViolationError",
    "ResetResult",
    "SelfProtectionError",
    "VaultConfig",
    "apply",
    "apply_with_config",
    "commit_watch_files",
    "compute_approval_token",
    "diff",
    "is_protected_path",
    "load_config",
    "parse_config",
    "protect_patterns",
    "reset_staging",
    "resolve_patterns",
    "staging_path",
    "watch_patterns",
]
