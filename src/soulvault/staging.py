"""Staging and bookkeeping path helpers.

Staging copies live beside the protected file as dotfile siblings so editors
keep syntax highlighting and ``ls -a`` shows them::

    SOUL.md          -> .soulvault.SOUL.md
    memory/notes.md  -> memory/.soulvault.notes.md
"""

from __future__ import annotations

import posixpath

STAGING_PREFIX = ".soulvault."
INTERNAL_DIR = ".soulvault"
HOLDING_DIR = f"{INTERNAL_DIR}/pending"
BACKUP_DIR = f"{INTERNAL_DIR}/backup"


def staging_path(path: str) -> str:
    """Return the staging sibling for a protected ``path``."""

    directory, name = posixpath.split(path)
    sibling = f"{STAGING_PREFIX}{name}"
    return posixpath.join(directory, sibling) if directory else sibling


def is_staging_path(path: str) -> bool:
    return posixpath.basename(path).startswith(STAGING_PREFIX)


def holding_path(path: str) -> str:
    return f"{HOLDING_DIR}/{path}"


def backup_path(path: str) -> str:
    return f"{BACKUP_DIR}/{path}"


__all__ = [
    "BACKUP_DIR",
    "HOLDING_DIR",
    "INTERNAL_DIR",
    "STAGING_PREFIX",
    "backup_path",
    "holding_path",
    "is_staging_path",
    "staging_path",
]
