"""Content hashing and unified diff rendering."""

from __future__ import annotations

import difflib
import hashlib


def sha256_bytes(content: bytes) -> str:
    """Return the SHA-256 hex digest of ``content``."""

    return hashlib.sha256(content).hexdigest()


def decode_text(content: bytes) -> str:
    """Decode file content for display and policy checks."""

    return content.decode("utf-8", errors="replace")


def unified_diff(path: str, previous: bytes, current: bytes) -> str:
    """Render a unified diff between two versions of ``path``.

    Headers follow the ``a/<path>`` / ``b/<path>`` convention used by git so
    reviewers can read the output with their usual tooling.
    """

    before = decode_text(previous).splitlines(keepends=True)
    after = decode_text(current).splitlines(keepends=True)
    lines = []
    for line in difflib.unified_diff(before, after, fromfile=f"a/{path}", tofile=f"b/{path}"):
        if not line.endswith("\n"):
            line = line + "\n\\ No newline at end of file\n"
        lines.append(line)
    return "".join(lines)


__all__ = ["decode_text", "sha256_bytes", "unified_diff"]
