from __future__ import annotations

import grp
import os
import pwd
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from soulvault.config import FileOwnership  # noqa: E402
from soulvault.staging import staging_path  # noqa: E402
from soulvault.tools.memory_ops import InMemorySystemOps  # noqa: E402

PROTECTOR = FileOwnership(user="soulkeeper", group="soulvault", mode="444")
STAGING_OWNER = FileOwnership(user="agent", group="soulvault", mode="644")


@dataclass(slots=True)
class Vault:
    """In-memory workspace with helpers for protected/staged pairs."""

    ops: InMemorySystemOps

    def protect(self, path: str, content: str) -> None:
        """Seed a protected file owned by the protector plus a matching staged copy."""

        self.ops.add_file(path, content, user=PROTECTOR.user, group=PROTECTOR.group, mode=PROTECTOR.mode)
        self.ops.add_file(staging_path(path), content)

    def stage(self, path: str, content: str) -> None:
        self.ops.add_file(staging_path(path), content)

    def unstage(self, path: str) -> None:
        self.ops.delete(staging_path(path))
        self.ops.recorded.clear()

    def protected_text(self, path: str) -> str:
        return self.ops.text(path)

    def staged_text(self, path: str) -> str:
        return self.ops.text(staging_path(path))


@pytest.fixture()
def vault() -> Vault:
    return Vault(ops=InMemorySystemOps())


@pytest.fixture()
def current_owner() -> FileOwnership:
    """Ownership the test process can always apply to its own files."""

    user = pwd.getpwuid(os.getuid()).pw_name
    group = grp.getgrgid(os.getgid()).gr_name
    return FileOwnership(user=user, group=group, mode="444")
