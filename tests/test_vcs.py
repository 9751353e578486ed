from __future__ import annotations

import pytest

from soulvault.tools.memory_ops import InMemorySystemOps
from soulvault.tools.vcs import (
    COMMIT_AUTHOR,
    GitError,
    GitRepository,
    protected_commit_message,
    watch_commit_message,
)


def test_commit_message_lists_paths_and_note() -> None:
    assert protected_commit_message(["SOUL.md", "USER.md"]) == "soulvault: protected update (SOUL.md, USER.md)"
    assert protected_commit_message(["SOUL.md"], note="approved by owner").endswith("\n\napproved by owner")
    assert watch_commit_message() == "soulvault: watch sync"


def test_discover_requires_git_directory() -> None:
    ops = InMemorySystemOps()
    assert GitRepository.discover(ops) is None

    ops.mkdir(".git")
    assert isinstance(GitRepository.discover(ops), GitRepository)


def test_commit_uses_fixed_author() -> None:
    ops = InMemorySystemOps()
    ops.script_exec("git", ["diff", "--cached", "--quiet"], returncode=1)
    repo = GitRepository(ops)

    result = repo.commit_paths(["SOUL.md", "OLD.md"], "soulvault: protected update (SOUL.md, OLD.md)")

    assert result.committed
    assert result.paths == ("SOUL.md", "OLD.md")
    commands = [entry.detail for entry in ops.operations("exec")]
    assert commands[:2] == [("add", "--all", "--", "SOUL.md"), ("add", "--all", "--", "OLD.md")]
    assert ("commit", "--author", COMMIT_AUTHOR, "-m", result.message) in commands


def test_clean_index_skips_commit() -> None:
    ops = InMemorySystemOps()
    repo = GitRepository(ops)

    result = repo.commit_paths(["SOUL.md"], "message")

    assert result.committed is False
    assert not any(entry.detail[0] == "commit" for entry in ops.operations("exec"))


def test_no_paths_is_a_no_op() -> None:
    ops = InMemorySystemOps()

    result = GitRepository(ops).commit_paths([], "message")

    assert result.committed is False
    assert ops.operations("exec") == []


def test_index_inspection_error_raises() -> None:
    ops = InMemorySystemOps()
    ops.script_exec("git", ["diff", "--cached", "--quiet"], returncode=128, stderr="fatal: bad index")

    with pytest.raises(GitError, match="bad index"):
        GitRepository(ops).has_staged_changes()


def test_missing_git_binary_raises_git_error() -> None:
    ops = InMemorySystemOps()
    ops.fail_on("exec", "git", kind="not_found")

    with pytest.raises(GitError):
        GitRepository(ops).git("status")
