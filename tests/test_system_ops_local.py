from __future__ import annotations

import hashlib
import os
import shutil
import stat
import subprocess
from pathlib import Path

import pytest

from soulvault.apply import apply
from soulvault.diff import DiffError, diff
from soulvault.reset import reset_staging
from soulvault.staging import HOLDING_DIR, staging_path
from soulvault.tools.system_ops import LocalSystemOps, NotFoundError, OpsIOError, SystemOpsError
from soulvault.tools.vcs import GitRepository


def test_read_write_copy_and_hash(tmp_path: Path) -> None:
    ops = LocalSystemOps(tmp_path)

    ops.write_bytes("nested/dir/file.txt", b"hello\n")
    ops.copy("nested/dir/file.txt", "other/copy.txt")

    assert (tmp_path / "other" / "copy.txt").read_bytes() == b"hello\n"
    assert ops.hash_file("other/copy.txt") == hashlib.sha256(b"hello\n").hexdigest()
    assert ops.exists("nested/dir")
    assert ops.glob("**/*.txt") == ["nested/dir/file.txt", "other/copy.txt"]
    assert ops.list_files("nested") == ["nested/dir/file.txt"]


def test_missing_files_raise_not_found(tmp_path: Path) -> None:
    ops = LocalSystemOps(tmp_path)

    with pytest.raises(NotFoundError) as excinfo:
        ops.read_bytes("absent.md")

    assert excinfo.value.kind == "not_found"
    assert excinfo.value.operation == "read"
    assert excinfo.value.path == "absent.md"
    assert ops.exists("absent.md") is False


@pytest.mark.parametrize("path", ["../escape.md", "/etc/passwd"])
def test_paths_outside_workspace_are_rejected(tmp_path: Path, path: str) -> None:
    ops = LocalSystemOps(tmp_path / "ws")

    with pytest.raises(OpsIOError):
        ops.read_bytes(path)


def test_delete_removes_trees(tmp_path: Path) -> None:
    ops = LocalSystemOps(tmp_path)
    ops.write_bytes("area/a/b.txt", b"x")

    ops.delete("area")

    assert not (tmp_path / "area").exists()


def test_write_replaces_read_only_files(tmp_path: Path) -> None:
    ops = LocalSystemOps(tmp_path)
    ops.write_bytes("SOUL.md", b"old\n")
    ops.chmod("SOUL.md", "444")

    ops.write_bytes("SOUL.md", b"new\n")

    assert (tmp_path / "SOUL.md").read_bytes() == b"new\n"


def test_chmod_and_stat(tmp_path: Path, current_owner) -> None:
    ops = LocalSystemOps(tmp_path)
    ops.write_bytes("SOUL.md", b"soul\n")

    ops.chown("SOUL.md", current_owner.user, current_owner.group)
    ops.chmod("SOUL.md", "440")

    info = ops.stat("SOUL.md")
    assert info.mode == "440"
    assert (info.user, info.group) == (current_owner.user, current_owner.group)
    assert stat.S_IMODE((tmp_path / "SOUL.md").stat().st_mode) == 0o440


def test_invalid_mode_and_unknown_user(tmp_path: Path) -> None:
    ops = LocalSystemOps(tmp_path)
    ops.write_bytes("SOUL.md", b"soul\n")

    with pytest.raises(OpsIOError):
        ops.chmod("SOUL.md", "rwx")
    with pytest.raises(SystemOpsError):
        ops.chown("SOUL.md", "no-such-user-soulvault", "no-such-group-soulvault")


def test_exec_captures_output(tmp_path: Path) -> None:
    ops = LocalSystemOps(tmp_path)

    result = ops.exec("sh", ["-c", "echo out; echo err >&2; exit 3"])

    assert result.returncode == 3
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert not result.ok


def test_exec_missing_binary_is_not_found(tmp_path: Path) -> None:
    ops = LocalSystemOps(tmp_path)

    with pytest.raises(NotFoundError):
        ops.exec("definitely-not-a-soulvault-binary", [])


def test_full_apply_on_disk(tmp_path: Path, current_owner) -> None:
    ops = LocalSystemOps(tmp_path)
    (tmp_path / "SOUL.md").write_text("original soul\n", encoding="utf-8")
    (tmp_path / staging_path("SOUL.md")).write_text("modified soul\n", encoding="utf-8")
    os.chmod(tmp_path / "SOUL.md", 0o444)
    token = diff(ops, ["SOUL.md"]).approval_token

    result = apply(ops, ["SOUL.md"], token, protected_ownership=current_owner)

    assert result.ok, result.error
    assert (tmp_path / "SOUL.md").read_text(encoding="utf-8") == "modified soul\n"
    assert stat.S_IMODE((tmp_path / "SOUL.md").stat().st_mode) == 0o444
    assert not (tmp_path / ".soulvault" / "pending").exists()
    assert not (tmp_path / ".soulvault" / "backup").exists()


@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_apply_commits_to_a_real_repository(tmp_path: Path, current_owner) -> None:
    def run_git(*cmd: str) -> None:
        subprocess.run(["git", *cmd], cwd=tmp_path, check=True, capture_output=True, text=True)

    run_git("init")
    run_git("config", "user.email", "owner@example.com")
    run_git("config", "user.name", "Soul Owner")
    (tmp_path / "SOUL.md").write_text("original soul\n", encoding="utf-8")
    run_git("add", "SOUL.md")
    run_git("commit", "-m", "init")

    ops = LocalSystemOps(tmp_path)
    (tmp_path / staging_path("SOUL.md")).write_text("modified soul\n", encoding="utf-8")
    token = diff(ops, ["SOUL.md"]).approval_token

    result = apply(
        ops,
        ["SOUL.md"],
        token,
        protected_ownership=current_owner,
        vcs=GitRepository.discover(ops),
    )

    assert result.ok, result.error
    commit = result.outcome.vcs_commit
    assert commit is not None and commit.committed
    log = subprocess.run(
        ["git", "log", "-1", "--format=%an|%s"], cwd=tmp_path, check=True, capture_output=True, text=True
    )
    assert log.stdout.strip() == "soulvault|soulvault: protected update (SOUL.md)"


def _protect_on_disk(root: Path, name: str, content: str) -> None:
    (root / name).write_text(content, encoding="utf-8")
    os.chmod(root / name, 0o444)


def test_symlinks_are_never_followed(tmp_path: Path) -> None:
    ops = LocalSystemOps(tmp_path)
    _protect_on_disk(tmp_path, "USER.md", "user\n")
    (tmp_path / "link.md").symlink_to("USER.md")

    with pytest.raises(OpsIOError, match="symbolic link"):
        ops.read_bytes("link.md")
    with pytest.raises(OpsIOError):
        ops.hash_file("link.md")
    with pytest.raises(OpsIOError):
        ops.chmod("link.md", "666")
    assert stat.S_IMODE((tmp_path / "USER.md").stat().st_mode) == 0o444


def test_write_replaces_a_symlink_instead_of_its_target(tmp_path: Path) -> None:
    ops = LocalSystemOps(tmp_path)
    _protect_on_disk(tmp_path, "USER.md", "user\n")
    (tmp_path / "link.md").symlink_to("USER.md")

    ops.write_bytes("link.md", b"replacement\n")

    assert not (tmp_path / "link.md").is_symlink()
    assert (tmp_path / "link.md").read_bytes() == b"replacement\n"
    assert (tmp_path / "USER.md").read_text(encoding="utf-8") == "user\n"


def test_symlinked_staging_copy_fails_diff_and_reset(tmp_path: Path) -> None:
    ops = LocalSystemOps(tmp_path)
    _protect_on_disk(tmp_path, "SOUL.md", "original soul\n")
    _protect_on_disk(tmp_path, "USER.md", "user\n")
    (tmp_path / staging_path("USER.md")).write_text("user\n", encoding="utf-8")
    (tmp_path / staging_path("SOUL.md")).symlink_to("USER.md")
    patterns = ["SOUL.md", "USER.md"]

    with pytest.raises(DiffError) as excinfo:
        diff(ops, patterns)
    assert excinfo.value.path == staging_path("SOUL.md")

    with pytest.raises(DiffError):
        reset_staging(ops, patterns)

    assert (tmp_path / "USER.md").read_text(encoding="utf-8") == "user\n"
    assert stat.S_IMODE((tmp_path / "USER.md").stat().st_mode) == 0o444
    assert (tmp_path / staging_path("SOUL.md")).is_symlink()


class SymlinkSwapOps(LocalSystemOps):
    """Swaps the SOUL.md staging copy for a link to USER.md once it is frozen."""

    def copy(self, source: str, destination: str) -> None:
        super().copy(source, destination)
        if destination.startswith(HOLDING_DIR + "/") and source == staging_path("SOUL.md"):
            link = self.workspace / source
            link.unlink()
            link.symlink_to("USER.md")


def test_staging_resync_does_not_write_through_a_symlink(tmp_path: Path, current_owner) -> None:
    ops = SymlinkSwapOps(tmp_path)
    _protect_on_disk(tmp_path, "SOUL.md", "original soul\n")
    _protect_on_disk(tmp_path, "USER.md", "user\n")
    (tmp_path / staging_path("SOUL.md")).write_text("approved soul\n", encoding="utf-8")
    token = diff(ops, ["SOUL.md"]).approval_token

    result = apply(ops, ["SOUL.md"], token, protected_ownership=current_owner)

    assert result.ok, result.error
    assert (tmp_path / "SOUL.md").read_text(encoding="utf-8") == "approved soul\n"
    assert (tmp_path / "USER.md").read_text(encoding="utf-8") == "user\n"
    assert stat.S_IMODE((tmp_path / "USER.md").stat().st_mode) == 0o444
    staged = tmp_path / staging_path("SOUL.md")
    assert not staged.is_symlink()
    assert staged.read_text(encoding="utf-8") == "approved soul\n"
