"""Filesystem and process primitives used by the approval pipeline.

Every path handed to a :class:`SystemOperations` implementation is relative
to the workspace root.  Failures are raised as :class:`SystemOpsError`
subclasses so callers can tell a missing file from a permission problem from
any other I/O failure; the apply pipeline branches on which operation failed
when it decides how to roll back.
"""

from __future__ import annotations

import errno
import grp
import hashlib
import os
import posixpath
import pwd
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal, Sequence

from ..patterns import match_glob

ErrorKind = Literal["not_found", "permission_denied", "io_error"]

_HASH_CHUNK = 64 * 1024


class SystemOpsError(RuntimeError):
    """Raised when a filesystem or process operation fails."""

    kind: ErrorKind = "io_error"

    def __init__(self, path: str, operation: str, message: str | None = None) -> None:
        self.path = path
        self.operation = operation
        self.message = message or self.kind.replace("_", " ")
        super().__init__(f"{operation} {path}: {self.message}")


class NotFoundError(SystemOpsError):
    """The path does not exist."""

    kind: ErrorKind = "not_found"


class PermissionDeniedError(SystemOpsError):
    """The calling identity may not perform the operation."""

    kind: ErrorKind = "permission_denied"


class OpsIOError(SystemOpsError):
    """Any other I/O failure."""

    kind: ErrorKind = "io_error"


@dataclass(slots=True, frozen=True)
class FileStat:
    """Ownership snapshot for a single path."""

    path: str
    user: str
    group: str
    mode: str


@dataclass(slots=True, frozen=True)
class ExecResult:
    """Outcome of an external process invocation."""

    command: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def normalise_relative(path: str) -> str:
    """Return ``path`` as a normalised, slash separated workspace path."""

    candidate = path.replace("\\", "/").strip()
    if not candidate:
        raise OpsIOError(path, "resolve", "empty path")
    if candidate.startswith("/"):
        raise OpsIOError(path, "resolve", "absolute paths are not allowed")
    normalised = posixpath.normpath(candidate)
    if normalised == ".." or normalised.startswith("../"):
        raise OpsIOError(path, "resolve", "path traversal outside workspace")
    return normalised


class SystemOperations(ABC):
    """Abstract OS operation layer bound to a workspace root."""

    workspace: Path

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Return ``True`` when ``path`` exists."""

    @abstractmethod
    def read_bytes(self, path: str) -> bytes:
        """Return the content of ``path``."""

    @abstractmethod
    def write_bytes(self, path: str, content: bytes) -> None:
        """Write ``content`` to ``path``, creating parent directories."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove a file or a directory tree."""

    @abstractmethod
    def mkdir(self, path: str) -> None:
        """Create ``path`` and any missing parents."""

    @abstractmethod
    def copy(self, source: str, destination: str) -> None:
        """Copy a file, creating parent directories of ``destination``."""

    @abstractmethod
    def hash_file(self, path: str) -> str:
        """Return the SHA-256 hex digest of ``path``."""

    @abstractmethod
    def chown(self, path: str, user: str, group: str) -> None:
        """Change owner and group of ``path``."""

    @abstractmethod
    def chmod(self, path: str, mode: str) -> None:
        """Change the permission bits of ``path`` (octal string)."""

    @abstractmethod
    def stat(self, path: str) -> FileStat:
        """Return ownership information for ``path``."""

    @abstractmethod
    def glob(self, pattern: str) -> List[str]:
        """Return files matching ``pattern`` relative to the workspace."""

    @abstractmethod
    def exec(self, command: str, args: Sequence[str]) -> ExecResult:
        """Run ``command`` in the workspace; non-zero exits are not errors."""

    def list_files(self, directory: str) -> List[str]:
        """Return every file below ``directory`` (relative to the workspace)."""

        prefix = normalise_relative(directory).rstrip("/") + "/"
        return [path for path in self.glob(f"{prefix}**") if path.startswith(prefix)]


def _map_os_error(error: OSError, path: str, operation: str) -> SystemOpsError:
    if isinstance(error, FileNotFoundError) or error.errno == errno.ENOENT:
        return NotFoundError(path, operation)
    if isinstance(error, PermissionError) or error.errno in {errno.EACCES, errno.EPERM}:
        return PermissionDeniedError(path, operation)
    if error.errno == errno.ELOOP:
        return OpsIOError(path, operation, "refusing to follow symbolic link")
    return OpsIOError(path, operation, error.strerror or str(error))


class LocalSystemOps(SystemOperations):
    """Real filesystem implementation rooted at ``workspace``.

    Staging copies sit in directories the agent can write, so the final path
    component is never followed: reads and ownership changes refuse symbolic
    links, and writes replace a link instead of writing through it.
    """

    def __init__(self, workspace: Path | str) -> None:
        self.workspace = Path(workspace).resolve()

    def _resolve(self, path: str, operation: str) -> Path:
        relative = normalise_relative(path)
        if relative == ".":
            return self.workspace
        candidate = self.workspace / relative
        target = candidate.parent.resolve() / candidate.name
        try:
            target.relative_to(self.workspace)
        except ValueError:
            raise OpsIOError(path, operation, "path traversal outside workspace") from None
        return target

    @staticmethod
    def _read_nofollow(target: Path) -> bytes:
        fd = os.open(target, os.O_RDONLY | os.O_NOFOLLOW)
        with os.fdopen(fd, "rb") as handle:
            return handle.read()

    @staticmethod
    def _write_nofollow(target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        # Protected copies are usually read-only; replace rather than open for writing.
        if target.is_symlink() or (target.exists() and not os.access(target, os.W_OK)):
            target.unlink()
        try:
            fd = os.open(target, os.O_WRONLY | os.O_TRUNC | os.O_NOFOLLOW)
        except FileNotFoundError:
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL | os.O_NOFOLLOW, 0o644)
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)

    def exists(self, path: str) -> bool:
        target = self._resolve(path, "exists")
        try:
            target.lstat()
        except FileNotFoundError:
            return False
        except OSError as error:
            raise _map_os_error(error, path, "exists") from error
        return True

    def read_bytes(self, path: str) -> bytes:
        target = self._resolve(path, "read")
        try:
            return self._read_nofollow(target)
        except OSError as error:
            raise _map_os_error(error, path, "read") from error

    def write_bytes(self, path: str, content: bytes) -> None:
        target = self._resolve(path, "write")
        try:
            self._write_nofollow(target, content)
        except OSError as error:
            raise _map_os_error(error, path, "write") from error

    def delete(self, path: str) -> None:
        target = self._resolve(path, "delete")
        try:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink()
        except OSError as error:
            raise _map_os_error(error, path, "delete") from error

    def mkdir(self, path: str) -> None:
        target = self._resolve(path, "mkdir")
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise _map_os_error(error, path, "mkdir") from error

    def copy(self, source: str, destination: str) -> None:
        src = self._resolve(source, "copy")
        dest = self._resolve(destination, "copy")
        try:
            content = self._read_nofollow(src)
        except OSError as error:
            raise _map_os_error(error, source, "copy") from error
        try:
            self._write_nofollow(dest, content)
        except OSError as error:
            raise _map_os_error(error, destination, "copy") from error

    def hash_file(self, path: str) -> str:
        target = self._resolve(path, "hash")
        digest = hashlib.sha256()
        try:
            fd = os.open(target, os.O_RDONLY | os.O_NOFOLLOW)
            with os.fdopen(fd, "rb") as handle:
                for chunk in iter(lambda: handle.read(_HASH_CHUNK), b""):
                    digest.update(chunk)
        except OSError as error:
            raise _map_os_error(error, path, "hash") from error
        return digest.hexdigest()

    def chown(self, path: str, user: str, group: str) -> None:
        target = self._resolve(path, "chown")
        try:
            uid = pwd.getpwnam(user).pw_uid
            gid = grp.getgrnam(group).gr_gid
        except KeyError as error:
            raise OpsIOError(path, "chown", f"unknown user or group: {error}") from error
        try:
            fd = os.open(target, os.O_RDONLY | os.O_NOFOLLOW)
            try:
                os.fchown(fd, uid, gid)
            finally:
                os.close(fd)
        except OSError as error:
            raise _map_os_error(error, path, "chown") from error

    def chmod(self, path: str, mode: str) -> None:
        target = self._resolve(path, "chmod")
        try:
            bits = int(mode, 8)
        except ValueError:
            raise OpsIOError(path, "chmod", f"invalid mode {mode!r}") from None
        try:
            fd = os.open(target, os.O_RDONLY | os.O_NOFOLLOW)
            try:
                os.fchmod(fd, bits)
            finally:
                os.close(fd)
        except OSError as error:
            raise _map_os_error(error, path, "chmod") from error

    def stat(self, path: str) -> FileStat:
        target = self._resolve(path, "stat")
        try:
            info = target.lstat()
        except OSError as error:
            raise _map_os_error(error, path, "stat") from error
        try:
            user = pwd.getpwuid(info.st_uid).pw_name
            group = grp.getgrgid(info.st_gid).gr_name
        except KeyError:
            user, group = str(info.st_uid), str(info.st_gid)
        return FileStat(path=path, user=user, group=group, mode=format(info.st_mode & 0o777, "03o"))

    def glob(self, pattern: str) -> List[str]:
        normalised = normalise_relative(pattern)
        matches: List[str] = []
        try:
            for root, dirs, files in os.walk(self.workspace):
                dirs[:] = [name for name in dirs if name != ".git"]
                base = Path(root).relative_to(self.workspace)
                for name in files:
                    relative = (base / name).as_posix()
                    if match_glob(normalised, relative):
                        matches.append(relative)
        except OSError as error:
            raise _map_os_error(error, pattern, "glob") from error
        return sorted(matches)

    def exec(self, command: str, args: Sequence[str]) -> ExecResult:
        argv = [command, *args]
        try:
            process = subprocess.run(  # noqa: S603 - argv is assembled by callers, never a shell
                argv,
                cwd=self.workspace,
                capture_output=True,
                text=False,
                check=False,
            )
        except FileNotFoundError as error:
            raise NotFoundError(command, "exec", str(error)) from error
        except OSError as error:
            raise _map_os_error(error, command, "exec") from error
        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        return ExecResult(command=tuple(argv), returncode=process.returncode, stdout=stdout, stderr=stderr)


__all__ = [
    "ErrorKind",
    "ExecResult",
    "FileStat",
    "LocalSystemOps",
    "NotFoundError",
    "OpsIOError",
    "PermissionDeniedError",
    "SystemOperations",
    "SystemOpsError",
    "normalise_relative",
]
