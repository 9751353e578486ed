"""In-memory :class:`SystemOperations` for tests and embedding hosts.

Files carry an owner, group and mode so ownership changes made by the
pipeline can be asserted on without real OS users.  Mutating calls are
recorded, external commands return scripted results, and individual
operations can be made to fail for a given path.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, List, Sequence, Tuple, Type

from ..patterns import match_glob
from .system_ops import (
    ExecResult,
    FileStat,
    NotFoundError,
    OpsIOError,
    PermissionDeniedError,
    SystemOperations,
    SystemOpsError,
    normalise_relative,
)

_FAILURE_KINDS: Dict[str, Type[SystemOpsError]] = {
    "not_found": NotFoundError,
    "permission_denied": PermissionDeniedError,
    "io_error": OpsIOError,
}


@dataclass(slots=True)
class MemoryFile:
    """Simulated file entry."""

    content: bytes
    user: str = "agent"
    group: str = "agent"
    mode: str = "644"


@dataclass(slots=True, frozen=True)
class RecordedOp:
    """A mutating call observed by :class:`InMemorySystemOps`."""

    operation: str
    path: str
    detail: Tuple[str, ...] = ()


@dataclass(slots=True)
class InMemorySystemOps(SystemOperations):
    """Dictionary backed workspace."""

    workspace: Path = field(default_factory=lambda: Path("/workspace"))
    default_user: str = "agent"
    default_group: str = "agent"
    files: Dict[str, MemoryFile] = field(default_factory=dict)
    directories: set[str] = field(default_factory=set)
    recorded: List[RecordedOp] = field(default_factory=list)
    exec_results: Dict[Tuple[str, ...], ExecResult] = field(default_factory=dict)
    _failures: Dict[Tuple[str, str], Tuple[Type[SystemOpsError], bool]] = field(default_factory=dict)

    # ----------------------------------------------------------------- setup
    def add_file(
        self,
        path: str,
        content: str | bytes,
        *,
        user: str | None = None,
        group: str | None = None,
        mode: str = "644",
    ) -> None:
        """Seed a file without going through the recorded operations."""

        key = normalise_relative(path)
        data = content.encode("utf-8") if isinstance(content, str) else content
        self.files[key] = MemoryFile(
            content=data,
            user=user or self.default_user,
            group=group or self.default_group,
            mode=mode,
        )
        self._register_parents(key)

    def text(self, path: str) -> str:
        """Return the decoded content of ``path`` (test convenience)."""

        return self.read_bytes(path).decode("utf-8")

    def fail_on(self, operation: str, path: str, kind: str = "permission_denied", *, once: bool = False) -> None:
        """Make ``operation`` on ``path`` raise the error class for ``kind``.

        With ``once`` the failure fires a single time and then clears.
        """

        self._failures[(operation, normalise_relative(path))] = (_FAILURE_KINDS[kind], once)

    def clear_failures(self) -> None:
        self._failures.clear()

    def script_exec(self, command: str, args: Sequence[str], returncode: int, stdout: str = "", stderr: str = "") -> None:
        """Return a fixed result the next times ``command args`` runs."""

        argv = (command, *args)
        self.exec_results[argv] = ExecResult(command=argv, returncode=returncode, stdout=stdout, stderr=stderr)

    def operations(self, operation: str) -> List[RecordedOp]:
        return [entry for entry in self.recorded if entry.operation == operation]

    # ----------------------------------------------------------- internals
    def _check(self, operation: str, path: str) -> str:
        key = normalise_relative(path)
        failure = self._failures.get((operation, key))
        if failure is not None:
            error_class, once = failure
            if once:
                del self._failures[(operation, key)]
            raise error_class(key, operation)
        return key

    def _register_parents(self, key: str) -> None:
        for parent in PurePosixPath(key).parents:
            text = parent.as_posix()
            if text != ".":
                self.directories.add(text)

    def _get(self, key: str, operation: str) -> MemoryFile:
        entry = self.files.get(key)
        if entry is None:
            raise NotFoundError(key, operation)
        return entry

    # ------------------------------------------------------------ protocol
    def exists(self, path: str) -> bool:
        key = self._check("exists", path)
        return key in self.files or key in self.directories

    def read_bytes(self, path: str) -> bytes:
        key = self._check("read", path)
        return self._get(key, "read").content

    def write_bytes(self, path: str, content: bytes) -> None:
        key = self._check("write", path)
        existing = self.files.get(key)
        if existing is not None:
            existing.content = bytes(content)
        else:
            self.files[key] = MemoryFile(
                content=bytes(content), user=self.default_user, group=self.default_group
            )
            self._register_parents(key)
        self.recorded.append(RecordedOp("write", key))

    def delete(self, path: str) -> None:
        key = self._check("delete", path)
        if key in self.files:
            del self.files[key]
        elif key in self.directories:
            prefix = key + "/"
            for name in [name for name in self.files if name.startswith(prefix)]:
                del self.files[name]
            self.directories = {
                name for name in self.directories if name != key and not name.startswith(prefix)
            }
        else:
            raise NotFoundError(key, "delete")
        self.recorded.append(RecordedOp("delete", key))

    def mkdir(self, path: str) -> None:
        key = self._check("mkdir", path)
        if key in self.files:
            raise OpsIOError(key, "mkdir", "a file already exists at this path")
        self.directories.add(key)
        self._register_parents(key)

    def copy(self, source: str, destination: str) -> None:
        src = self._check("copy", source)
        dest = normalise_relative(destination)
        entry = self._get(src, "copy")
        existing = self.files.get(dest)
        if existing is not None:
            existing.content = entry.content
        else:
            self.files[dest] = MemoryFile(
                content=entry.content, user=self.default_user, group=self.default_group
            )
            self._register_parents(dest)
        self.recorded.append(RecordedOp("copy", src, (dest,)))

    def hash_file(self, path: str) -> str:
        key = self._check("hash", path)
        return hashlib.sha256(self._get(key, "hash").content).hexdigest()

    def chown(self, path: str, user: str, group: str) -> None:
        key = self._check("chown", path)
        if key in self.directories:
            self.recorded.append(RecordedOp("chown", key, (user, group)))
            return
        entry = self._get(key, "chown")
        entry.user = user
        entry.group = group
        self.recorded.append(RecordedOp("chown", key, (user, group)))

    def chmod(self, path: str, mode: str) -> None:
        key = self._check("chmod", path)
        if key in self.directories:
            self.recorded.append(RecordedOp("chmod", key, (mode,)))
            return
        entry = self._get(key, "chmod")
        entry.mode = mode
        self.recorded.append(RecordedOp("chmod", key, (mode,)))

    def stat(self, path: str) -> FileStat:
        key = self._check("stat", path)
        entry = self._get(key, "stat")
        return FileStat(path=key, user=entry.user, group=entry.group, mode=entry.mode)

    def glob(self, pattern: str) -> List[str]:
        normalised = normalise_relative(pattern)
        self._check("glob", normalised)
        return sorted(path for path in self.files if match_glob(normalised, path))

    def exec(self, command: str, args: Sequence[str]) -> ExecResult:
        argv = (command, *args)
        self._check("exec", command)
        self.recorded.append(RecordedOp("exec", command, tuple(args)))
        scripted = self.exec_results.get(argv)
        if scripted is not None:
            return scripted
        return ExecResult(command=argv, returncode=0)


__all__ = ["InMemorySystemOps", "MemoryFile", "RecordedOp"]
