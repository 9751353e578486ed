"""CLI commands for reviewing and applying staged changes to protected files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from .apply import ApplyResult, apply_with_config
from .config import (
    CONFIG_FILENAME,
    ConfigError,
    FileOwnership,
    VaultConfig,
    load_config,
    protect_patterns,
    watch_patterns,
)
from .diff import DiffError, diff
from .errors import (
    ApplyFailed,
    HashMismatch,
    PolicyNameCollision,
    PolicyViolationError,
)
from .reset import reset_staging
from .schema import ChangeStatus, DiffResult
from .staging import staging_path
from .tools.system_ops import LocalSystemOps
from .tools.vcs import GitError, GitRepository
from .watch import commit_watch_files

APP_HELP = "Review and apply owner-approved changes to protected agent files."

app = typer.Typer(help=APP_HELP)

_STATUS_LABELS = {
    ChangeStatus.MODIFIED: "modified",
    ChangeStatus.CREATED: "created",
    ChangeStatus.DELETED: "deleted",
    ChangeStatus.STAGING_MISSING: "missing",
    ChangeStatus.UNCHANGED: "unchanged",
}


def _parse_ownership(value: Optional[str], option: str) -> Optional[FileOwnership]:
    """Parse ``user:group[:mode]`` into a :class:`FileOwnership`."""

    if value is None:
        return None
    parts = value.split(":")
    if len(parts) not in (2, 3) or not all(part.strip() for part in parts):
        raise typer.BadParameter("Expected USER:GROUP or USER:GROUP:MODE.", param_hint=option)
    user, group = parts[0].strip(), parts[1].strip()
    try:
        if len(parts) == 3:
            return FileOwnership(user=user, group=group, mode=parts[2].strip())
        return FileOwnership(user=user, group=group)
    except ValueError as error:
        raise typer.BadParameter(str(error), param_hint=option) from error


def _load(workspace: str, config: Optional[str]) -> tuple[LocalSystemOps, VaultConfig, str]:
    """Return the workspace ops, the parsed config and its workspace-relative path.

    A config file outside the workspace cannot be staged by the agent, so the
    default name is guarded instead.
    """

    workspace_path = Path(workspace).resolve()
    if not workspace_path.is_dir():
        raise typer.BadParameter(f"Workspace not found: {workspace_path}", param_hint="--workspace")
    config_path = Path(config).resolve() if config else workspace_path / CONFIG_FILENAME
    try:
        vault_config = load_config(config_path)
    except ConfigError as error:
        typer.echo(f"Failed to load config: {error}")
        raise typer.Exit(code=1) from error
    try:
        relative = config_path.relative_to(workspace_path).as_posix()
    except ValueError:
        relative = CONFIG_FILENAME
    return LocalSystemOps(workspace_path), vault_config, relative


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _render_diff(result: DiffResult, *, show_unchanged: bool = False) -> None:
    for change in result.changes:
        if change.status == ChangeStatus.UNCHANGED and not show_unchanged:
            continue
        label = _STATUS_LABELS[change.status]
        if change.status == ChangeStatus.STAGING_MISSING:
            typer.echo(f"- {change.path} [{label}] neither protected nor staged copy exists")
            continue
        typer.echo(f"- {change.path} [{label}]")
        if change.status == ChangeStatus.CREATED:
            typer.echo(f"    new file proposed via {staging_path(change.path)}")
        elif change.status == ChangeStatus.DELETED:
            typer.echo(f"    staged copy {staging_path(change.path)} was removed")
        elif change.diff_text:
            typer.echo(change.diff_text.rstrip("\n"))
    if result.approval_token:
        typer.echo(f"Approval hash: {result.approval_token}")
    else:
        typer.echo("No changes pending.")


def _compute_diff(ops: LocalSystemOps, vault_config: VaultConfig) -> DiffResult:
    try:
        return diff(ops, protect_patterns(vault_config))
    except DiffError as error:
        typer.echo(f"Diff failed: {error}")
        raise typer.Exit(code=1) from error


def _report_apply(result: ApplyResult) -> int:
    """Echo the outcome of an apply attempt and return the exit code."""

    if result.ok and result.outcome is not None:
        outcome = result.outcome
        typer.echo(f"Applied {len(outcome.applied_paths)} file(s):")
        for path in outcome.applied_paths:
            typer.echo(f"  - {path}")
        commit = outcome.vcs_commit
        if commit is not None and commit.committed:
            label = f" {commit.sha[:7]}" if commit.sha else ""
            typer.echo(f"Committed{label}: {commit.message}")
        for warning in outcome.warnings:
            typer.echo(f"Warning: {warning}")
        return 0

    error = result.error
    if result.no_changes:
        typer.echo("No changes to apply.")
        return 0
    if isinstance(error, HashMismatch):
        typer.echo("Approval hash does not match the staged content; review the diff again.")
        typer.echo(f"  expected: {error.expected}")
        typer.echo(f"  actual:   {error.actual}")
    elif isinstance(error, PolicyViolationError):
        typer.echo("Blocked by policy:")
        for violation in error.violations:
            typer.echo(f"  - {violation.policy}: {violation.message}")
    elif isinstance(error, PolicyNameCollision):
        typer.echo(error.describe())
    elif isinstance(error, ApplyFailed):
        typer.echo(f"Apply failed: {error.message}")
        for problem in error.rollback_errors:
            typer.echo(f"  rollback: {problem}")
    elif error is not None:
        typer.echo(f"Apply rejected ({error.kind}): {error.describe()}")
    return 1


@app.command("diff")
def diff_command(
    workspace: str = typer.Option(".", "--workspace", "-w", help="Workspace root holding the protected files."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to soulvault.yaml."),
    show_unchanged: bool = typer.Option(False, "--all", help="List unchanged files too."),
) -> None:
    """Show pending staged changes and the approval hash."""

    ops, vault_config, _ = _load(workspace, config)
    result = _compute_diff(ops, vault_config)
    _render_diff(result, show_unchanged=show_unchanged)
    raise typer.Exit(code=1 if result.has_changes else 0)


@app.command("apply")
def apply_command(
    approval: Optional[str] = typer.Option(None, "--hash", help="Approval hash printed by `soulvault diff`."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
    workspace: str = typer.Option(".", "--workspace", "-w", help="Workspace root holding the protected files."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to soulvault.yaml."),
    protector: Optional[str] = typer.Option(
        None,
        "--protector",
        help="Owner of protected files as USER:GROUP[:MODE]; overrides the config.",
    ),
    staging: Optional[str] = typer.Option(
        None,
        "--staging",
        help="Owner of staging copies as USER:GROUP[:MODE]; overrides the config.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline events."),
) -> None:
    """Apply the reviewed staged changes."""

    _configure_logging(verbose)
    protector_owner = _parse_ownership(protector, "--protector")
    staging_owner = _parse_ownership(staging, "--staging")
    ops, vault_config, config_path = _load(workspace, config)

    token = approval
    if token is None:
        pending = _compute_diff(ops, vault_config)
        if not pending.has_changes or pending.approval_token is None:
            typer.echo("No changes to apply.")
            raise typer.Exit(code=0)
        _render_diff(pending)
        if not yes and not typer.confirm("Apply these changes?", default=False):
            typer.echo("Aborted; nothing was changed.")
            raise typer.Exit(code=1)
        token = pending.approval_token

    result = apply_with_config(
        ops,
        vault_config,
        token,
        protected_ownership=protector_owner,
        staging_ownership=staging_owner,
        config_path=config_path,
    )
    raise typer.Exit(code=_report_apply(result))


@app.command("reset")
def reset_command(
    workspace: str = typer.Option(".", "--workspace", "-w", help="Workspace root holding the protected files."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to soulvault.yaml."),
    staging: Optional[str] = typer.Option(
        None,
        "--staging",
        help="Owner of staging copies as USER:GROUP[:MODE]; overrides the config.",
    ),
) -> None:
    """Discard pending proposals by restoring staging copies."""

    staging_owner = _parse_ownership(staging, "--staging")
    ops, vault_config, _ = _load(workspace, config)
    try:
        result = reset_staging(
            ops,
            protect_patterns(vault_config),
            staging_owner or vault_config.ownership.staging,
        )
    except DiffError as error:
        typer.echo(f"Reset failed: {error}")
        raise typer.Exit(code=1) from error

    if not result.reset_paths and result.ok:
        typer.echo("Staging already matches the protected files.")
    for path in result.reset_paths:
        typer.echo(f"Reset {staging_path(path)}")
    for problem in result.errors:
        typer.echo(f"Error: {problem}")
    raise typer.Exit(code=0 if result.ok else 1)


@app.command("record")
def record_command(
    workspace: str = typer.Option(".", "--workspace", "-w", help="Workspace root holding the watched files."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to soulvault.yaml."),
) -> None:
    """Commit the current watch-tier files to git."""

    ops, vault_config, _ = _load(workspace, config)
    patterns = watch_patterns(vault_config)
    if not patterns:
        typer.echo("No watch-tier files configured.")
        raise typer.Exit(code=0)
    if not vault_config.git:
        typer.echo("Git recording is disabled in the config.")
        raise typer.Exit(code=1)
    repo = GitRepository.discover(ops)
    if repo is None:
        typer.echo("No git repository found in the workspace.")
        raise typer.Exit(code=1)

    try:
        result = commit_watch_files(ops, patterns, repo)
    except (DiffError, GitError) as error:
        typer.echo(f"Record failed: {error}")
        raise typer.Exit(code=1) from error

    if result is None:
        typer.echo("No watch-tier files to record.")
    elif result.committed:
        label = f" {result.sha[:7]}" if result.sha else ""
        typer.echo(f"Committed{label}: {result.message} ({len(result.paths)} file(s))")
    else:
        typer.echo("Watch-tier files unchanged since the last commit.")
    raise typer.Exit(code=0)


if __name__ == "__main__":
    app()
