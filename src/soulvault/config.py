"""Workspace configuration (``soulvault.yaml``).

The file maps path patterns to a tier and optionally records the identities
that own protected and staging copies::

    version: 1
    files:
      soulvault.yaml: protect
      SOUL.md: protect
      memory/*.md: watch
    git: true
    ownership:
      protector: {user: soulkeeper, group: soulvault, mode: "444"}
      staging: {user: agent, group: soulvault, mode: "644"}

The same schema validates replacement content for the config file during
self-protection, so an approved change can never leave the tool unable to
load its own configuration.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

CONFIG_FILENAME = "soulvault.yaml"

_MODE_RE = re.compile(r"^[0-7]{3,4}$")


class ConfigError(RuntimeError):
    """Raised when the configuration cannot be loaded or validated."""


class ConfigModel(BaseModel):
    """Base model rejecting unknown keys."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class Tier(str, Enum):
    """How strictly a path is guarded."""

    PROTECT = "protect"
    WATCH = "watch"


class FileOwnership(ConfigModel):
    """OS owner, group and permission bits expected on a file."""

    user: str
    group: str
    mode: str = "444"

    @field_validator("mode", mode="before")
    @classmethod
    def _coerce_mode(cls, value: Any) -> str:
        text = str(value).strip()
        if not _MODE_RE.match(text):
            raise ValueError(f"mode must be an octal string such as '444', got {value!r}")
        return text


DEFAULT_PROTECTOR = FileOwnership(user="soulkeeper", group="soulvault", mode="444")


class OwnershipConfig(ConfigModel):
    protector: FileOwnership = DEFAULT_PROTECTOR
    staging: Optional[FileOwnership] = None


class VaultConfig(ConfigModel):
    """Validated content of ``soulvault.yaml``."""

    version: Literal[1] = 1
    files: Dict[str, Tier] = Field(default_factory=lambda: {CONFIG_FILENAME: Tier.PROTECT})
    git: bool = True
    ownership: OwnershipConfig = Field(default_factory=OwnershipConfig)

    def patterns_for(self, tier: Tier) -> List[str]:
        return [pattern for pattern, value in self.files.items() if value == tier]


def protect_patterns(config: VaultConfig) -> List[str]:
    """Return the patterns whose files require owner approval."""

    return config.patterns_for(Tier.PROTECT)


def watch_patterns(config: VaultConfig) -> List[str]:
    return config.patterns_for(Tier.WATCH)


def format_validation_error(error: ValidationError) -> str:
    """Flatten pydantic issues into ``loc: message`` pairs."""

    issues = []
    for issue in error.errors():
        location = ".".join(str(part) for part in issue.get("loc", ())) or "<root>"
        issues.append(f"{location}: {issue.get('msg', 'invalid value')}")
    return "; ".join(issues)


def parse_config(raw: str | bytes) -> VaultConfig:
    """Parse YAML text into a :class:`VaultConfig`."""

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as error:
        raise ConfigError(f"{CONFIG_FILENAME} is not valid YAML: {error}") from error
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the top level.")
    try:
        return VaultConfig.model_validate(dict(data))
    except ValidationError as error:
        raise ConfigError(f"{CONFIG_FILENAME} is invalid: {format_validation_error(error)}") from error


def load_config(path: Path | str) -> VaultConfig:
    """Load and validate the configuration file at ``path``."""

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    with config_path.open("r", encoding="utf-8") as handle:
        return parse_config(handle.read())


def dump_config(config: VaultConfig) -> str:
    """Serialise ``config`` back to YAML with stable key order."""

    payload = config.model_dump(mode="json", exclude_none=True)
    return yaml.safe_dump(payload, sort_keys=False)


__all__ = [
    "CONFIG_FILENAME",
    "ConfigError",
    "DEFAULT_PROTECTOR",
    "FileOwnership",
    "OwnershipConfig",
    "Tier",
    "VaultConfig",
    "dump_config",
    "format_validation_error",
    "load_config",
    "parse_config",
    "protect_patterns",
    "watch_patterns",
]
