"""Gate settings and their YAML loader."""

from __future__ import annotations

import re
from pathlib import Path

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from themegate.core.models import ConfigurationError

CONFIG_DIR = ".themegate"
CONFIG_FILENAME = "config.yaml"

DEFAULT_SKIP_FLAGS = ["--skip-theme-check", "--no-verify"]
DEFAULT_ERROR_SIGNATURES = [
    "error",
    "To run this command, log in to Shopify",
    "EADDRINUSE",
    "address already in use",
]

DEFAULT_CONFIG_YAML = """# themegate configuration for this repository

# Dev server started for the monitoring window
dev_command: ["npm", "run", "dev2"]
# Linter run after a clean monitoring window
check_command: ["shopify", "theme", "check"]

# Port the dev server binds; anything holding it is reaped on failure
port: 9292

# Timing (seconds)
timeout_seconds: 30
poll_interval_seconds: 0.2
grace_seconds: 2
settle_seconds: 1

# Kill leftover dev servers before starting a new one
preclean: true
kill_pattern: "shopify theme dev"

# Commit message flags that bypass the check
skip_flags:
  - "--skip-theme-check"
  - "--no-verify"

# Case-insensitive regex fragments that fail the monitoring window
error_signatures:
  - "error"
  - "To run this command, log in to Shopify"
  - "EADDRINUSE"
  - "address already in use"
"""


class GateSettings(BaseModel):
    """Runtime settings for the commit gate."""

    model_config = ConfigDict(extra="forbid")

    dev_command: list[str] = Field(default_factory=lambda: ["npm", "run", "dev2"])
    check_command: list[str] = Field(default_factory=lambda: ["shopify", "theme", "check"])
    port: int = Field(default=9292, ge=1, le=65535)
    timeout_seconds: float = Field(default=30.0, gt=0)
    poll_interval_seconds: float = Field(default=0.2, gt=0)
    grace_seconds: float = Field(default=2.0, ge=0)
    settle_seconds: float = Field(default=1.0, ge=0)
    preclean: bool = True
    kill_pattern: str | None = "shopify theme dev"
    skip_flags: list[str] = Field(default_factory=lambda: list(DEFAULT_SKIP_FLAGS))
    error_signatures: list[str] = Field(default_factory=lambda: list(DEFAULT_ERROR_SIGNATURES))
    marker_name: str = "SKIP_THEME_CHECK"

    @field_validator("dev_command", "check_command")
    @classmethod
    def _non_empty_command(cls, value: list[str]) -> list[str]:
        if not value or not value[0].strip():
            raise ValueError("command must name an executable")
        return value

    @field_validator("skip_flags")
    @classmethod
    def _non_empty_flags(cls, value: list[str]) -> list[str]:
        if any(not flag for flag in value):
            raise ValueError("skip flags must be non-empty strings")
        return value

    @field_validator("error_signatures")
    @classmethod
    def _compilable_signatures(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one error signature is required")
        for fragment in value:
            try:
                re.compile(fragment)
            except re.error as e:
                raise ValueError(f"invalid signature {fragment!r}: {e}") from e
        return value

    @field_validator("marker_name")
    @classmethod
    def _plain_marker_name(cls, value: str) -> str:
        if not value or "/" in value or "\\" in value or value in (".", ".."):
            raise ValueError("marker_name must be a plain file name")
        return value


def default_config_path(repo_path: Path) -> Path:
    return repo_path / CONFIG_DIR / CONFIG_FILENAME


def load_settings(repo_path: Path, config_path: Path | None = None) -> GateSettings:
    """Load settings from .themegate/config.yaml, falling back to defaults.

    An explicitly passed config_path must exist. The default location is
    optional.

    Raises:
        ConfigurationError: If the file is unreadable, not a YAML mapping, or
            fails validation.
    """
    path = config_path or default_config_path(repo_path)
    if not path.exists():
        if config_path is not None:
            raise ConfigurationError(f"Config file not found: {path}")
        return GateSettings()

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    if data is None:
        return GateSettings()
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Invalid config in {path}: expected a mapping, got {type(data).__name__}"
        )

    try:
        return GateSettings.model_validate(data)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid config in {path}: {problems}") from e
