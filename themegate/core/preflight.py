"""Commit message inspection and the skip marker handed to later hook stages."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from themegate.core.config import DEFAULT_SKIP_FLAGS
from themegate.core.models import ConfigurationError

logger = logging.getLogger(__name__)

MARKER_CONTENT = "skip"


def resolve_git_dir(repo_path: Path) -> Path:
    """Locate the git metadata directory for repo_path.

    Git exports GIT_DIR to hooks in some setups (worktrees, bare checkouts);
    honor it, otherwise assume the conventional .git directory.
    """
    git_dir = os.environ.get("GIT_DIR")
    if git_dir:
        path = Path(git_dir)
        return path if path.is_absolute() else repo_path / path
    return repo_path / ".git"


@dataclass
class PreflightDecision:
    """Result of inspecting a commit message."""

    skip: bool
    message: str
    flag: str | None = None
    marker_path: Path | None = None


class PreflightGate:
    """Decide whether the supervised check runs for a commit.

    Matching is a case-sensitive literal substring test against the configured
    opt-out flags. When a flag is present, a marker file is written into the
    git directory so a later hook stage can see the decision without reading
    the message again.
    """

    def __init__(
        self,
        git_dir: Path,
        skip_flags: list[str] | None = None,
        marker_name: str = "SKIP_THEME_CHECK",
    ) -> None:
        self.git_dir = git_dir
        self.skip_flags = list(DEFAULT_SKIP_FLAGS if skip_flags is None else skip_flags)
        self.marker_path = git_dir / marker_name

    def read_message(self, message_path: Path) -> str:
        """Read the commit message file.

        Raises:
            ConfigurationError: If the file is missing or unreadable.
        """
        if not message_path.is_file():
            raise ConfigurationError(f"Commit message file not found: {message_path}")
        # Messages in a legacy i18n.commitEncoding still carry ASCII flags.
        try:
            return message_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ConfigurationError(f"Error reading commit message file: {e}") from e

    def find_flag(self, message: str) -> str | None:
        for flag in self.skip_flags:
            if flag in message:
                return flag
        return None

    def should_skip(self, message: str) -> bool:
        return self.find_flag(message) is not None

    def write_marker(self) -> Path:
        """Write the skip marker. File-system errors propagate."""
        self.marker_path.write_text(MARKER_CONTENT, encoding="utf-8")
        logger.debug(f"Wrote skip marker {self.marker_path}")
        return self.marker_path

    def evaluate(self, message_path: Path) -> PreflightDecision:
        message = self.read_message(message_path)
        flag = self.find_flag(message)
        if flag is None:
            return PreflightDecision(skip=False, message=message)
        return PreflightDecision(
            skip=True, message=message, flag=flag, marker_path=self.write_marker()
        )
