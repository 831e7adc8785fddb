"""Install the commit-msg git hook that runs the theme gate."""

from __future__ import annotations

import os
from pathlib import Path

from themegate.core.models import HookInstallError
from themegate.core.preflight import resolve_git_dir

HOOK_NAME = "commit-msg"
HOOK_MARKER = "# themegate commit-msg hook"

HOOK_SCRIPT = f"""#!/bin/sh
{HOOK_MARKER}
# Boots the theme dev server for a bounded window, then runs the theme check.
# Add --skip-theme-check or --no-verify to the commit message to bypass.
exec themegate commit-msg "$1"
"""


def install_hook(repo_path: Path, force: bool = False) -> Path:
    """Write the commit-msg hook into the repository's hooks directory.

    An existing hook that was not written by themegate is left alone unless
    force is set.

    Raises:
        HookInstallError: If repo_path is not a git checkout or a foreign hook
            is in the way.
    """
    git_dir = resolve_git_dir(repo_path)
    if not git_dir.is_dir():
        raise HookInstallError(f"Not a git repository (no {git_dir})")

    hooks_dir = git_dir / "hooks"
    hooks_dir.mkdir(exist_ok=True)
    hook_path = hooks_dir / HOOK_NAME

    if hook_path.exists() and not force:
        existing = hook_path.read_text(encoding="utf-8", errors="replace")
        if HOOK_MARKER not in existing:
            raise HookInstallError(
                f"{hook_path} already exists and was not installed by themegate. "
                "Use --force to overwrite it."
            )

    hook_path.write_text(HOOK_SCRIPT, encoding="utf-8")
    os.chmod(hook_path, 0o755)
    return hook_path
