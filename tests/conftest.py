# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the themegate test suite.

Provides:
- Temporary git repositories with commit message files
- Fast GateSettings (sub-second windows, no grace delays)
- A recording ProcessControl that spawns real child processes but never
  touches other processes on the host (port reaper and pattern kill are
  recorded instead)
- A recording rich Console

Supervision tests run real Python child processes, so they exercise the
actual asyncio subprocess plumbing rather than mocks.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest
from rich.console import Console

from themegate.core.config import GateSettings
from themegate.platform.process import ProcessControl, get_process_control


def py(code: str) -> list[str]:
    """Command that runs a Python snippet unbuffered in a child interpreter."""
    return [sys.executable, "-u", "-c", code]


# =============================================================================
# Repository Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _no_git_env(monkeypatch):
    """Tests may run from inside a git hook; never inherit its GIT_DIR."""
    monkeypatch.delenv("GIT_DIR", raising=False)


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a directory with an empty .git metadata directory."""
    (tmp_path / ".git").mkdir()
    return tmp_path


@pytest.fixture
def message_file(git_repo: Path):
    """Factory writing a commit message file into the repo's .git directory."""

    def _write(text: str) -> Path:
        path = git_repo / ".git" / "COMMIT_EDITMSG"
        path.write_text(text, encoding="utf-8")
        return path

    return _write


# =============================================================================
# Supervision Fixtures
# =============================================================================


class RecordingProcessControl(ProcessControl):
    """Spawns and kills for real; records port and pattern reaping.

    Attributes:
        calls: Ordered (operation, argument) tuples.
        port_error: Exception raised by kill_by_port when set.
        pattern_error: Exception raised by kill_by_pattern when set.
    """

    def __init__(self, port_pids: list[int] | None = None, pattern_hit: bool = False) -> None:
        self._real = get_process_control()
        self.calls: list[tuple[str, object]] = []
        self.port_pids = port_pids or []
        self.pattern_hit = pattern_hit
        self.port_error: Exception | None = None
        self.pattern_error: Exception | None = None

    def build_command(self, command: list[str]) -> list[str]:
        return self._real.build_command(command)

    def spawn_kwargs(self) -> dict:
        return self._real.spawn_kwargs()

    async def spawn(self, command: list[str]) -> asyncio.subprocess.Process:
        self.calls.append(("spawn", list(command)))
        return await super().spawn(command)

    def kill_process_tree(self, process: asyncio.subprocess.Process) -> None:
        self.calls.append(("kill_process_tree", process.pid))
        self._real.kill_process_tree(process)

    def kill_by_port(self, port: int) -> list[int]:
        self.calls.append(("kill_by_port", port))
        if self.port_error is not None:
            raise self.port_error
        return list(self.port_pids)

    def kill_by_pattern(self, pattern: str) -> bool:
        self.calls.append(("kill_by_pattern", pattern))
        if self.pattern_error is not None:
            raise self.pattern_error
        return self.pattern_hit

    def ops(self) -> list[str]:
        return [op for op, _ in self.calls]

    def spawned(self) -> list[list[str]]:
        return [arg for op, arg in self.calls if op == "spawn"]


@pytest.fixture
def process_control() -> RecordingProcessControl:
    return RecordingProcessControl()


@pytest.fixture
def console() -> Console:
    """Console that records output for export_text()."""
    return Console(record=True, width=200, force_terminal=False)


@pytest.fixture
def fast_settings():
    """Factory for GateSettings tuned for tests.

    Defaults: 5s window, 50ms poll, no grace or settle delay, no pre-clean,
    and a theme check that exits 0.
    """

    def _make(**overrides) -> GateSettings:
        values = {
            "dev_command": py("import time; time.sleep(30)"),
            "check_command": py("print('theme check ok')"),
            "timeout_seconds": 5.0,
            "poll_interval_seconds": 0.05,
            "grace_seconds": 0,
            "settle_seconds": 0,
            "preclean": False,
        }
        values.update(overrides)
        return GateSettings(**values)

    return _make


@pytest.fixture
def py_cmd():
    """The py() command builder, for tests that need custom child scripts."""
    return py


@pytest.fixture
def make_process_control():
    """Factory for RecordingProcessControl with custom reaper results."""
    return RecordingProcessControl
