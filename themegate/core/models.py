"""Task state, verdicts, run results, and core exceptions."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum


class ThemeGateError(Exception):
    """Base error for the commit gate."""

    pass


class ConfigurationError(ThemeGateError):
    """Bad arguments, unreadable commit message, or invalid settings."""

    pass


class LaunchFailure(ThemeGateError):
    """A supervised command could not be spawned."""

    pass


class HookInstallError(ThemeGateError):
    """The git hook could not be installed."""

    pass


class TaskState(str, Enum):
    """Lifecycle state of a supervised process."""

    STARTING = "starting"
    RUNNING = "running"
    LAUNCH_FAILED = "launch_failed"
    ERROR_DETECTED = "error_detected"
    TIMED_OUT = "timed_out"
    EXITED_CLEAN = "exited_clean"
    EXITED_NON_ZERO = "exited_non_zero"
    REAPED = "reaped"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        TaskState.LAUNCH_FAILED,
        TaskState.ERROR_DETECTED,
        TaskState.TIMED_OUT,
        TaskState.EXITED_CLEAN,
        TaskState.EXITED_NON_ZERO,
    }
)

_TRANSITIONS: dict[TaskState, frozenset[TaskState]] = {
    TaskState.STARTING: frozenset({TaskState.RUNNING, TaskState.LAUNCH_FAILED}),
    TaskState.RUNNING: TERMINAL_STATES - {TaskState.LAUNCH_FAILED},
    TaskState.LAUNCH_FAILED: frozenset({TaskState.REAPED}),
    TaskState.ERROR_DETECTED: frozenset({TaskState.REAPED}),
    TaskState.TIMED_OUT: frozenset({TaskState.REAPED}),
    TaskState.EXITED_CLEAN: frozenset({TaskState.REAPED}),
    TaskState.EXITED_NON_ZERO: frozenset({TaskState.REAPED}),
    TaskState.REAPED: frozenset(),
}


class Verdict(str, Enum):
    """Final decision for a commit."""

    ALLOWED = "allowed"
    BLOCKED_BY_ERROR = "blocked_by_error"
    BLOCKED_BY_EXIT_CODE = "blocked_by_exit_code"
    BLOCKED_BY_SECONDARY_CHECK = "blocked_by_secondary_check"
    BLOCKED_BY_LAUNCH_FAILURE = "blocked_by_launch_failure"

    @property
    def allowed(self) -> bool:
        return self == Verdict.ALLOWED

    @property
    def exit_code(self) -> int:
        return 0 if self.allowed else 1


@dataclass
class SupervisedTask:
    """One spawned process under observation.

    Attributes:
        name: Display name used in operator output.
        command: Command as configured, before any platform wrapping.
        state: Current lifecycle state. Only changed through transition().
        outcome: The terminal state reached, kept after the task is reaped.
        output: Combined stdout/stderr text received so far.
        returncode: Exit status once known.
        matched_lines: Output lines that matched an error signature.
        launch_error: Spawn error message when the process never started.
    """

    name: str
    command: list[str]
    state: TaskState = TaskState.STARTING
    outcome: TaskState | None = None
    output: str = ""
    returncode: int | None = None
    matched_lines: list[str] = field(default_factory=list)
    launch_error: str | None = None
    process: asyncio.subprocess.Process | None = field(default=None, repr=False)

    def transition(self, new_state: TaskState) -> bool:
        """Move to new_state if the transition table allows it.

        Returns False without changing anything when the move is not allowed,
        which is what keeps every terminal transition single-fire.
        """
        if new_state not in _TRANSITIONS[self.state]:
            return False
        self.state = new_state
        if new_state in TERMINAL_STATES:
            self.outcome = new_state
        return True

    def append_output(self, text: str) -> None:
        self.output += text

    @property
    def running(self) -> bool:
        return self.state == TaskState.RUNNING


@dataclass
class RunResult:
    """Outcome of one supervised run."""

    verdict: Verdict
    primary: SupervisedTask
    secondary: SupervisedTask | None = None

    @property
    def exit_code(self) -> int:
        return self.verdict.exit_code

    @property
    def allowed(self) -> bool:
        return self.verdict.allowed
