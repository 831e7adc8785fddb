"""Tests for task state, verdicts, and error signatures."""

from __future__ import annotations

import pytest

from themegate.core.config import DEFAULT_ERROR_SIGNATURES
from themegate.core.models import (
    RunResult,
    SupervisedTask,
    TaskState,
    Verdict,
)
from themegate.core.signatures import ErrorSignatures


@pytest.fixture
def task() -> SupervisedTask:
    return SupervisedTask(name="npm run dev2", command=["npm", "run", "dev2"])


class TestTaskTransitions:
    """SupervisedTask.transition is the single-fire latch."""

    def test_starts_in_starting(self, task):
        assert task.state == TaskState.STARTING
        assert task.outcome is None
        assert not task.running

    def test_launch_then_terminal(self, task):
        assert task.transition(TaskState.RUNNING)
        assert task.running
        assert task.transition(TaskState.ERROR_DETECTED)
        assert task.outcome == TaskState.ERROR_DETECTED

    def test_second_terminal_transition_refused(self, task):
        task.transition(TaskState.RUNNING)
        task.transition(TaskState.TIMED_OUT)

        assert task.transition(TaskState.ERROR_DETECTED) is False
        assert task.transition(TaskState.EXITED_NON_ZERO) is False
        assert task.state == TaskState.TIMED_OUT

    def test_same_terminal_transition_refused(self, task):
        task.transition(TaskState.RUNNING)
        assert task.transition(TaskState.ERROR_DETECTED)
        assert task.transition(TaskState.ERROR_DETECTED) is False

    def test_reaped_keeps_outcome(self, task):
        task.transition(TaskState.RUNNING)
        task.transition(TaskState.EXITED_CLEAN)
        assert task.transition(TaskState.REAPED)

        assert task.state == TaskState.REAPED
        assert task.outcome == TaskState.EXITED_CLEAN
        assert task.transition(TaskState.RUNNING) is False

    def test_cannot_skip_running(self, task):
        assert task.transition(TaskState.TIMED_OUT) is False
        assert task.transition(TaskState.LAUNCH_FAILED)
        assert task.outcome == TaskState.LAUNCH_FAILED

    def test_running_cannot_fail_launch(self, task):
        task.transition(TaskState.RUNNING)
        assert task.transition(TaskState.LAUNCH_FAILED) is False

    def test_terminal_property(self):
        assert TaskState.TIMED_OUT.terminal
        assert not TaskState.RUNNING.terminal
        assert not TaskState.REAPED.terminal

    def test_append_output(self, task):
        task.append_output("a")
        task.append_output("b\n")
        assert task.output == "ab\n"


class TestVerdict:
    """Verdicts map onto hook exit codes."""

    def test_allowed_exits_zero(self):
        assert Verdict.ALLOWED.exit_code == 0
        assert Verdict.ALLOWED.allowed

    @pytest.mark.parametrize(
        "verdict",
        [
            Verdict.BLOCKED_BY_ERROR,
            Verdict.BLOCKED_BY_EXIT_CODE,
            Verdict.BLOCKED_BY_SECONDARY_CHECK,
            Verdict.BLOCKED_BY_LAUNCH_FAILURE,
        ],
    )
    def test_blocked_exits_one(self, verdict):
        assert verdict.exit_code == 1
        assert not verdict.allowed

    def test_run_result_exit_code(self, task):
        result = RunResult(verdict=Verdict.BLOCKED_BY_ERROR, primary=task)
        assert result.exit_code == 1
        assert not result.allowed
        assert result.secondary is None


class TestErrorSignatures:
    """Default signatures against realistic dev server output."""

    @pytest.fixture
    def signatures(self) -> ErrorSignatures:
        return ErrorSignatures(DEFAULT_ERROR_SIGNATURES)

    @pytest.mark.parametrize(
        "line",
        [
            "Error: listen EADDRINUSE: address already in use :::9292",
            "Address already in use (os error 98)",
            "To run this command, log in to Shopify.",
            "[liquid] SyntaxERROR in sections/header.liquid",
            "eaddrinuse",
        ],
    )
    def test_matches(self, signatures, line):
        assert signatures.search(line)

    @pytest.mark.parametrize(
        "line",
        [
            "Syncing theme #123 on my-store.myshopify.com",
            "Preview your theme: http://127.0.0.1:9292",
            "",
        ],
    )
    def test_ignores_healthy_output(self, signatures, line):
        assert not signatures.search(line)

    def test_matching_lines_are_stripped(self, signatures):
        output = "Syncing theme\n  Error: boom  \nready\nADDRESS ALREADY IN USE\n"

        assert signatures.matching_lines(output) == ["Error: boom", "ADDRESS ALREADY IN USE"]

    def test_requires_fragments(self):
        with pytest.raises(ValueError):
            ErrorSignatures([])

    def test_fragments_are_regex(self):
        signatures = ErrorSignatures([r"exit code \d+"])
        assert signatures.search("process failed with EXIT CODE 12")
        assert not signatures.search("exit code none")
