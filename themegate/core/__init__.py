"""Core modules for the theme commit gate."""

from themegate.core.models import (
    ConfigurationError,
    HookInstallError,
    LaunchFailure,
    RunResult,
    SupervisedTask,
    TaskState,
    ThemeGateError,
    Verdict,
)

__all__ = [
    "ConfigurationError",
    "HookInstallError",
    "LaunchFailure",
    "RunResult",
    "SupervisedTask",
    "TaskState",
    "ThemeGateError",
    "Verdict",
]
