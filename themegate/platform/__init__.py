"""Platform-specific process control."""

from themegate.platform.process import (
    PosixProcessControl,
    ProcessControl,
    WindowsProcessControl,
    get_process_control,
)

__all__ = [
    "PosixProcessControl",
    "ProcessControl",
    "WindowsProcessControl",
    "get_process_control",
]
