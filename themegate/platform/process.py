"""Process spawning and forced termination for POSIX and Windows hosts.

Two termination models are supported:
1. PosixProcessControl - children run in their own session, kill is SIGKILL to
   the process group; port owners are found with lsof.
2. WindowsProcessControl - commands run through cmd.exe, kill is taskkill /T;
   port owners are found by parsing netstat -ano.

The supervision core only talks to the ProcessControl interface.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import signal
import subprocess
import sys
from abc import ABC, abstractmethod
from typing import Any

from themegate.core.models import LaunchFailure

logger = logging.getLogger(__name__)

# Helper commands (lsof, netstat, taskkill, pkill) must never stall the gate.
HELPER_TIMEOUT = 10


def parse_lsof_pids(output: str) -> list[int]:
    """Parse `lsof -t` output (one pid per line) into unique pids."""
    pids: list[int] = []
    for line in output.splitlines():
        line = line.strip()
        if line.isdigit():
            pid = int(line)
            if pid > 0 and pid not in pids:
                pids.append(pid)
    return pids


_NETSTAT_ROW = re.compile(r"^\s*(TCP|UDP)\s+(\S+)\s+(\S+)\s+(?:(\S+)\s+)?(\d+)\s*$", re.IGNORECASE)


def parse_netstat_pids(output: str, port: int) -> list[int]:
    """Parse `netstat -ano` output for pids owning a local socket on port.

    Only the local address column is considered, and it must end in exactly
    `:<port>` so that e.g. port 92921 is not mistaken for 9292.
    """
    suffix = f":{port}"
    pids: list[int] = []
    for line in output.splitlines():
        match = _NETSTAT_ROW.match(line)
        if not match:
            continue
        local_address = match.group(2)
        pid = int(match.group(5))
        if local_address.endswith(suffix) and pid > 0 and pid not in pids:
            pids.append(pid)
    return pids


class ProcessControl(ABC):
    """Platform capability for spawning and killing supervised processes."""

    def build_command(self, command: list[str]) -> list[str]:
        """Return the argv actually executed for command."""
        return list(command)

    def spawn_kwargs(self) -> dict[str, Any]:
        return {}

    async def spawn(self, command: list[str]) -> asyncio.subprocess.Process:
        """Start command with stdout and stderr piped and stdin closed.

        Raises:
            LaunchFailure: If the executable cannot be started.
        """
        argv = self.build_command(command)
        logger.debug(f"Spawning: {argv}")
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **self.spawn_kwargs(),
            )
        except OSError as e:
            raise LaunchFailure(f"Failed to start {' '.join(command)}: {e}") from e

    @abstractmethod
    def kill_process_tree(self, process: asyncio.subprocess.Process) -> None:
        """Forcefully terminate process and everything it started."""

    @abstractmethod
    def kill_by_port(self, port: int) -> list[int]:
        """Kill whatever holds port. Returns the pids that were signalled."""

    @abstractmethod
    def kill_by_pattern(self, pattern: str) -> bool:
        """Kill processes whose command line matches pattern.

        Returns True if anything was killed.
        """


class PosixProcessControl(ProcessControl):
    """Linux and macOS: process groups, lsof, pkill."""

    def spawn_kwargs(self) -> dict[str, Any]:
        # New session so the whole tree (npm -> node -> ...) shares one group.
        return {"start_new_session": True}

    def kill_process_tree(self, process: asyncio.subprocess.Process) -> None:
        # The group outlives its leader: signal it even if the direct child
        # has already exited, so grandchildren holding the pipes or the port die.
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        except PermissionError:
            # Group already reaped or owned elsewhere; fall back to the handle.
            try:
                process.kill()
            except ProcessLookupError:
                return

    def kill_by_port(self, port: int) -> list[int]:
        result = subprocess.run(
            ["lsof", f"-ti:{port}"],
            capture_output=True,
            text=True,
            timeout=HELPER_TIMEOUT,
        )
        killed: list[int] = []
        for pid in parse_lsof_pids(result.stdout):
            try:
                os.kill(pid, signal.SIGKILL)
                killed.append(pid)
            except ProcessLookupError:
                continue
            except PermissionError as e:
                logger.warning(f"Cannot kill pid {pid} on port {port}: {e}")
        return killed

    def kill_by_pattern(self, pattern: str) -> bool:
        result = subprocess.run(
            ["pkill", "-9", "-f", pattern],
            capture_output=True,
            text=True,
            timeout=HELPER_TIMEOUT,
        )
        # pkill: 0 = matched, 1 = nothing matched, >1 = error
        if result.returncode > 1:
            logger.warning(f"pkill failed for {pattern!r}: {result.stderr.strip()}")
        return result.returncode == 0


class WindowsProcessControl(ProcessControl):
    """Windows: cmd.exe wrapper, taskkill, netstat."""

    def build_command(self, command: list[str]) -> list[str]:
        # npm, shopify, etc. are .cmd shims that only resolve through cmd.exe
        return ["cmd.exe", "/c", *command]

    def spawn_kwargs(self) -> dict[str, Any]:
        flags = getattr(subprocess, "CREATE_NO_WINDOW", 0) | getattr(
            subprocess, "CREATE_NEW_PROCESS_GROUP", 0
        )
        return {"creationflags": flags}

    def _taskkill(self, pid: int, tree: bool = False) -> bool:
        argv = ["taskkill", "/F", "/PID", str(pid)]
        if tree:
            argv.insert(1, "/T")
        result = subprocess.run(argv, capture_output=True, text=True, timeout=HELPER_TIMEOUT)
        return result.returncode == 0

    def kill_process_tree(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        if not self._taskkill(process.pid, tree=True):
            try:
                process.kill()
            except ProcessLookupError:
                return

    def kill_by_port(self, port: int) -> list[int]:
        result = subprocess.run(
            ["netstat", "-ano"],
            capture_output=True,
            text=True,
            timeout=HELPER_TIMEOUT,
        )
        killed = []
        for pid in parse_netstat_pids(result.stdout, port):
            if self._taskkill(pid):
                killed.append(pid)
        return killed

    def kill_by_pattern(self, pattern: str) -> bool:
        logger.debug(f"Pattern kill not supported on Windows, skipping {pattern!r}")
        return False


def get_process_control(platform: str | None = None) -> ProcessControl:
    """Select the process control implementation for the running OS."""
    platform = platform or sys.platform
    if platform == "win32":
        return WindowsProcessControl()
    return PosixProcessControl()
