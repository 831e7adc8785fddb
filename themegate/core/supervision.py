"""Bounded supervision of the theme dev server and the follow-up theme check.

The primary task (dev server) is watched for a fixed window:
- every output chunk, and a periodic poll as a backstop, scans the combined
  output for error signatures
- a single timer ends the window; surviving it without a signature is a pass
- a natural exit ends the window early

Whichever trigger fires first moves the task to a terminal state through
SupervisedTask.transition(); every later trigger is a no-op. Only after a
passing window does the secondary task (theme check) run, and its exit code
decides the commit.

Everything runs on one asyncio event loop. Callbacks only transition state;
killing, port reaping, and reporting happen in the owning coroutine.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import subprocess
from collections.abc import Callable

from rich.console import Console
from rich.markup import escape

from themegate.core.config import GateSettings
from themegate.core.models import (
    LaunchFailure,
    RunResult,
    SupervisedTask,
    TaskState,
    Verdict,
)
from themegate.core.signatures import ErrorSignatures
from themegate.platform.process import ProcessControl, get_process_control

logger = logging.getLogger(__name__)

RULE = "─" * 40
READ_CHUNK_BYTES = 4096
# Upper bound on waiting for a killed process to be reaped.
REAP_TIMEOUT_SECONDS = 5.0


class SupervisedRun:
    """Run the dev server for a bounded window, then the theme check."""

    def __init__(
        self,
        settings: GateSettings,
        process_control: ProcessControl | None = None,
        console: Console | None = None,
    ) -> None:
        self.settings = settings
        self.process_control = process_control or get_process_control()
        self.console = console or Console()
        self.signatures = ErrorSignatures(settings.error_signatures)

    def run(self) -> RunResult:
        """Run the full supervision on a fresh event loop."""
        return asyncio.run(self.run_async())

    async def run_async(self) -> RunResult:
        if self.settings.preclean:
            await self._preclean()

        primary = SupervisedTask(
            name=" ".join(self.settings.dev_command),
            command=list(self.settings.dev_command),
        )
        self.console.print(f"[bold]Running {escape(primary.name)}[/bold] to check for errors...")
        await self.monitor_primary(primary)

        verdict = self._primary_verdict(primary)
        if verdict is not None:
            self._print_bypass_hint()
            return self._finalize(RunResult(verdict=verdict, primary=primary))

        secondary = SupervisedTask(
            name=" ".join(self.settings.check_command),
            command=list(self.settings.check_command),
        )
        verdict = await self.run_secondary(secondary)
        if not verdict.allowed:
            self._print_bypass_hint()
        return self._finalize(RunResult(verdict=verdict, primary=primary, secondary=secondary))

    # ------------------------------------------------------------------
    # Primary task
    # ------------------------------------------------------------------

    async def monitor_primary(self, task: SupervisedTask) -> None:
        """Watch task until it reaches a terminal state, act on it, then reap it."""
        if not await self._launch(task):
            task.transition(TaskState.REAPED)
            return

        loop = asyncio.get_running_loop()
        finished = asyncio.Event()
        poll_handle: asyncio.TimerHandle | None = None
        timeout_handle: asyncio.TimerHandle | None = None

        def cancel_timers() -> None:
            if poll_handle is not None:
                poll_handle.cancel()
            if timeout_handle is not None:
                timeout_handle.cancel()

        def finish(state: TaskState) -> bool:
            if not task.transition(state):
                return False
            cancel_timers()
            finished.set()
            return True

        def check_for_errors() -> None:
            if not task.running:
                return
            if self.signatures.search(task.output):
                task.matched_lines = self.signatures.matching_lines(task.output)
                finish(TaskState.ERROR_DETECTED)

        def poll() -> None:
            nonlocal poll_handle
            check_for_errors()
            if task.running:
                poll_handle = loop.call_later(self.settings.poll_interval_seconds, poll)

        def on_timeout() -> None:
            finish(TaskState.TIMED_OUT)

        process = task.process
        assert process is not None
        readers = [
            asyncio.create_task(self._pump(process.stdout, task, check_for_errors)),
            asyncio.create_task(self._pump(process.stderr, task, check_for_errors)),
        ]
        exit_watcher = asyncio.create_task(self._watch_exit(task, readers, finish))
        poll_handle = loop.call_later(self.settings.poll_interval_seconds, poll)
        timeout_handle = loop.call_later(self.settings.timeout_seconds, on_timeout)

        try:
            await finished.wait()
        except asyncio.CancelledError:
            cancel_timers()
            self._kill(task)
            raise

        await self._act_on_primary(task)
        await self._reap(task, [*readers, exit_watcher])

    async def _watch_exit(
        self,
        task: SupervisedTask,
        readers: list[asyncio.Task],
        finish: Callable[[TaskState], bool],
    ) -> None:
        # Streams close before the exit status is read, so every chunk has
        # already been scanned by the time the exit is classified. A broken
        # reader must not keep the exit from being classified.
        results = await asyncio.gather(*readers, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning(f"Output reader for {task.name} failed: {result}")
        returncode = await task.process.wait()
        task.returncode = returncode
        # A negative code means the process died from a signal and reported
        # no exit status of its own; that is not a failure of the dev server.
        if returncode == 0 or returncode < 0:
            finish(TaskState.EXITED_CLEAN)
        else:
            finish(TaskState.EXITED_NON_ZERO)

    async def _act_on_primary(self, task: SupervisedTask) -> None:
        if task.state == TaskState.ERROR_DETECTED:
            self._print_signature_error(task)
            self.console.print(f"Killing {escape(task.name)}...")
            self._kill(task)
            await self._reap_port(include_pattern=True)
            await asyncio.sleep(self.settings.grace_seconds)
        elif task.state == TaskState.TIMED_OUT:
            self.console.print(
                f"[yellow]{self.settings.timeout_seconds:g}-second monitoring window reached, "
                "stopping dev server...[/yellow]"
            )
            self._kill(task)
            await self._reap_port(include_pattern=False)

    def _primary_verdict(self, task: SupervisedTask) -> Verdict | None:
        """Return a blocking verdict, or None when the theme check should run."""
        if task.outcome == TaskState.LAUNCH_FAILED:
            self.console.print("[red]Theme development check failed. Commit aborted.[/red]")
            return Verdict.BLOCKED_BY_LAUNCH_FAILURE
        if task.outcome == TaskState.ERROR_DETECTED:
            return Verdict.BLOCKED_BY_ERROR
        if task.outcome == TaskState.EXITED_NON_ZERO:
            self.console.print(f"[red]✗ {escape(task.name)} exited with code {task.returncode}[/red]")
            self.console.print("[red]Theme development check failed. Commit aborted.[/red]")
            return Verdict.BLOCKED_BY_EXIT_CODE

        if task.outcome == TaskState.TIMED_OUT:
            self.console.print(
                f"[green]✓ No errors detected during the "
                f"{self.settings.timeout_seconds:g}-second monitoring window[/green]"
            )
        else:
            self.console.print("[green]✓ Theme development check completed successfully[/green]")
        return None

    # ------------------------------------------------------------------
    # Secondary task
    # ------------------------------------------------------------------

    async def run_secondary(self, task: SupervisedTask) -> Verdict:
        """Run the theme check to completion. Its exit code is the verdict."""
        self.console.print(f"[bold]Running {escape(task.name)}...[/bold]")
        if not await self._launch(task):
            task.transition(TaskState.REAPED)
            return Verdict.BLOCKED_BY_LAUNCH_FAILURE

        process = task.process
        assert process is not None
        await asyncio.gather(self._pump(process.stdout, task), self._pump(process.stderr, task))
        task.returncode = await process.wait()
        task.transition(
            TaskState.EXITED_CLEAN if task.returncode == 0 else TaskState.EXITED_NON_ZERO
        )
        task.transition(TaskState.REAPED)

        if task.returncode == 0:
            self.console.print("[green]✓ Theme check passed[/green]")
            return Verdict.ALLOWED

        self.console.print(f"[red]✗ Theme check failed (exit code {task.returncode}):[/red]")
        self.console.print(RULE)
        self.console.print(escape(task.output.strip()))
        self.console.print(RULE)
        self.console.print("[red]Commit aborted due to theme check errors.[/red]")
        return Verdict.BLOCKED_BY_SECONDARY_CHECK

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def _launch(self, task: SupervisedTask) -> bool:
        try:
            task.process = await self.process_control.spawn(task.command)
        except LaunchFailure as e:
            task.launch_error = str(e)
            task.transition(TaskState.LAUNCH_FAILED)
            self.console.print(f"[red]✗ {escape(str(e))}[/red]")
            logger.debug(f"Launch failed for {task.command}: {e}")
            return False
        task.transition(TaskState.RUNNING)
        return True

    async def _pump(
        self,
        stream: asyncio.StreamReader | None,
        task: SupervisedTask,
        on_output: Callable[[], None] | None = None,
    ) -> None:
        """Append everything read from stream to the task buffer."""
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            task.append_output(decoder.decode(chunk))
            if on_output is not None:
                on_output()
        task.append_output(decoder.decode(b"", final=True))

    def _kill(self, task: SupervisedTask) -> None:
        if task.process is None:
            return
        try:
            self.process_control.kill_process_tree(task.process)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Failed to kill {task.name} (pid {task.process.pid}): {e}")

    async def _reap(self, task: SupervisedTask, pending: list[asyncio.Task]) -> None:
        process = task.process
        if process is not None:
            try:
                code = await asyncio.wait_for(process.wait(), REAP_TIMEOUT_SECONDS)
                if task.returncode is None:
                    task.returncode = code
            except asyncio.TimeoutError:
                logger.warning(f"{task.name} (pid {process.pid}) did not exit after kill")
        # Grandchildren can keep a pipe open after the direct child is gone.
        for pending_task in pending:
            if not pending_task.done():
                pending_task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        task.transition(TaskState.REAPED)

    async def _preclean(self) -> None:
        self.console.print(f"Checking for processes on port {self.settings.port}...")
        if await self._reap_port(include_pattern=True):
            await asyncio.sleep(self.settings.settle_seconds)
        else:
            self.console.print(f"[green]✓ Port {self.settings.port} is free[/green]")

    async def _reap_port(self, include_pattern: bool) -> bool:
        """Best-effort kill of anything still holding the dev server port.

        Failures are logged and never change the verdict. Returns True if
        anything was killed.
        """
        port = self.settings.port
        killed_any = False
        try:
            pids = await asyncio.to_thread(self.process_control.kill_by_port, port)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Port reaper failed for port {port}: {e}")
        else:
            if pids:
                killed_any = True
                pid_list = ", ".join(str(pid) for pid in pids)
                self.console.print(f"Killed process(es) on port {port}: {pid_list}")

        pattern = self.settings.kill_pattern
        if include_pattern and pattern:
            try:
                matched = await asyncio.to_thread(self.process_control.kill_by_pattern, pattern)
            except (OSError, subprocess.SubprocessError) as e:
                logger.warning(f"Pattern kill failed for {pattern!r}: {e}")
            else:
                if matched:
                    killed_any = True
                    self.console.print(f"Killed '{escape(pattern)}' processes")
        return killed_any

    def _print_signature_error(self, task: SupervisedTask) -> None:
        self.console.print("[red]✗ Error detected during startup:[/red]")
        self.console.print(RULE)
        for line in task.matched_lines:
            self.console.print(escape(line))
        self.console.print(RULE)
        self.console.print("[red]Theme development check failed. Commit aborted.[/red]")
        self.console.print(
            f"[dim]Tip: make sure no other development server is running on port "
            f"{self.settings.port}[/dim]"
        )

    def _print_bypass_hint(self) -> None:
        flags = " or ".join(self.settings.skip_flags)
        if flags:
            self.console.print(
                f"[yellow]To bypass the check, add {escape(flags)} to your commit message[/yellow]"
            )

    def _finalize(self, result: RunResult) -> RunResult:
        logger.info(f"Supervised run finished: {result.verdict.value}")
        return result
