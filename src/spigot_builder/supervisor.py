"""Child process supervision and console relay.

One ``ProcessSupervisor`` is shared by the server and BuildTools. The server
receives operator input and has its output relayed in the foreground; a
background BuildTools run has its output relayed only while the operator has
switched it on with ``togglebuildtools`` (or ``tbt``).

Every helper task belongs to the ``SupervisedProcess`` it serves and is
cancelled by ``SupervisedProcess.close()``.
"""

from __future__ import annotations

import asyncio
import sys
import threading
from collections.abc import Callable, Coroutine, Sequence
from enum import Enum
from pathlib import Path
from typing import Any, TextIO

from spigot_builder.constants import STREAM_LIMIT_BYTES, TOGGLE_COMMANDS
from spigot_builder.logging import get_logger
from spigot_builder.models import ProcessState

log = get_logger("spigot_builder.supervisor")


class ProcessLaunchError(RuntimeError):
    """The operating system refused to start a child process."""


class OutputMode(Enum):
    """How a child's merged stdout/stderr reaches the operator."""

    HIDDEN = "hidden"
    FOREGROUND = "foreground"
    GATED = "gated"


def is_toggle_command(line: str) -> bool:
    return line.strip().lower() in TOGGLE_COMMANDS


def _print_line(line: str) -> None:
    print(line, flush=True)


class BuildOutputToggle:
    """Operator switch for showing background BuildTools output.

    Written by the input relay and read by the build output relay. Backed by a
    ``threading.Event`` so reads and writes are atomic.
    """

    def __init__(self, enabled: bool = False) -> None:
        self._event = threading.Event()
        if enabled:
            self._event.set()

    @property
    def enabled(self) -> bool:
        return self._event.is_set()

    def set(self, enabled: bool) -> None:
        if enabled:
            self._event.set()
        else:
            self._event.clear()

    def toggle(self) -> bool:
        """Flip the switch and return the new state."""
        enabled = not self.enabled
        self.set(enabled)
        return enabled


class OperatorConsole:
    """Lines typed by the operator.

    Blocking reads happen on a daemon thread so a pending read never holds up
    interpreter shutdown; lines are handed to the event loop through a queue.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream
        self._queue: asyncio.Queue[str | None] | None = None
        self._thread: threading.Thread | None = None

    async def readline(self) -> str | None:
        """Return the next line without its newline, or None at end of input."""
        if self._queue is None:
            self._start(asyncio.get_running_loop())
        assert self._queue is not None
        line = await self._queue.get()
        if line is None:
            # Leave the EOF marker for later readers
            self._queue.put_nowait(None)
        return line

    def _start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._queue = asyncio.Queue()
        self._thread = threading.Thread(
            target=self._pump,
            args=(loop,),
            name="operator-console",
            daemon=True,
        )
        self._thread.start()

    def _pump(self, loop: asyncio.AbstractEventLoop) -> None:
        stream = self._stream or sys.stdin
        try:
            while True:
                line = stream.readline()
                if not line:
                    break
                if not self._deliver(loop, line.rstrip("\r\n")):
                    return
        except (OSError, ValueError) as exc:
            log.warning("operator_console_read_failed", error=str(exc))
        self._deliver(loop, None)

    def _deliver(self, loop: asyncio.AbstractEventLoop, line: str | None) -> bool:
        assert self._queue is not None
        try:
            loop.call_soon_threadsafe(self._queue.put_nowait, line)
        except RuntimeError:
            # Event loop already closed
            return False
        return True


class SupervisedProcess:
    """Handle for one child process and the tasks relaying its I/O."""

    def __init__(self, name: str, command: Sequence[str]) -> None:
        self.name = name
        self.command = list(command)
        self._process: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def state(self) -> ProcessState:
        if self._process is None:
            return ProcessState.STARTING
        if self._process.returncode is None:
            return ProcessState.RUNNING
        return ProcessState.EXITED

    @property
    def is_alive(self) -> bool:
        return self.state is ProcessState.RUNNING

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def tasks(self) -> list[asyncio.Task[None]]:
        return list(self._tasks)

    async def wait(self) -> int:
        """Block until the process exits and return its exit code."""
        if self._process is None:
            raise RuntimeError(f"{self.name} was never started")
        return await self._process.wait()

    def kill(self) -> None:
        """Forcibly terminate the process if it is still running."""
        if self._process is None or self._process.returncode is not None:
            return
        try:
            self._process.kill()
        except ProcessLookupError:
            pass
        log.info("process_killed", name=self.name, pid=self._process.pid)

    async def close(self) -> None:
        """Cancel and join the relay tasks."""
        for task in self._tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    def _attach(self, process: asyncio.subprocess.Process) -> None:
        self._process = process

    def _spawn(self, coro: Coroutine[Any, Any, None], role: str) -> None:
        self._tasks.append(asyncio.create_task(coro, name=f"{self.name}-{role}"))


class ProcessSupervisor:
    """Starts child processes and relays their console I/O."""

    def __init__(
        self,
        console: OperatorConsole | None = None,
        toggle: BuildOutputToggle | None = None,
        writer: Callable[[str], None] | None = None,
    ) -> None:
        self.toggle = toggle or BuildOutputToggle()
        self._console = console
        self._write = writer or _print_line

    @property
    def console(self) -> OperatorConsole:
        if self._console is None:
            self._console = OperatorConsole()
        return self._console

    async def start(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        allow_input: bool = False,
        output: OutputMode = OutputMode.HIDDEN,
        name: str = "process",
    ) -> SupervisedProcess:
        """Start *command* with stderr merged into stdout.

        With ``OutputMode.FOREGROUND`` this returns only once the child's
        output stream has closed.
        """
        handle = SupervisedProcess(name, command)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                stdin=asyncio.subprocess.PIPE if allow_input else asyncio.subprocess.DEVNULL,
                stdout=(
                    asyncio.subprocess.DEVNULL
                    if output is OutputMode.HIDDEN
                    else asyncio.subprocess.PIPE
                ),
                stderr=asyncio.subprocess.STDOUT,
                limit=STREAM_LIMIT_BYTES,
            )
        except OSError as exc:
            raise ProcessLaunchError(f"cannot start {name}: {exc}") from exc

        handle._attach(process)
        log.info("process_started", name=name, pid=process.pid)

        if allow_input:
            handle._spawn(self._forward_input(handle, process), "input")
        if output is OutputMode.GATED:
            handle._spawn(self._relay_output(handle, process, gated=True), "output")
        elif output is OutputMode.FOREGROUND:
            try:
                await self._relay_output(handle, process)
            except asyncio.CancelledError:
                handle.kill()
                await handle.close()
                raise
        return handle

    async def _forward_input(
        self,
        handle: SupervisedProcess,
        process: asyncio.subprocess.Process,
    ) -> None:
        assert process.stdin is not None
        while handle.is_alive:
            line = await self.console.readline()
            if line is None:
                log.debug("operator_console_closed", name=handle.name)
                return
            if is_toggle_command(line):
                visible = self.toggle.toggle()
                log.info("build_output_toggled", visible=visible)
                continue
            if not handle.is_alive:
                return
            try:
                process.stdin.write((line + "\n").encode("utf-8"))
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                log.debug("process_stdin_closed", name=handle.name)
                return

    async def _relay_output(
        self,
        handle: SupervisedProcess,
        process: asyncio.subprocess.Process,
        gated: bool = False,
    ) -> None:
        # The stream is always drained, even while gated output is hidden, so
        # the child never blocks on a full pipe.
        assert process.stdout is not None
        while True:
            try:
                raw = await process.stdout.readline()
            except ValueError:
                log.warning("process_output_line_too_long", name=handle.name)
                continue
            if not raw:
                return
            if gated and not self.toggle.enabled:
                continue
            self._write(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
