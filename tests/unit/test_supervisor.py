"""Unit tests for spigot_builder.supervisor.

Child processes are small Python scripts run with the current interpreter.
"""

from __future__ import annotations

import asyncio
import io
import sys

import pytest

from spigot_builder.models import ProcessState
from spigot_builder.supervisor import (
    BuildOutputToggle,
    OperatorConsole,
    OutputMode,
    ProcessLaunchError,
    ProcessSupervisor,
    SupervisedProcess,
    is_toggle_command,
)

ECHO_CHILD = """
import sys
for line in sys.stdin:
    line = line.rstrip("\\n")
    print("got:" + line, flush=True)
    if line == "stop":
        break
"""

PRINT_CHILD = """
import sys
print("one", flush=True)
print("two", file=sys.stderr, flush=True)
print("three", flush=True)
"""


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


class TestIsToggleCommand:
    """Tests for the reserved console command."""

    @pytest.mark.parametrize(
        "line", ["tbt", "TBT", "togglebuildtools", "ToggleBuildTools", " tbt "]
    )
    def test_matches(self, line: str) -> None:
        assert is_toggle_command(line) is True

    @pytest.mark.parametrize("line", ["", "say tbt", "tbtx", "toggle", "stop"])
    def test_other_lines(self, line: str) -> None:
        assert is_toggle_command(line) is False


class TestBuildOutputToggle:
    """Tests for the shared toggle flag."""

    def test_starts_disabled(self) -> None:
        assert BuildOutputToggle().enabled is False

    def test_toggle_flips_and_returns_state(self) -> None:
        toggle = BuildOutputToggle()
        assert toggle.toggle() is True
        assert toggle.enabled is True
        assert toggle.toggle() is False
        assert toggle.enabled is False

    def test_set(self) -> None:
        toggle = BuildOutputToggle(enabled=True)
        toggle.set(False)
        assert toggle.enabled is False


class TestOperatorConsole:
    """Tests for OperatorConsole."""

    async def test_lines_then_eof(self) -> None:
        console = OperatorConsole(io.StringIO("first\r\nsecond\n"))

        assert await console.readline() == "first"
        assert await console.readline() == "second"
        assert await console.readline() is None
        # EOF is sticky
        assert await console.readline() is None


class TestSupervisedProcess:
    """Tests for SupervisedProcess before launch."""

    def test_starting_state(self) -> None:
        handle = SupervisedProcess("server", ["java"])
        assert handle.state is ProcessState.STARTING
        assert handle.is_alive is False
        assert handle.pid is None

    async def test_wait_before_start_raises(self) -> None:
        with pytest.raises(RuntimeError, match="never started"):
            await SupervisedProcess("server", ["java"]).wait()


class TestStart:
    """Tests for ProcessSupervisor.start."""

    async def test_launch_failure_raises(self, tmp_path) -> None:
        supervisor = ProcessSupervisor(writer=lambda _line: None)
        with pytest.raises(ProcessLaunchError):
            await supervisor.start([str(tmp_path / "no-such-java")], name="server")

    async def test_foreground_relays_merged_output(self) -> None:
        lines: list[str] = []
        supervisor = ProcessSupervisor(writer=lines.append)

        handle = await supervisor.start(_python(PRINT_CHILD), output=OutputMode.FOREGROUND)
        returncode = await handle.wait()
        await handle.close()

        assert returncode == 0
        assert handle.state is ProcessState.EXITED
        assert sorted(lines) == ["one", "three", "two"]

    async def test_forwards_input_and_consumes_toggle(self) -> None:
        lines: list[str] = []
        console = OperatorConsole(io.StringIO("say hi\nTBT\nlist\nstop\n"))
        supervisor = ProcessSupervisor(console=console, writer=lines.append)

        handle = await supervisor.start(
            _python(ECHO_CHILD),
            allow_input=True,
            output=OutputMode.FOREGROUND,
            name="server",
        )
        await handle.wait()
        await handle.close()

        assert lines == ["got:say hi", "got:list", "got:stop"]
        assert supervisor.toggle.enabled is True

    async def test_gated_output_hidden_while_toggle_off(self) -> None:
        lines: list[str] = []
        supervisor = ProcessSupervisor(writer=lines.append)

        handle = await supervisor.start(_python(PRINT_CHILD), output=OutputMode.GATED)
        await handle.wait()
        await asyncio.gather(*handle.tasks)

        assert lines == []

    async def test_gated_output_shown_while_toggle_on(self) -> None:
        lines: list[str] = []
        supervisor = ProcessSupervisor(toggle=BuildOutputToggle(enabled=True), writer=lines.append)

        handle = await supervisor.start(_python(PRINT_CHILD), output=OutputMode.GATED)
        await handle.wait()
        await asyncio.gather(*handle.tasks)

        assert sorted(lines) == ["one", "three", "two"]

    async def test_gated_start_returns_while_child_runs(self) -> None:
        supervisor = ProcessSupervisor(writer=lambda _line: None)

        handle = await supervisor.start(
            _python("import time; time.sleep(30)"), output=OutputMode.GATED
        )
        try:
            assert handle.is_alive is True
            assert handle.state is ProcessState.RUNNING
        finally:
            handle.kill()
            await handle.wait()
            await handle.close()

        assert handle.is_alive is False
        assert handle.returncode != 0

    async def test_close_cancels_pending_input_task(self) -> None:
        # A console that never delivers a line
        console = OperatorConsole(io.StringIO(""))
        console.readline = _never  # type: ignore[method-assign]
        supervisor = ProcessSupervisor(console=console, writer=lambda _line: None)

        handle = await supervisor.start(_python("pass"), allow_input=True)
        await handle.wait()
        await handle.close()

        assert handle.tasks == []


async def _never() -> str | None:
    await asyncio.Event().wait()
    return None
