"""BuildTools orchestration.

Lifecycle of one build:
1. Make sure the build directory and a BuildTools jar exist
2. Refresh BuildTools from upstream (best effort)
3. Run ``java -Xmx<heap> -jar BuildTools.jar [--rev <revision>]``
4. Foreground: wait, then install the compiled jar over the server jar
5. Background: return at once; a monitor task waits for the build and
   installs the compiled jar into the staging file for the next start
"""

from __future__ import annotations

import asyncio
import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from spigot_builder.constants import (
    ARTIFACT_EXTENSION,
    BUILD_TOOLS_FILENAME,
    COMPILED_JAR_PREFIX,
    DEFAULT_BUILD_TOOLS_URL,
)
from spigot_builder.inspector import looks_valid
from spigot_builder.logging import get_logger
from spigot_builder.supervisor import (
    OutputMode,
    ProcessLaunchError,
    ProcessSupervisor,
    SupervisedProcess,
)

log = get_logger("spigot_builder.builder")


def locate_compiled_artifact(build_dir: Path) -> Path | None:
    """Return the newest ``spigot-*.jar`` BuildTools left in *build_dir*."""
    try:
        candidates = [
            (entry.stat().st_mtime, entry)
            for entry in build_dir.iterdir()
            if entry.is_file()
            and entry.name.startswith(COMPILED_JAR_PREFIX)
            and entry.name.endswith(ARTIFACT_EXTENSION)
        ]
    except OSError as exc:
        log.warning("build_dir_unreadable", path=str(build_dir), error=str(exc))
        return None
    if not candidates:
        return None
    return max(candidates, key=lambda item: item[0])[1]


def install_artifact(source: Path | None, dest: Path) -> bool:
    """Copy a validated jar over *dest*.

    The copy goes to a temporary file beside *dest* which then replaces it, so
    *dest* is either the old jar or the complete new one. Returns False and
    leaves *dest* untouched when *source* is missing or not a Spigot jar.
    """
    if source is None or not source.is_file():
        log.warning("compiled_jar_missing", dest=str(dest))
        return False
    if not looks_valid(source):
        log.warning("compiled_jar_invalid", source=str(source))
        return False

    tmp_path = dest.with_name(dest.name + ".tmp")
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, tmp_path)
        tmp_path.replace(dest)
    except OSError as exc:
        log.warning("jar_install_failed", source=str(source), dest=str(dest), error=str(exc))
        tmp_path.unlink(missing_ok=True)
        return False

    log.info("jar_installed", source=str(source), dest=str(dest))
    return True


@dataclass
class BuildRun:
    """One BuildTools invocation."""

    revision: str
    background: bool
    process: SupervisedProcess
    monitor: asyncio.Task[bool] | None = None
    started_at: float = field(default_factory=time.monotonic)

    @property
    def is_alive(self) -> bool:
        return self.process.is_alive

    async def join(self) -> bool | None:
        """Wait for the monitor to finish; returns whether it installed a jar."""
        if self.monitor is None:
            return None
        return await self.monitor

    async def terminate(self) -> None:
        """Kill BuildTools and cancel the monitor."""
        self.process.kill()
        if self.monitor is not None and not self.monitor.done():
            self.monitor.cancel()
            try:
                await self.monitor
            except asyncio.CancelledError:
                pass
        await self.process.wait()
        await self.process.close()


class Builder:
    """Runs BuildTools and installs what it produces."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        staged_path: Path,
        build_tools_url: str = DEFAULT_BUILD_TOOLS_URL,
        java_executable: str = "java",
        heap: str = "512M",
        poll_interval: float = 1.0,
        reminder_interval: float = 30.0,
        download_timeout: float = 300.0,
    ) -> None:
        self._supervisor = supervisor
        self._staged_path = staged_path
        self._build_tools_url = build_tools_url
        self._java = java_executable
        self._heap = heap
        self._poll_interval = poll_interval
        self._reminder_interval = reminder_interval
        self._download_timeout = download_timeout

    @property
    def staged_path(self) -> Path:
        return self._staged_path

    def build_command(self, tool_path: Path, revision: str = "") -> list[str]:
        cmd = [self._java, f"-Xmx{self._heap}", "-jar", str(tool_path.resolve())]
        if revision:
            cmd += ["--rev", revision]
        return cmd

    async def download_build_tools(self, dest: Path) -> bool:
        """Download the latest BuildTools over *dest*; False keeps the old copy."""
        tmp_path = dest.with_name(dest.name + ".part")
        try:
            async with httpx.AsyncClient(
                timeout=self._download_timeout, follow_redirects=True
            ) as client:
                async with client.stream("GET", self._build_tools_url) as resp:
                    resp.raise_for_status()
                    with tmp_path.open("wb") as fh:
                        async for chunk in resp.aiter_bytes():
                            fh.write(chunk)
            tmp_path.replace(dest)
        except (httpx.HTTPError, OSError) as exc:
            log.warning("build_tools_download_failed", url=self._build_tools_url, error=str(exc))
            tmp_path.unlink(missing_ok=True)
            return False

        log.info("build_tools_downloaded", path=str(dest))
        return True

    async def run(
        self,
        build_dir: Path,
        target: Path,
        revision: str = "",
        background: bool = False,
    ) -> BuildRun | None:
        """Run BuildTools for *revision* (empty for latest).

        Returns None when BuildTools could not be started at all.
        """
        try:
            build_dir.mkdir(parents=True, exist_ok=True)
            tool_path = build_dir / BUILD_TOOLS_FILENAME
            tool_path.touch(exist_ok=True)
        except OSError as exc:
            log.error("build_dir_setup_failed", path=str(build_dir), error=str(exc))
            return None

        await self.download_build_tools(tool_path)

        if background:
            log.info("build_tools_starting_background", revision=revision or "latest")
        else:
            log.info("build_tools_starting", revision=revision or "latest")
            log.info("build_tools_output_follows_without_timestamps")

        try:
            process = await self._supervisor.start(
                self.build_command(tool_path, revision),
                cwd=build_dir,
                allow_input=False,
                output=OutputMode.GATED if background else OutputMode.FOREGROUND,
                name="buildtools",
            )
        except ProcessLaunchError as exc:
            log.error("build_tools_launch_failed", error=str(exc))
            return None

        build = BuildRun(revision=revision, background=background, process=process)
        if background:
            build.monitor = asyncio.create_task(
                self._watch(build, build_dir), name="buildtools-monitor"
            )
            return build

        returncode = await process.wait()
        await process.close()
        log.info("build_tools_finished", returncode=returncode)
        if not install_artifact(locate_compiled_artifact(build_dir), target):
            log.error("server_jar_not_installed", target=str(target))
        return build

    async def _watch(self, build: BuildRun, build_dir: Path) -> bool:
        ticks_per_reminder = max(1, round(self._reminder_interval / self._poll_interval))
        ticks = 0
        while build.is_alive:
            await asyncio.sleep(self._poll_interval)
            ticks += 1
            if ticks >= ticks_per_reminder:
                ticks = 0
                if not self._supervisor.toggle.enabled:
                    log.info(
                        "build_tools_still_running",
                        hint="stopping the server stops BuildTools; type tbt to show its output",
                    )

        await build.process.wait()
        log.info(
            "build_tools_finished",
            returncode=build.process.returncode,
            elapsed_seconds=round(time.monotonic() - build.started_at, 1),
        )
        source = await asyncio.to_thread(locate_compiled_artifact, build_dir)
        if await asyncio.to_thread(install_artifact, source, self._staged_path):
            log.info("update_staged", path=str(self._staged_path))
            return True
        log.warning("update_not_staged", path=str(self._staged_path))
        return False
