"""Per-run sequencing: staged update, update decision, build, launch.

Lifecycle:
1. Install a jar staged by a previous background build, if any
2. Otherwise classify the server jar and build when needed
3. Write the EULA acceptance file
4. Run the server with the operator console attached until it exits
5. Stop a background build that is still running
"""

from __future__ import annotations

from importlib import resources

from spigot_builder.builder import Builder, BuildRun
from spigot_builder.config import Settings
from spigot_builder.decider import UpdateDecider
from spigot_builder.logging import get_logger
from spigot_builder.models import UpdateVerdict, VerdictKind
from spigot_builder.oracle import VersionOracle
from spigot_builder.supervisor import (
    OutputMode,
    ProcessLaunchError,
    ProcessSupervisor,
    SupervisedProcess,
)

log = get_logger("spigot_builder.orchestrator")

EXIT_OK = 0
EXIT_FATAL = 1


class Orchestrator:
    """Runs the wrapper once, from update check to server exit."""

    def __init__(
        self,
        settings: Settings,
        supervisor: ProcessSupervisor | None = None,
        decider: UpdateDecider | None = None,
        builder: Builder | None = None,
    ) -> None:
        self._settings = settings
        self._supervisor = supervisor or ProcessSupervisor()
        self._decider = decider or UpdateDecider(
            VersionOracle(
                url_template=settings.commits_url_template,
                timeout=settings.http_timeout_seconds,
            )
        )
        self._builder = builder or Builder(
            self._supervisor,
            staged_path=settings.staged_jar,
            build_tools_url=settings.build_tools_url,
            java_executable=settings.java_executable,
            heap=settings.build_heap,
            poll_interval=settings.poll_interval_seconds,
            reminder_interval=settings.build_reminder_seconds,
            download_timeout=settings.download_timeout_seconds,
        )
        self._build: BuildRun | None = None
        self._server: SupervisedProcess | None = None

    @property
    def build(self) -> BuildRun | None:
        return self._build

    def install_staged_update(self) -> bool:
        """Move a staged jar over the server jar. Returns True if one was installed."""
        staged = self._settings.staged_jar
        if not staged.is_file():
            return False
        try:
            staged.replace(self._settings.server_jar)
        except OSError as exc:
            log.error("staged_update_install_failed", path=str(staged), error=str(exc))
            return False
        log.info("staged_update_installed", path=str(self._settings.server_jar))
        return True

    def place_eula(self) -> None:
        """Write the bundled EULA acceptance file."""
        try:
            template = resources.files("spigot_builder").joinpath("resources").joinpath("eula.txt")
            self._settings.eula_path.write_bytes(template.read_bytes())
        except OSError as exc:
            log.warning("eula_write_failed", path=str(self._settings.eula_path), error=str(exc))

    async def run(self) -> int:
        """Run once and return the process exit status."""
        settings = self._settings
        log.info("spigot_builder_starting", work_dir=str(settings.work_dir.resolve()))
        try:
            # A staged jar is the fresh build; a failed install keeps the current jar
            if settings.staged_jar.is_file():
                self.install_staged_update()
                verdict = None
            else:
                verdict = await self._decider.decide(settings.server_jar)
            await self._maybe_build(verdict)

            self.place_eula()

            if not settings.server_jar.is_file():
                log.error("server_jar_missing", path=str(settings.server_jar))
                return EXIT_FATAL

            return await self._run_server()
        finally:
            await self._shutdown()

    async def _maybe_build(self, verdict: UpdateVerdict | None) -> None:
        settings = self._settings
        if not settings.update_enabled:
            log.info("updates_disabled", hint="pass true as the second argument to update")
        if verdict is None or verdict.kind is VerdictKind.UP_TO_DATE:
            return

        background = verdict.kind is not VerdictKind.NO_ARTIFACT and not settings.update_enabled

        log.info("compiling_server_jar", verdict=verdict.kind.value, background=background)
        self._build = await self._builder.run(
            settings.build_dir,
            settings.server_jar,
            revision=settings.revision,
            background=background,
        )

    async def _run_server(self) -> int:
        settings = self._settings
        cmd = [settings.java_executable, "-jar", str(settings.server_jar.resolve())]
        if settings.server_nogui:
            cmd.append("--nogui")

        log.info("server_starting", jar=str(settings.server_jar))
        try:
            self._server = await self._supervisor.start(
                cmd,
                cwd=settings.work_dir,
                allow_input=True,
                output=OutputMode.FOREGROUND,
                name="server",
            )
        except ProcessLaunchError as exc:
            log.error("server_launch_failed", error=str(exc))
            return EXIT_FATAL

        returncode = await self._server.wait()
        # The server's own exit code is not propagated
        log.info("server_stopped", returncode=returncode)
        return EXIT_OK

    async def _shutdown(self) -> None:
        build = self._build
        if build is not None and build.background:
            if build.is_alive:
                log.info("build_tools_terminating")
                await build.terminate()
            else:
                try:
                    await build.join()
                except Exception:
                    log.exception("build_monitor_failed")
                await build.process.close()

        if self._server is not None:
            self._server.kill()
            await self._server.close()
