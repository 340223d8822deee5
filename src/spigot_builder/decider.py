"""Decides whether the installed server jar needs rebuilding."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from spigot_builder.constants import TRACKED_COMPONENTS
from spigot_builder.inspector import ArtifactError, parse_component_revisions, read_version
from spigot_builder.logging import get_logger
from spigot_builder.models import UpdateVerdict
from spigot_builder.oracle import VersionOracle

log = get_logger("spigot_builder.decider")


class UpdateDecider:
    """Classifies the installed jar as up to date, missing or stale.

    A jar that exists but cannot be read, or whose version string is not
    ``git-Spigot-<a>-<b>``, is reported as missing so that it gets rebuilt.

    When an upstream query fails the jar is reported stale: the distance is
    the sum of the components that did answer, and the failed components are
    listed in ``UpdateVerdict.unresolved``. An unknown distance is never
    counted as zero.
    """

    def __init__(
        self,
        oracle: VersionOracle,
        components: Sequence[str] = TRACKED_COMPONENTS,
    ) -> None:
        self._oracle = oracle
        self._components = tuple(components)

    async def decide(self, artifact_path: Path) -> UpdateVerdict:
        if not artifact_path.is_file():
            log.info("no_server_jar_found", path=str(artifact_path))
            return UpdateVerdict.no_artifact()

        try:
            version = read_version(artifact_path)
            revisions = parse_component_revisions(version, len(self._components))
        except ArtifactError as exc:
            log.warning("server_jar_unreadable", path=str(artifact_path), error=str(exc))
            return UpdateVerdict.no_artifact()

        pairs = list(zip(self._components, revisions, strict=True))
        results = await self._oracle.distances(pairs)
        known = sum(r.count for r in results if r.count is not None)
        unresolved = [r.component for r in results if not r.ok]

        if unresolved:
            log.warning(
                "version_distance_unknown",
                version=version,
                unresolved=unresolved,
                known_behind=known,
            )
            return UpdateVerdict.stale(known, unresolved)

        if known == 0:
            log.info("server_jar_up_to_date", version=version)
            return UpdateVerdict.up_to_date()

        log.info("server_jar_behind", version=version, behind=known)
        return UpdateVerdict.stale(known)
