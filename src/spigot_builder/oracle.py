"""Upstream commit-distance queries.

The Stash REST API answers "how many commits landed on this repository since
revision X" with a JSON object carrying ``totalCount``. Failures never raise;
they come back as a ``CommitDistance`` without a count.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from urllib.parse import quote_plus

import httpx

from spigot_builder.constants import DEFAULT_COMMITS_URL_TEMPLATE
from spigot_builder.logging import get_logger
from spigot_builder.models import CommitDistance

log = get_logger("spigot_builder.oracle")


class VersionOracle:
    """Queries upstream repositories for commit distances."""

    def __init__(
        self,
        url_template: str = DEFAULT_COMMITS_URL_TEMPLATE,
        timeout: float = 30.0,
    ) -> None:
        self._url_template = url_template
        self._timeout = timeout

    def url_for(self, component: str, revision: str) -> str:
        return self._url_template.format(component=component, revision=quote_plus(revision))

    async def distance_since(self, component: str, revision: str) -> CommitDistance:
        """Return how many commits *component* has gained since *revision*."""
        url = self.url_for(component, revision)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            log.warning("oracle_request_failed", component=component, error=str(exc))
            return CommitDistance(component, revision, error=f"request failed: {exc}")

        if resp.status_code != 200:
            log.warning("oracle_bad_status", component=component, status=resp.status_code)
            return CommitDistance(component, revision, error=f"HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError:
            log.warning("oracle_malformed_response", component=component)
            return CommitDistance(component, revision, error="response is not JSON")

        count = data.get("totalCount") if isinstance(data, dict) else None
        # bool is an int subclass; reject it along with negatives
        if not isinstance(count, int) or isinstance(count, bool) or count < 0:
            log.warning("oracle_missing_total_count", component=component, value=repr(count))
            return CommitDistance(component, revision, error="totalCount missing or invalid")

        log.debug("oracle_distance", component=component, revision=revision, count=count)
        return CommitDistance(component, revision, count=count)

    async def distances(self, pairs: Iterable[tuple[str, str]]) -> list[CommitDistance]:
        """Query several ``(component, revision)`` pairs concurrently, preserving order."""
        return list(
            await asyncio.gather(
                *(self.distance_since(component, revision) for component, revision in pairs)
            )
        )
