"""Data models shared by the update pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class VerdictKind(Enum):
    """Classification of the installed server jar."""

    UP_TO_DATE = "up_to_date"
    NO_ARTIFACT = "no_artifact"
    STALE = "stale"


class ProcessState(Enum):
    """Lifecycle of a supervised child process."""

    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"


@dataclass(frozen=True)
class CommitDistance:
    """Outcome of one "commits since" query.

    ``count`` is None when the query failed; ``error`` then says why.
    """

    component: str
    revision: str
    count: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.count is not None


@dataclass
class UpdateVerdict:
    """Result of an update decision."""

    kind: VerdictKind
    distance: int = 0
    unresolved: list[str] = field(default_factory=list)

    @classmethod
    def up_to_date(cls) -> UpdateVerdict:
        return cls(kind=VerdictKind.UP_TO_DATE)

    @classmethod
    def no_artifact(cls) -> UpdateVerdict:
        return cls(kind=VerdictKind.NO_ARTIFACT)

    @classmethod
    def stale(cls, distance: int, unresolved: list[str] | None = None) -> UpdateVerdict:
        if distance < 0:
            raise ValueError("distance must be >= 0")
        return cls(kind=VerdictKind.STALE, distance=distance, unresolved=list(unresolved or []))

    @property
    def distance_known(self) -> bool:
        """True when every tracked component reported a distance."""
        return not self.unresolved

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "distance": self.distance,
            "unresolved": self.unresolved,
        }
