"""Reads and validates the version metadata embedded in server jars.

A Spigot jar records its build in the main section of
``META-INF/MANIFEST.MF``::

    Implementation-Version: git-Spigot-<spigot rev>-<craftbukkit rev>
"""

from __future__ import annotations

import zipfile
import zlib
from pathlib import Path

from spigot_builder.constants import (
    ARTIFACT_EXTENSION,
    MANIFEST_PATH,
    TRACKED_COMPONENTS,
    VERSION_ATTRIBUTE,
    VERSION_PREFIX,
)


class ArtifactError(Exception):
    """Base class for artifact inspection failures."""


class ArtifactReadError(ArtifactError):
    """The file could not be opened or read as a jar."""


class MalformedVersionError(ArtifactError):
    """The embedded version string does not have the expected shape."""


def parse_manifest(text: str) -> dict[str, str]:
    """Parse the main section of a jar manifest.

    Lines starting with a single space continue the previous value. The main
    section ends at the first blank line.
    """
    attributes: dict[str, str] = {}
    last_key: str | None = None
    for line in text.splitlines():
        if not line:
            break
        if line.startswith(" ") and last_key is not None:
            attributes[last_key] += line[1:]
            continue
        key, sep, value = line.partition(":")
        if not sep:
            continue
        last_key = key.strip()
        attributes[last_key] = value.strip()
    return attributes


def read_manifest(path: Path) -> dict[str, str]:
    """Return the main manifest attributes of the jar at *path*."""
    try:
        with zipfile.ZipFile(path) as jar:
            raw = jar.read(MANIFEST_PATH)
    except KeyError as exc:
        raise ArtifactReadError(f"{path} has no {MANIFEST_PATH}") from exc
    # A damaged entry surfaces from the decompressor rather than as BadZipFile
    except (
        OSError,
        EOFError,
        RuntimeError,
        NotImplementedError,
        zipfile.BadZipFile,
        zlib.error,
    ) as exc:
        raise ArtifactReadError(f"cannot read {path}: {exc}") from exc
    return parse_manifest(raw.decode("utf-8", errors="replace"))


def read_version(path: Path) -> str:
    """Return the ``Implementation-Version`` embedded in the jar at *path*."""
    version = read_manifest(path).get(VERSION_ATTRIBUTE)
    if not version:
        raise MalformedVersionError(f"{path} has no {VERSION_ATTRIBUTE}")
    return version


def looks_valid(path: Path) -> bool:
    """Return True if *path* is a readable Spigot jar."""
    if not path.name.endswith(ARTIFACT_EXTENSION):
        return False
    try:
        version = read_version(path)
    except ArtifactError:
        return False
    return version.startswith(VERSION_PREFIX)


def parse_component_revisions(version: str, count: int = len(TRACKED_COMPONENTS)) -> list[str]:
    """Split ``git-Spigot-<a>-<b>`` into its per-component revisions."""
    if not version.startswith(VERSION_PREFIX):
        raise MalformedVersionError(f"version {version!r} lacks prefix {VERSION_PREFIX!r}")
    parts = version[len(VERSION_PREFIX) :].split("-")
    if len(parts) != count or not all(parts):
        raise MalformedVersionError(
            f"version {version!r} does not carry exactly {count} revisions"
        )
    return parts
