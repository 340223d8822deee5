"""Shared fixtures for the Spigot builder tests."""

from __future__ import annotations

import json
import struct
import sys
import zipfile
from collections.abc import Callable
from pathlib import Path

import pytest

from spigot_builder.config import Settings


def write_jar(path: Path, version: str | None = "git-Spigot-abc-def") -> Path:
    """Write a minimal jar whose manifest carries *version*."""
    lines = ["Manifest-Version: 1.0"]
    if version is not None:
        lines.append(f"Implementation-Version: {version}")
    manifest = "\r\n".join(lines) + "\r\n\r\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as jar:
        jar.writestr("META-INF/MANIFEST.MF", manifest)
        jar.writestr("org/bukkit/Bukkit.class", b"\xca\xfe\xba\xbe")
    return path


def write_corrupt_jar(path: Path) -> Path:
    """Write a jar whose deflated manifest has damaged payload bytes."""
    lines = ["Manifest-Version: 1.0", "Implementation-Version: git-Spigot-abc-def"]
    lines += [f"Name: org/bukkit/pkg{i}/\r\nSealed: true" for i in range(40)]
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as jar:
        jar.writestr("META-INF/MANIFEST.MF", "\r\n".join(lines) + "\r\n")
        info = jar.getinfo("META-INF/MANIFEST.MF")

    data = bytearray(path.read_bytes())
    # Local file header: 30 fixed bytes, then file name and extra field
    name_len, extra_len = struct.unpack_from("<HH", data, info.header_offset + 26)
    payload = info.header_offset + 30 + name_len + extra_len
    for offset in range(payload, payload + 6):
        data[offset] ^= 0xFF
    path.write_bytes(bytes(data))
    return path


@pytest.fixture()
def make_jar() -> Callable[..., Path]:
    """Factory writing jars with a given embedded version."""
    return write_jar


@pytest.fixture()
def make_corrupt_jar() -> Callable[[Path], Path]:
    """Factory writing jars whose manifest cannot be decompressed."""
    return write_corrupt_jar


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temp directory, isolated from .env files."""
    return Settings(
        _env_file=None,
        work_dir=tmp_path,
        poll_interval_seconds=0.05,
        build_reminder_seconds=0.2,
    )


FAKE_JAVA = '''#!{python}
"""Stand-in for the java launcher: plays BuildTools or the server."""
import json
import os
import sys
import time
import zipfile

args = sys.argv[1:]
call_log = os.environ.get("FAKE_JAVA_LOG")
if call_log:
    with open(call_log, "a") as fh:
        fh.write(json.dumps(args) + "\\n")

if "--nogui" in args:
    print("Server starting", flush=True)
    time.sleep(float(os.environ.get("FAKE_SERVER_SECONDS", "0")))
    for line in sys.stdin:
        line = line.rstrip("\\n")
        print("> " + line, flush=True)
        if line == "stop":
            break
    print("Server stopped", flush=True)
    sys.exit(int(os.environ.get("FAKE_SERVER_EXIT", "0")))

print("BuildTools running", flush=True)
time.sleep(float(os.environ.get("FAKE_BUILD_SECONDS", "0")))
if os.environ.get("FAKE_BUILD_FAIL"):
    print("BUILD FAILED", file=sys.stderr, flush=True)
    sys.exit(1)
version = os.environ.get("FAKE_BUILD_VERSION", "git-Spigot-new1-new2")
manifest = "Manifest-Version: 1.0\\r\\nImplementation-Version: " + version + "\\r\\n\\r\\n"
with zipfile.ZipFile("spigot-1.16.5.jar", "w") as jar:
    jar.writestr("META-INF/MANIFEST.MF", manifest)
print("Success! Everything completed", flush=True)
'''


@pytest.fixture()
def fake_java(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """An executable that behaves like ``java -jar BuildTools.jar`` or the server.

    Every invocation's arguments are appended as JSON to ``java-calls.log``.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    java = bin_dir / "java"
    java.write_text(FAKE_JAVA.replace("{python}", sys.executable), encoding="utf-8")
    java.chmod(0o755)
    monkeypatch.setenv("FAKE_JAVA_LOG", str(tmp_path / "java-calls.log"))
    for name in (
        "FAKE_SERVER_SECONDS",
        "FAKE_SERVER_EXIT",
        "FAKE_BUILD_SECONDS",
        "FAKE_BUILD_FAIL",
        "FAKE_BUILD_VERSION",
    ):
        monkeypatch.delenv(name, raising=False)
    return java


def java_calls(tmp_path: Path) -> list[list[str]]:
    """Arguments of every fake java invocation so far."""
    log = tmp_path / "java-calls.log"
    if not log.exists():
        return []
    return [json.loads(line) for line in log.read_text(encoding="utf-8").splitlines()]


@pytest.fixture()
def read_java_calls(tmp_path: Path) -> Callable[[], list[list[str]]]:
    return lambda: java_calls(tmp_path)
