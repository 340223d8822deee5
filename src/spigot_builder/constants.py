"""Centralized constants for the Spigot builder."""

# Artifact format
ARTIFACT_EXTENSION = ".jar"
MANIFEST_PATH = "META-INF/MANIFEST.MF"
VERSION_ATTRIBUTE = "Implementation-Version"
VERSION_PREFIX = "git-Spigot-"
COMPILED_JAR_PREFIX = "spigot-"

# Upstream repositories whose revisions are embedded in the version string,
# in the order they appear after the prefix.
TRACKED_COMPONENTS = ("spigot", "craftbukkit")

# BuildTools
BUILD_TOOLS_FILENAME = "BuildTools.jar"
DEFAULT_BUILD_TOOLS_URL = (
    "https://hub.spigotmc.org/jenkins/job/BuildTools/lastSuccessfulBuild"
    "/artifact/target/BuildTools.jar"
)
DEFAULT_COMMITS_URL_TEMPLATE = (
    "https://hub.spigotmc.org/stash/rest/api/1.0/projects/SPIGOT/repos/{component}"
    "/commits?since={revision}&withCounts=true"
)

# Operator console
TOGGLE_COMMANDS = frozenset({"togglebuildtools", "tbt"})

# Subprocess output lines longer than this are dropped by the relay
STREAM_LIMIT_BYTES = 1024 * 1024
