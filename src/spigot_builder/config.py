"""Configuration management for the Spigot builder."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from spigot_builder.constants import DEFAULT_BUILD_TOOLS_URL, DEFAULT_COMMITS_URL_TEMPLATE


def normalize_revision(value: str) -> str:
    """Return the BuildTools revision for *value*; ``latest`` means empty."""
    value = value.strip()
    return "" if value.lower() == "latest" else value


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Every field can be set as ``SPIGOT_BUILDER_<FIELD>`` in the environment or
    in a ``.env`` file. The command line overrides ``revision`` and
    ``update_enabled``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SPIGOT_BUILDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Update policy
    revision: str = Field(default="", description="BuildTools --rev value, empty for latest")
    update_enabled: bool = Field(
        default=True, description="Build in the foreground when the jar is stale"
    )

    # Filesystem layout
    work_dir: Path = Field(default=Path("."), description="Server directory")
    build_dir_name: str = Field(default="build", description="BuildTools working directory")
    server_jar_name: str = Field(default="Spigot.jar", description="Installed server jar")
    staged_jar_name: str = Field(default="Spigot-UPDATED", description="Staged update jar")
    eula_name: str = Field(default="eula.txt", description="EULA acceptance file")

    # Upstream
    build_tools_url: str = Field(default=DEFAULT_BUILD_TOOLS_URL)
    commits_url_template: str = Field(default=DEFAULT_COMMITS_URL_TEMPLATE)
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    download_timeout_seconds: float = Field(default=300.0, gt=0)

    # Java
    java_executable: str = Field(default="java", description="Java launcher for both processes")
    build_heap: str = Field(default="512M", description="Maximum heap passed to BuildTools")
    server_nogui: bool = Field(default=True, description="Pass --nogui to the server")

    # Background build monitor
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    build_reminder_seconds: float = Field(default=30.0, gt=0)

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("revision")
    @classmethod
    def _normalize_revision(cls, value: str) -> str:
        return normalize_revision(value)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def build_dir(self) -> Path:
        return self.work_dir / self.build_dir_name

    @property
    def server_jar(self) -> Path:
        return self.work_dir / self.server_jar_name

    @property
    def staged_jar(self) -> Path:
        return self.work_dir / self.staged_jar_name

    @property
    def eula_path(self) -> Path:
        return self.work_dir / self.eula_name


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
