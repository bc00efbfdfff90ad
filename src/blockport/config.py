"""
Reading settings from environment variables and the project config file.

Precedence, lowest first: field defaults, ``blockport.config.yaml`` (searched
from the working directory upwards), ``BLOCKPORT_*`` environment variables,
then explicit keyword overrides.
"""

from __future__ import annotations

from contextvars import ContextVar
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from blockport.constants import (
    DEFAULT_CONFIG_FILENAME,
    DEFAULT_GIT_URL,
    DEFAULT_PAGES_DIR,
    DEFAULT_ROUTES_FILE,
    DEFAULT_STAGING_DIR,
)


class BlockSettings(BaseModel):
    """Defaults for ``blockport block add``; explicit command options win over these."""

    npm_client: str | None = None
    """Package manager client (npm, yarn, cnpm, pnpm). Detected from lock files when unset."""

    registry: str | None = None
    """npm registry URL. The fastest known registry is probed when unset."""

    default_git_url: str = DEFAULT_GIT_URL
    """Repository that shorthand block names are resolved against."""

    staging_dir: Path = DEFAULT_STAGING_DIR
    """Shared cache of fetched block repositories."""

    close_fast_github: bool = False

    port: int | None = None
    """Port used in the advisory view URL. The PORT environment variable wins."""

    routes_file: Path = DEFAULT_ROUTES_FILE
    """Host route configuration (YAML or JSON), relative to the project root."""

    pages_dir: Path = DEFAULT_PAGES_DIR
    """Where generated blocks are placed, relative to the project root."""

    model_config = ConfigDict(extra="ignore")

    @field_validator("staging_dir", mode="after")
    @classmethod
    def _expand_staging_dir(cls, value: Path) -> Path:
        return value.expanduser()


class LoggerSettings(BaseModel):
    level: Literal["debug", "info", "warning", "error"] = "warning"
    show_stage_details: bool = False
    """Print structured stage details under each step in the CLI."""

    model_config = ConfigDict(extra="ignore")


_active_config_file: ContextVar[Path | None] = ContextVar("_active_config_file", default=None)


class Settings(BaseSettings):
    """Configuration for blockport."""

    block: BlockSettings = BlockSettings()
    logger: LoggerSettings = LoggerSettings()

    model_config = SettingsConfigDict(
        env_prefix="BLOCKPORT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [init_settings, env_settings]
        config_file = _active_config_file.get()
        if config_file is not None:
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=config_file))
        return tuple(sources)


def find_config_file(start: Path | None = None) -> Path | None:
    """Walk up from ``start`` looking for the project config file."""
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / DEFAULT_CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


_settings: Settings | None = None


def get_settings(config_path: str | Path | None = None, **overrides: Any) -> Settings:
    """Get settings instance, loading and caching it on first use.

    Passing ``config_path`` or overrides always rebuilds (and re-caches) the settings.
    """
    global _settings
    if _settings is not None and config_path is None and not overrides:
        return _settings

    config_file = Path(config_path).expanduser() if config_path else find_config_file()
    if config_file is not None and not config_file.is_file():
        raise FileNotFoundError(f"Config file not found: {config_file}")

    token = _active_config_file.set(config_file)
    try:
        _settings = Settings(**overrides)
    finally:
        _active_config_file.reset(token)
    return _settings


def update_global_settings(settings: Settings) -> None:
    """Replace the cached settings (used by the CLI and tests)."""
    global _settings
    _settings = settings
