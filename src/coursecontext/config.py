"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (COURSECONTEXT__CANVAS__BASE_URL=https://canvas.example.edu)
  2. coursecontext.yaml     (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional. Everything except the Canvas credentials has
a sensible default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from coursecontext.file_cache import FileCacheConfig


def _find_config_file() -> str | None:
    """Return the path of the first coursecontext.yaml found, or None."""
    candidates = [
        Path("coursecontext.yaml"),
        Path(platformdirs.user_config_dir("coursecontext")) / "coursecontext.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    transport: Literal["stdio", "http"] = "stdio"
    host: str = "127.0.0.1"
    port: int = 8080
    auth_enabled: bool = True
    auth_key: str = ""
    # Browser origins accepted in addition to localhost
    allowed_origins: list[str] = []


class CanvasSettings(BaseModel):
    base_url: str = ""
    access_token: str = ""
    user_agent: str = "coursecontext/1.0"
    request_timeout_seconds: float = 30.0

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class ProbeSettings(BaseModel):
    timeout_seconds: float = 10.0
    max_concurrency: int = 4


class DiscoverySettings(BaseModel):
    ttl_seconds: int = 3600
    max_courses: int = 256
    cross_check_web: bool = False
    max_pages: int = 20
    max_api_pages: int = 10
    markup_concurrency: int = 4


class FileCacheSettings(BaseModel):
    enabled: bool = True
    max_entries: int = 100
    ttl_hours: float = 24
    max_content_size: int = 10 * 1024 * 1024
    revalidate_after_hours: float = 6
    preview_max_chars: int = 1500
    cleanup_interval_minutes: int = 60

    def to_config(self) -> FileCacheConfig:
        return FileCacheConfig.from_hours(
            enabled=self.enabled,
            max_entries=self.max_entries,
            ttl_hours=self.ttl_hours,
            max_content_size=self.max_content_size,
            revalidate_after_hours=self.revalidate_after_hours,
            preview_max_chars=self.preview_max_chars,
        )


class SearchSettings(BaseModel):
    default_max_results: int = 5
    use_small_model: bool = True
    suggestion_max_chars: int = 200
    error_max_chars: int = 500
    collaborator_timeout_seconds: float = 20.0


class SmallModelSettings(BaseModel):
    enabled: bool = True
    api_key: str = ""
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "google/gemini-2.5-flash"
    timeout_seconds: float = 15.0
    max_retries: int = 2
    cache_ttl_seconds: int = 300


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: COURSECONTEXT__SERVER__PORT=9090
        env_prefix="COURSECONTEXT__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    canvas: CanvasSettings = CanvasSettings()
    probe: ProbeSettings = ProbeSettings()
    discovery: DiscoverySettings = DiscoverySettings()
    file_cache: FileCacheSettings = FileCacheSettings()
    search: SearchSettings = SearchSettings()
    small_model: SmallModelSettings = SmallModelSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
