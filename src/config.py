"""Configuration management for PawDose."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_REPO_ROOT = Path(__file__).resolve().parents[1]
_DEFAULT_CONFIG_PATH = _REPO_ROOT / "config" / "pawdose.yml"
_USER_CONFIG_PATHS = [
    Path("~/.config/pawdose/pawdose.yml").expanduser(),
    Path("/config/pawdose.yml"),
]


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping from disk, returning an empty mapping if missing."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def _yaml_settings_source(paths: list[Path]):
    """Create a Pydantic settings source for a list of YAML paths."""

    def source() -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for path in paths:
            merged.update(_load_yaml(path))
        return merged

    return source


def _set_nested_value(target: dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted-path value on a nested mapping, creating containers."""
    parts = path.split(".")
    cursor = target
    for key in parts[:-1]:
        node = cursor.get(key)
        if not isinstance(node, dict):
            node = {}
            cursor[key] = node
        cursor = node
    cursor[parts[-1]] = value


def _parse_env_value(raw: str, kind: str) -> Any:
    """Parse an environment value into the requested primitive type."""
    if kind == "int":
        return int(raw)
    if kind == "bool":
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    return raw


def _env_settings_source():
    """Create a settings source that maps environment variables to config keys."""
    mapping = {
        "DATABASE_URL": ("database.url", "str"),
        "USER_TIMEZONE": ("user.timezone", "str"),
        "LOG_LEVEL": ("log_level", "str"),
        "LOG_JSON": ("log_json", "bool"),
        "API_HOST": ("api.host", "str"),
        "API_PORT": ("api.port", "int"),
        "DUE_WINDOW_MINUTES": ("instances.due_window_minutes", "int"),
        "OVERDUE_GRACE_MINUTES": ("instances.overdue_grace_minutes", "int"),
    }

    def source() -> dict[str, Any]:
        data: dict[str, Any] = {}
        for env_key, (path, kind) in mapping.items():
            raw = os.environ.get(env_key)
            if raw is None:
                continue
            _set_nested_value(data, path, _parse_env_value(raw, kind))
        return data

    return source


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    url: str = "sqlite:///pawdose.db"
    echo: bool = False


class UserConfig(BaseModel):
    """Household timezone used to turn wall-clock schedules into instants."""

    timezone: str = "America/Los_Angeles"

    @model_validator(mode="after")
    def validate_timezone(self) -> "UserConfig":
        """Ensure the configured timezone is valid."""
        try:
            ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Invalid timezone: {self.timezone}") from exc
        return self


class InstanceConfig(BaseModel):
    """Status classification and conflict spacing defaults."""

    due_window_minutes: int = 0
    overdue_grace_minutes: int = 30
    default_spacing_minutes: int = 30

    @field_validator("due_window_minutes")
    @classmethod
    def validate_due_window_minutes(cls, value: int) -> int:
        """Ensure the due window is non-negative."""
        if value < 0:
            raise ValueError("instances.due_window_minutes must be >= 0.")
        return value

    @field_validator("overdue_grace_minutes")
    @classmethod
    def validate_overdue_grace_minutes(cls, value: int) -> int:
        """Ensure the overdue grace period is non-negative."""
        if value < 0:
            raise ValueError("instances.overdue_grace_minutes must be >= 0.")
        return value

    @field_validator("default_spacing_minutes")
    @classmethod
    def validate_default_spacing_minutes(cls, value: int) -> int:
        """Ensure conflict spacing is positive."""
        if value < 1:
            raise ValueError("instances.default_spacing_minutes must be >= 1.")
        return value


class ApiConfig(BaseModel):
    """HTTP listener settings."""

    host: str = "127.0.0.1"
    port: int = 3000
    title: str = "pawdose"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and YAML."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Layer settings sources in descending order of precedence."""
        return (
            init_settings,
            _env_settings_source(),
            _yaml_settings_source(_USER_CONFIG_PATHS),
            _yaml_settings_source([_DEFAULT_CONFIG_PATH]),
        )

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Database Configuration
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # User Context
    user: UserConfig = Field(default_factory=UserConfig)

    # Instance Engine
    instances: InstanceConfig = Field(default_factory=InstanceConfig)

    # HTTP
    api: ApiConfig = Field(default_factory=ApiConfig)


# Global settings instance
settings = Settings()
