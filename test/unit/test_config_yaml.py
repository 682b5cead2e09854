"""Unit tests for YAML configuration loading."""

import pytest
from pydantic import ValidationError

import config as config_module

_ENV_KEYS = [
    "DATABASE_URL",
    "USER_TIMEZONE",
    "LOG_LEVEL",
    "LOG_JSON",
    "API_HOST",
    "API_PORT",
    "DUE_WINDOW_MINUTES",
    "OVERDUE_GRACE_MINUTES",
]


def _clear_env(monkeypatch, keys):
    """Clear environment variables for config tests."""
    for key in keys:
        monkeypatch.delenv(key, raising=False)


def test_yaml_precedence(monkeypatch, tmp_path):
    """Environment variables override user YAML, which overrides defaults."""
    defaults = tmp_path / "defaults.yml"
    user_cfg = tmp_path / "user.yml"

    defaults.write_text(
        "\n".join(
            [
                "database:",
                "  url: sqlite:///default.db",
                "user:",
                "  timezone: UTC",
                "instances:",
                "  due_window_minutes: 5",
                "  overdue_grace_minutes: 30",
                "api:",
                "  port: 3000",
            ]
        ),
        encoding="utf-8",
    )
    user_cfg.write_text(
        "\n".join(
            [
                "database:",
                "  url: sqlite:///user.db",
                "api:",
                "  port: 4000",
            ]
        ),
        encoding="utf-8",
    )

    _clear_env(monkeypatch, _ENV_KEYS)
    monkeypatch.setenv("API_PORT", "5000")
    monkeypatch.setenv("USER_TIMEZONE", "America/Chicago")

    monkeypatch.setattr(config_module, "_DEFAULT_CONFIG_PATH", defaults)
    monkeypatch.setattr(config_module, "_USER_CONFIG_PATHS", [user_cfg])

    settings = config_module.Settings()

    assert settings.api.port == 5000
    assert settings.user.timezone == "America/Chicago"
    assert settings.database.url == "sqlite:///user.db"
    assert settings.instances.due_window_minutes == 5


def test_missing_yaml_files(monkeypatch, tmp_path):
    """Missing YAML files fall back to environment settings and model defaults."""
    _clear_env(monkeypatch, _ENV_KEYS)
    monkeypatch.setenv("DATABASE_URL", "sqlite:///env.db")
    monkeypatch.setenv("LOG_JSON", "false")

    monkeypatch.setattr(config_module, "_DEFAULT_CONFIG_PATH", tmp_path / "missing-default.yml")
    monkeypatch.setattr(config_module, "_USER_CONFIG_PATHS", [tmp_path / "missing-user.yml"])

    settings = config_module.Settings()

    assert settings.database.url == "sqlite:///env.db"
    assert settings.log_json is False
    assert settings.instances.overdue_grace_minutes == 30
    assert settings.instances.default_spacing_minutes == 30


def test_non_mapping_yaml_raises(monkeypatch, tmp_path):
    """Non-mapping YAML raises a validation error."""
    defaults = tmp_path / "defaults.yml"
    defaults.write_text("- just\n- a\n- list\n", encoding="utf-8")

    monkeypatch.setattr(config_module, "_DEFAULT_CONFIG_PATH", defaults)
    monkeypatch.setattr(config_module, "_USER_CONFIG_PATHS", [])

    with pytest.raises(ValueError, match="Config file must contain a mapping"):
        config_module.Settings()


def test_invalid_timezone_is_rejected(monkeypatch, tmp_path):
    """Unknown timezone names fail settings validation."""
    _clear_env(monkeypatch, _ENV_KEYS)
    monkeypatch.setenv("USER_TIMEZONE", "Mars/Olympus_Mons")
    monkeypatch.setattr(config_module, "_DEFAULT_CONFIG_PATH", tmp_path / "missing.yml")
    monkeypatch.setattr(config_module, "_USER_CONFIG_PATHS", [])

    with pytest.raises(ValidationError, match="Invalid timezone"):
        config_module.Settings()


def test_negative_grace_is_rejected(monkeypatch, tmp_path):
    """Classification windows cannot be negative."""
    _clear_env(monkeypatch, _ENV_KEYS)
    monkeypatch.setenv("OVERDUE_GRACE_MINUTES", "-1")
    monkeypatch.setattr(config_module, "_DEFAULT_CONFIG_PATH", tmp_path / "missing.yml")
    monkeypatch.setattr(config_module, "_USER_CONFIG_PATHS", [])

    with pytest.raises(ValidationError, match="overdue_grace_minutes"):
        config_module.Settings()
