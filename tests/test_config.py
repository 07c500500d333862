"""Test library settings and logging setup."""

import pytest
from pydantic import ValidationError

from kfg.config import KfgSettings, get_settings
from kfg.drivers import env_driver, json_driver, sqlite_driver
from kfg.utils import setup_logging


class TestKfgSettings:
    """KfgSettings reads KFG_* environment variables."""

    def test_defaults(self, monkeypatch):
        """Test defaults when no KFG_* variables are set."""
        for name in ("KFG_LOG_LEVEL", "KFG_SQLITE_TABLE", "KFG_SQLITE_CACHE_TTL"):
            monkeypatch.delenv(name, raising=False)

        settings = KfgSettings()

        assert settings.log_level == "INFO"
        assert settings.sqlite_table == "settings"
        assert settings.sqlite_cache_ttl == 5.0
        assert settings.sqlite_cache_interval == 1.0

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("KFG_SQLITE_CACHE_TTL", "30")
        monkeypatch.setenv("KFG_JSON_PATH", "custom.json")

        settings = get_settings()

        assert settings.sqlite_cache_ttl == 30.0
        assert settings.json_path == "custom.json"

    def test_ttl_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("KFG_SQLITE_CACHE_TTL", "0")
        with pytest.raises(ValidationError):
            KfgSettings()

    def test_driver_factories_read_settings(self, monkeypatch):
        """Driver defaults follow the settings at construction time."""
        monkeypatch.setenv("KFG_ENV_PATH", "app.env")
        monkeypatch.setenv("KFG_JSON_PATH", "app.json")
        monkeypatch.setenv("KFG_SQLITE_TABLE", "app_settings")

        assert env_driver().config["path"] == "app.env"
        assert json_driver().config["path"] == "app.json"
        assert sqlite_driver().config["table"] == "app_settings"

    def test_explicit_arguments_win(self, monkeypatch):
        monkeypatch.setenv("KFG_JSON_PATH", "app.json")
        assert json_driver("other.json").config["path"] == "other.json"


def test_setup_logging_accepts_level():
    setup_logging("debug")
    setup_logging("WARNING")
