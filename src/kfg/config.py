"""Runtime settings for Kfg itself.

These settings only tune the library (log level, driver defaults, SQLite
cache timing). They are read from the environment with the ``KFG_`` prefix,
for example ``KFG_LOG_LEVEL=DEBUG`` or ``KFG_SQLITE_CACHE_TTL=30``.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class KfgSettings(BaseSettings):
    """Library-level settings with environment overrides."""

    model_config = SettingsConfigDict(env_prefix="KFG_", extra="ignore")

    log_level: str = Field(default="INFO", description="Level for the loguru stderr sink")

    env_path: str = Field(default=".env", description="Default file used by the env driver")
    json_path: str = Field(default="config.json", description="Default file used by the JSON driver")
    sqlite_path: str = Field(default="config.db", description="Default SQLite database file")
    sqlite_table: str = Field(default="settings", description="Default SQLite table name")

    sqlite_cache_ttl: float = Field(
        default=5.0,
        gt=0,
        description="Seconds without reads or writes before the SQLite cache is dropped",
    )
    sqlite_cache_interval: float = Field(
        default=1.0,
        gt=0,
        description="Seconds between SQLite cache expiry checks",
    )


def get_settings() -> KfgSettings:
    """Build settings from the current environment."""
    return KfgSettings()
