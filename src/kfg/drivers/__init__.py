"""Built-in drivers."""

from kfg.drivers.env import env_driver
from kfg.drivers.json_file import async_json_driver, json_driver
from kfg.drivers.sqlite import async_sqlite_driver, sqlite_driver

__all__ = [
    "async_json_driver",
    "async_sqlite_driver",
    "env_driver",
    "json_driver",
    "sqlite_driver",
]
