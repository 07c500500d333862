"""kfg - schema-validated, path-addressable configuration with pluggable drivers."""

from kfg.config import KfgSettings, get_settings
from kfg.driver import AsyncDriverContract, Driver, DriverContract
from kfg.drivers import (
    async_json_driver,
    async_sqlite_driver,
    env_driver,
    json_driver,
    sqlite_driver,
)
from kfg.engine import AsyncKfg, ConfigView, Kfg, RecordScope
from kfg.errors import (
    DriverCapabilityError,
    KfgError,
    KfgValidationError,
    NotLoadedError,
    ReadOnlyError,
    StructuralError,
    ValidationIssue,
)
from kfg.fs import AsyncFileKfg, FileKfg, KfgFS, join, many
from kfg.schema import Leaf, c, compile_schema
from kfg.store import KfgStore
from kfg.utils import setup_logging

__version__ = "0.1.0"

__all__ = [
    "AsyncDriverContract",
    "AsyncFileKfg",
    "AsyncKfg",
    "ConfigView",
    "Driver",
    "DriverCapabilityError",
    "DriverContract",
    "FileKfg",
    "Kfg",
    "KfgError",
    "KfgFS",
    "KfgSettings",
    "KfgStore",
    "KfgValidationError",
    "Leaf",
    "NotLoadedError",
    "ReadOnlyError",
    "RecordScope",
    "StructuralError",
    "ValidationIssue",
    "async_json_driver",
    "async_sqlite_driver",
    "c",
    "compile_schema",
    "env_driver",
    "get_settings",
    "join",
    "json_driver",
    "many",
    "setup_logging",
    "sqlite_driver",
]
