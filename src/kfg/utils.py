"""Utility functions for Kfg: logging setup and dot-path helpers on plain dicts."""

import sys
from typing import Any

from loguru import logger

from kfg.errors import StructuralError


def setup_logging(level: str | None = None) -> None:
    """Configure the loguru stderr sink.

    Args:
        level: Log level for the sink. Falls back to KFG_LOG_LEVEL / KfgSettings.
    """
    if level is None:
        from kfg.config import get_settings

        level = get_settings().log_level

    logger.remove()
    logger.add(sys.stderr, level=level.upper())
    logger.debug("Logging configured", level=level)


def split_path(path: str) -> list[str]:
    """Split a dot-path into its segments, ignoring empty segments."""
    return [part for part in path.split(".") if part]


def get_property(obj: Any, path: str | None) -> Any:
    """Read the value at a dot-path, returning None when any segment is missing."""
    if not path:
        return obj
    current = obj
    for key in split_path(path):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def set_property(obj: dict, path: str, value: Any) -> None:
    """Write a value at a dot-path, creating intermediate dicts as needed.

    Raises:
        StructuralError: If an intermediate segment holds a non-dict value.
    """
    keys = split_path(path)
    *parents, last = keys
    target = obj
    for key in parents:
        if target.get(key) is None:
            target[key] = {}
        elif not isinstance(target[key], dict):
            raise StructuralError(f"Cannot set property on non-object at path: {key}")
        target = target[key]
    target[last] = value


def delete_property(obj: dict, path: str) -> bool:
    """Remove the value at a dot-path. Returns True if something was removed."""
    *parents, last = split_path(path)
    target = obj
    for key in parents:
        if not isinstance(target, dict) or key not in target:
            return False
        target = target[key]
    if isinstance(target, dict) and last in target:
        del target[last]
        return True
    return False


def deep_merge(target: dict, source: dict) -> dict:
    """Return a new dict with ``source`` merged recursively over ``target``."""
    output = dict(target)
    for key, value in source.items():
        current = output.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            output[key] = deep_merge(current, value)
        else:
            output[key] = value
    return output


def flatten(obj: dict, prefix: str = "") -> dict[str, Any]:
    """Flatten nested dicts into dotted keys. Empty dicts are kept as leaves."""
    result: dict[str, Any] = {}
    for key, value in obj.items():
        full = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict) and value:
            result.update(flatten(value, full))
        else:
            result[full] = value
    return result


def unflatten(flat: dict[str, Any]) -> dict:
    """Inverse of flatten: expand dotted keys into nested dicts."""
    result: dict = {}
    for key in sorted(flat, key=lambda k: k.count(".")):
        set_property(result, key, flat[key])
    return result

