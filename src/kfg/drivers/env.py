"""Environment driver: reads a ``.env`` file and the process environment.

Each schema leaf maps to one variable. The name is the leaf's ``prop`` if set,
otherwise the dotted path upper-cased with dots replaced by underscores
(``app.port`` -> ``APP_PORT``). Values in the file win over the process
environment, and both win over schema defaults.
"""

import json
import os
from pathlib import Path
from typing import Any

from loguru import logger

from kfg.config import get_settings
from kfg.driver import (
    Driver,
    cached_get,
    cached_has,
    cached_inject,
    cached_size,
    cached_to_json,
)
from kfg.envfile import parse, remove_env_key, update_env_content
from kfg.errors import ValidationIssue
from kfg.file_utils import read_file, write_file_atomic
from kfg.schema.fields import Leaf, walk_leaves
from kfg.utils import flatten, get_property, set_property, split_path


def env_key(path: str, leaf: Leaf | None = None) -> str:
    """Storage key for a dot-path."""
    if leaf is not None and leaf.prop:
        return leaf.prop
    return "_".join(split_path(path)).upper()


def _decode(raw: str, leaf: Leaf) -> Any:
    """Turn raw text into something the validator can coerce."""
    text = raw.strip()
    if leaf.kind in ("array", "many") and text.startswith("["):
        return json.loads(text)
    if leaf.kind in ("record", "object", "any") and text.startswith(("{", "[")):
        return json.loads(text)
    return raw


def _file_path(engine) -> Path:
    return Path(engine.driver_config.get("path") or get_settings().env_path)


def _leaf_keys(engine, path: str) -> list[tuple[str, str]]:
    """``(dot_path, env_key)`` pairs for every leaf at or below ``path``."""
    return [
        (leaf_path, env_key(leaf_path, leaf))
        for leaf_path, leaf in walk_leaves(engine.schema)
        if leaf_path == path or leaf_path.startswith(f"{path}.")
    ]


def _leaf_at(engine, path: str) -> Leaf | None:
    for leaf_path, leaf in walk_leaves(engine.schema):
        if leaf_path == path:
            return leaf
    return None


def _mount(engine, opts: dict) -> dict:
    path = _file_path(engine)
    file_values = parse(read_file(path) or "")

    data: dict = {}
    for leaf_path, leaf in walk_leaves(engine.schema):
        key = env_key(leaf_path, leaf)
        raw = file_values.get(key, os.environ.get(key))
        if raw is None:
            continue
        try:
            set_property(data, leaf_path, _decode(raw, leaf))
        except json.JSONDecodeError:
            # Left as text so validation reports the bad value
            set_property(data, leaf_path, raw)

    logger.info("Loaded environment", path=str(path), file_keys=len(file_values))
    return data


def _write_keys(engine, values: dict[str, Any], description: str | None = None) -> None:
    path = _file_path(engine)
    content = read_file(path) or ""
    for leaf_path, value in values.items():
        if value is None:
            continue
        key = env_key(leaf_path, _leaf_at(engine, leaf_path))
        content = update_env_content(content, key, value, description)
    write_file_atomic(path, content)


def _update(engine, opts: dict) -> None:
    path, value = opts["path"], opts["value"]
    # Namespaces fan out to one key per leaf; leaves (records too) are one key
    if _leaf_at(engine, path) is None and isinstance(value, dict) and value:
        values = flatten(value, path)
    else:
        values = {path: value}
    logger.debug("Writing environment keys", path=path, count=len(values))
    _write_keys(engine, values, opts.get("description"))


def _delete(engine, opts: dict) -> None:
    path = _file_path(engine)
    content = read_file(path)
    if content is None:
        return
    for _, key in _leaf_keys(engine, opts["path"]):
        content = remove_env_key(content, key)
    write_file_atomic(path, content)


def _save(engine, opts: dict) -> None:
    data = engine.store.get("data", {})
    values = {
        leaf_path: get_property(data, leaf_path) for leaf_path, _ in walk_leaves(engine.schema)
    }
    _write_keys(engine, values)
    logger.info("Saved environment", path=str(_file_path(engine)))


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return f'"{value}"'
    return json.dumps(value, default=str)


def format_env_error(engine, issues: list[ValidationIssue]) -> str:
    """Render validation issues as .env edits the user can copy."""
    label = str(engine.driver_config.get("path") or get_settings().env_path)
    missing: list[str] = []
    invalid: list[str] = []

    for issue in issues:
        leaf = _leaf_at(engine, issue.path)
        key = env_key(issue.path, leaf)
        expected = (
            _format_value(leaf.default)
            if leaf is not None and leaf.has_default
            else f"<{issue.expected or 'unknown'}>"
        )
        if issue.message == "required":
            missing.append(f"+ {key}={expected}")
        else:
            invalid.append(
                f"in {label} fix:\n"
                f"received:\n- {key}={_format_value(issue.value)}\n"
                f"expected:\n+ {key}={expected}  ({issue.message})"
            )

    sections = ["[Kfg] Invalid environment configuration."]
    if missing:
        sections.append(f"in {label} add:")
        sections.extend(missing)
    if invalid:
        sections.append("Invalid variable values:")
        sections.extend(invalid)
    sections.append("Update your .env values and run load() again.")
    return "\n".join(sections)


def env_driver(path: str | None = None) -> Driver:
    """Build an environment driver.

    Args:
        path: The .env file. Defaults to ``KfgSettings.env_path``.
    """
    return Driver(
        identify="env-driver",
        config={"path": path or get_settings().env_path},
        on_mount=_mount,
        on_get=cached_get,
        on_has=cached_has,
        on_to_json=cached_to_json,
        on_size=cached_size,
        on_inject=cached_inject,
        on_update=_update,
        on_delete=_delete,
        save=_save,
        format_error=format_env_error,
    )
