"""JSON file drivers.

Document layouts:

    nested (default)            keyroot=True
    {                           {
      "app": {                    "app.port": 3000,
        "port": 3000,             "app.port:comment": "HTTP port"
        "port:comment": "HTTP"  }
      }
    }

Descriptions passed to ``set`` are stored as ``<key>:comment`` siblings and
never reach the validated data.

In multimode, a path containing ``{id}`` (``users/{id}.json``) keeps one file
per record; the ``{id}`` placeholder must be in the file name. Without the
placeholder the whole id -> record mapping lives in one file.
"""

import json
import re
from pathlib import Path
from typing import Any

import aiofiles.os
from loguru import logger

from kfg.config import get_settings
from kfg.driver import (
    Driver,
    as_async,
    cached_get,
    cached_has,
    cached_inject,
    cached_size,
    cached_to_json,
)
from kfg.file_utils import aread_file, awrite_file_atomic, read_file, write_file_atomic
from kfg.utils import flatten, get_property, split_path, unflatten

COMMENT_SUFFIX = ":comment"
ID_PLACEHOLDER = "{id}"


# --- Document encoding ---


def _strip_comments(node: dict, prefix: str, comments: dict[str, str]) -> dict:
    result: dict = {}
    for key, value in node.items():
        if key.endswith(COMMENT_SUFFIX):
            base = key.removesuffix(COMMENT_SUFFIX)
            comments[f"{prefix}.{base}" if prefix else base] = value
            continue
        path = f"{prefix}.{key}" if prefix else key
        result[key] = _strip_comments(value, path, comments) if isinstance(value, dict) else value
    return result


def decode_document(text: str, keyroot: bool = False) -> tuple[dict, dict[str, str]]:
    """Parse a document into ``(data, comments)``.

    Raises:
        ValueError: If the text is not JSON or its root is not an object.
    """
    raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError("JSON document root must be an object")

    comments: dict[str, str] = {}
    if not keyroot:
        return _strip_comments(raw, "", comments), comments

    flat: dict[str, Any] = {}
    for key, value in raw.items():
        if key.endswith(COMMENT_SUFFIX):
            comments[key.removesuffix(COMMENT_SUFFIX)] = value
        else:
            flat[key] = value
    return unflatten(flat), comments


def encode_document(data: dict, comments: dict[str, str], keyroot: bool = False) -> str:
    if keyroot:
        document: dict = {}
        for key, value in flatten(data).items():
            document[key] = value
            if key in comments:
                document[f"{key}{COMMENT_SUFFIX}"] = comments[key]
    else:
        document = json.loads(json.dumps(data))
        for path, text in comments.items():
            *parents, last = split_path(path)
            parent = get_property(document, ".".join(parents)) if parents else document
            if isinstance(parent, dict) and last in parent:
                parent[f"{last}{COMMENT_SUFFIX}"] = text
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def _decode_or_empty(text: str | None, keyroot: bool, path: Path) -> tuple[dict, dict[str, str]]:
    if text is None:
        return {}, {}
    try:
        return decode_document(text, keyroot)
    except ValueError as e:
        logger.warning("Malformed JSON file, falling back to defaults", path=str(path), error=str(e))
        return {}, {}


# --- Paths and comments ---


def _pattern(engine) -> str | None:
    path = str(engine.driver_config.get("path") or get_settings().json_path)
    return path if engine.multimode and ID_PLACEHOLDER in path else None


def _document_path(engine) -> Path:
    return Path(engine.driver_config.get("path") or get_settings().json_path)


def _keyroot(engine) -> bool:
    return bool(engine.driver_config.get("keyroot", False))


def record_path(pattern: str, record_id: str) -> Path:
    return Path(pattern.replace(ID_PLACEHOLDER, record_id))


def _id_pattern(template: Path) -> re.Pattern:
    return re.compile(re.escape(template.name).replace(re.escape(ID_PLACEHOLDER), "(?P<id>.+)"))


def scan_records(pattern: str) -> list[tuple[str, Path]]:
    """Find the record files matching a ``{id}`` pattern, sorted by id."""
    template = Path(pattern)
    if not template.parent.exists():
        return []
    name = _id_pattern(template)
    found = []
    for candidate in template.parent.iterdir():
        match = name.fullmatch(candidate.name)
        if match and candidate.is_file():
            found.append((match.group("id"), candidate))
    return sorted(found)


async def ascan_records(pattern: str) -> list[tuple[str, Path]]:
    """Async variant of ``scan_records``."""
    template = Path(pattern)
    if not await aiofiles.os.path.exists(template.parent):
        return []
    name = _id_pattern(template)
    found = []
    for entry in await aiofiles.os.listdir(template.parent):
        match = name.fullmatch(entry)
        candidate = template.parent / entry
        if match and await aiofiles.os.path.isfile(candidate):
            found.append((match.group("id"), candidate))
    return sorted(found)


def _comments(engine) -> dict[str, str]:
    return engine.store.get("comments", {})


def _record_comments(engine, record_id: str) -> dict[str, str]:
    prefix = f"{record_id}."
    return {
        path.removeprefix(prefix): text
        for path, text in _comments(engine).items()
        if path.startswith(prefix)
    }


def _remember_comment(engine, opts: dict) -> None:
    if opts.get("description"):
        comments = _comments(engine)
        comments[opts["path"]] = opts["description"]
        engine.store.set("comments", comments)


def _forget_comments(engine, path: str) -> None:
    comments = {
        key: text
        for key, text in _comments(engine).items()
        if key != path and not key.startswith(f"{path}.")
    }
    engine.store.set("comments", comments)


def _loaded_record(engine, record_id: str, record: dict, comments: dict, into: dict) -> dict:
    record.setdefault(engine.id_field, record_id)
    into.update({f"{record_id}.{key}": text for key, text in comments.items()})
    return record


def _record_id_of(engine, opts: dict) -> str:
    if "data" in opts:
        return str(opts["data"][engine.id_field])
    return split_path(opts["path"])[0]


# --- Sync hooks ---


def _mount(engine, opts: dict) -> dict:
    keyroot = _keyroot(engine)
    comments: dict[str, str] = {}
    pattern = _pattern(engine)

    if pattern:
        data = {}
        for record_id, path in scan_records(pattern):
            record, record_comments = _decode_or_empty(read_file(path), keyroot, path)
            data[record_id] = _loaded_record(engine, record_id, record, record_comments, comments)
        logger.info("Loaded JSON records", pattern=pattern, count=len(data))
    else:
        path = _document_path(engine)
        data, comments = _decode_or_empty(read_file(path), keyroot, path)
        logger.info("Loaded JSON document", path=str(path), keys=len(data))

    engine.store.set("comments", comments)
    return data


def _write_record(engine, pattern: str, record_id: str) -> None:
    path = record_path(pattern, record_id)
    record = engine.store.get("data", {}).get(record_id)
    if record is None:
        path.unlink(missing_ok=True)
        logger.debug("Removed record file", path=str(path))
        return
    content = encode_document(record, _record_comments(engine, record_id), _keyroot(engine))
    write_file_atomic(path, content)


def _write_document(engine) -> None:
    content = encode_document(engine.store.get("data", {}), _comments(engine), _keyroot(engine))
    write_file_atomic(_document_path(engine), content)


def _persist(engine, opts: dict) -> None:
    pattern = _pattern(engine)
    if pattern:
        _write_record(engine, pattern, _record_id_of(engine, opts))
    else:
        _write_document(engine)


def _update(engine, opts: dict) -> None:
    _remember_comment(engine, opts)
    _persist(engine, opts)


def _delete(engine, opts: dict) -> None:
    _forget_comments(engine, opts["path"])
    _persist(engine, opts)


def _save(engine, opts: dict) -> None:
    pattern = _pattern(engine)
    if pattern:
        for record_id in engine.store.get("data", {}):
            _write_record(engine, pattern, record_id)
    else:
        _write_document(engine)
    logger.info("Saved JSON configuration", path=str(_document_path(engine)))


def json_driver(path: str | None = None, keyroot: bool = False) -> Driver:
    """Build a JSON file driver.

    Args:
        path: Document path, or a ``{id}`` pattern for one file per record.
            Defaults to ``KfgSettings.json_path``.
        keyroot: Store dotted keys at the top level instead of nesting.
    """
    return Driver(
        identify="json-driver",
        config={"path": path or get_settings().json_path, "keyroot": keyroot},
        on_mount=_mount,
        on_get=cached_get,
        on_has=cached_has,
        on_to_json=cached_to_json,
        on_size=cached_size,
        on_inject=cached_inject,
        on_update=_update,
        on_delete=_delete,
        on_create=_persist,
        save=_save,
    )


# --- Async hooks ---


async def _amount(engine, opts: dict) -> dict:
    keyroot = _keyroot(engine)
    comments: dict[str, str] = {}
    pattern = _pattern(engine)

    if pattern:
        data = {}
        for record_id, path in await ascan_records(pattern):
            record, record_comments = _decode_or_empty(await aread_file(path), keyroot, path)
            data[record_id] = _loaded_record(engine, record_id, record, record_comments, comments)
        logger.info("Loaded JSON records", pattern=pattern, count=len(data))
    else:
        path = _document_path(engine)
        data, comments = _decode_or_empty(await aread_file(path), keyroot, path)
        logger.info("Loaded JSON document", path=str(path), keys=len(data))

    engine.store.set("comments", comments)
    return data


async def _awrite_record(engine, pattern: str, record_id: str) -> None:
    path = record_path(pattern, record_id)
    record = engine.store.get("data", {}).get(record_id)
    if record is None:
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
            logger.debug("Removed record file", path=str(path))
        return
    content = encode_document(record, _record_comments(engine, record_id), _keyroot(engine))
    await awrite_file_atomic(path, content)


async def _awrite_document(engine) -> None:
    content = encode_document(engine.store.get("data", {}), _comments(engine), _keyroot(engine))
    await awrite_file_atomic(_document_path(engine), content)


async def _apersist(engine, opts: dict) -> None:
    pattern = _pattern(engine)
    if pattern:
        await _awrite_record(engine, pattern, _record_id_of(engine, opts))
    else:
        await _awrite_document(engine)


async def _aupdate(engine, opts: dict) -> None:
    _remember_comment(engine, opts)
    await _apersist(engine, opts)


async def _adelete(engine, opts: dict) -> None:
    _forget_comments(engine, opts["path"])
    await _apersist(engine, opts)


async def _asave(engine, opts: dict) -> None:
    pattern = _pattern(engine)
    if pattern:
        for record_id in engine.store.get("data", {}):
            await _awrite_record(engine, pattern, record_id)
    else:
        await _awrite_document(engine)
    logger.info("Saved JSON configuration", path=str(_document_path(engine)))


def async_json_driver(path: str | None = None, keyroot: bool = False) -> Driver:
    """Async JSON file driver backed by aiofiles. Use with ``AsyncKfg``."""
    return Driver(
        identify="async-json-driver",
        is_async=True,
        config={"path": path or get_settings().json_path, "keyroot": keyroot},
        on_mount=_amount,
        on_get=as_async(cached_get),
        on_has=as_async(cached_has),
        on_to_json=as_async(cached_to_json),
        on_size=as_async(cached_size),
        on_inject=as_async(cached_inject),
        on_update=_aupdate,
        on_delete=_adelete,
        on_create=_apersist,
        save=_asave,
    )
