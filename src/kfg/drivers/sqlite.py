"""SQLite drivers with a write-behind queue.

Table layout (primary key ``(key, "group")``):

    key | group | type | value | create_at | update_at

Single-record mode stores ``app.db.port`` as group ``app.db``, key ``port``.
Multimode stores ``<id>.a.b`` as group ``<id>``, key ``a.b``. Values are text
tagged with ``string``, ``number``, ``boolean``, ``object``, ``array`` or
``null``.

Writes only update the in-memory tree and queue SQL statements. ``save()``
runs the queue in one transaction and clears it after commit; ``create()``
saves immediately and ``unmount()`` saves before closing. An idle cache is
dropped after ``cache_ttl`` seconds and reloaded on the next access, but never
while statements are still queued. A failed ``create()`` leaves the queue as it
was before the call.
"""

import asyncio
import functools
import json
import re
import threading
import time
import weakref
from typing import Any

from loguru import logger
from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    Table,
    Text,
    and_,
    create_engine,
    delete,
    or_,
    select,
    tuple_,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import create_async_engine

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
from kfg.utils import flatten, split_path, unflatten

INTEGER_PATTERN = re.compile(r"-?\d+")
CONNECT_ARGS = {"check_same_thread": False}


# --- Row mapping ---


def build_table(name: str) -> Table:
    return Table(
        name,
        MetaData(),
        Column("key", Text, nullable=False),
        Column("group", Text, nullable=False, default=""),
        Column("type", Text),
        Column("value", Text),
        Column("create_at", Integer),
        Column("update_at", Integer),
        PrimaryKeyConstraint("key", "group"),
    )


def encode_value(value: Any) -> tuple[str, str]:
    """Return ``(type_tag, text)`` for a leaf value."""
    match value:
        case None:
            return "null", ""
        case bool():
            return "boolean", "true" if value else "false"
        case int() | float():
            return "number", str(value)
        case list() | tuple():
            return "array", json.dumps(list(value))
        case dict():
            return "object", json.dumps(value)
    return "string", str(value)


def decode_value(type_tag: str, text: str | None) -> Any:
    match type_tag:
        case "null":
            return None
        case "number":
            return int(text) if INTEGER_PATTERN.fullmatch(text) else float(text)
        case "boolean":
            return text == "true"
        case "object" | "array":
            try:
                return json.loads(text)
            except ValueError:
                return text
    return text


def row_address(path: str, multimode: bool) -> tuple[str, str]:
    """Map a dot-path to ``(group, key)``."""
    parts = split_path(path)
    if multimode:
        return parts[0], ".".join(parts[1:])
    return ".".join(parts[:-1]), parts[-1]


def row_path(group: str, key: str) -> str:
    return ".".join(part for part in (group, key) if part)


def rows_to_tree(rows) -> dict:
    flat = {}
    for row in rows:
        mapping = row._mapping
        path = row_path(mapping["group"], mapping["key"])
        flat[path] = decode_value(mapping["type"], mapping["value"])
    return unflatten(flat)


def _leaf_rows(path: str, value: Any) -> dict[str, Any]:
    if isinstance(value, dict) and value:
        return flatten(value, path)
    return {path: value}


def _subtree(table: Table, path: str, multimode: bool):
    """Rows stored at or below ``path``."""
    group, key = row_address(path, multimode)
    group_col, key_col = table.c["group"], table.c["key"]
    if multimode:
        if not key:
            return group_col == group
        return and_(
            group_col == group,
            or_(key_col == key, key_col.startswith(f"{key}.", autoescape=True)),
        )
    return or_(
        and_(group_col == group, key_col == key),
        group_col == path,
        group_col.startswith(f"{path}.", autoescape=True),
    )


def write_statements(table: Table, path: str, value: Any, multimode: bool) -> list:
    """Statements that make the rows under ``path`` mirror ``value``."""
    now = int(time.time() * 1000)
    rows = []
    for full_path, leaf in _leaf_rows(path, value).items():
        group, key = row_address(full_path, multimode)
        type_tag, text = encode_value(leaf)
        rows.append(
            {
                "key": key,
                "group": group,
                "type": type_tag,
                "value": text,
                "create_at": now,
                "update_at": now,
            }
        )

    addresses = [(row["key"], row["group"]) for row in rows]
    stale = delete(table).where(
        _subtree(table, path, multimode),
        tuple_(table.c["key"], table.c["group"]).not_in(addresses),
    )

    statements = [stale]
    for row in rows:
        upsert = sqlite_insert(table).values(**row)
        upsert = upsert.on_conflict_do_update(
            index_elements=["key", "group"],
            set_={
                "type": upsert.excluded["type"],
                "value": upsert.excluded["value"],
                "update_at": upsert.excluded["update_at"],
            },
        )
        statements.append(upsert)
    return statements


# --- Shared state helpers ---


def _touch(engine) -> None:
    engine.store.set("last_access", time.monotonic())


def _table(engine) -> Table:
    return engine.store.get("table")


def _queue(engine, statements: list) -> None:
    queue = engine.store.get("queue", [])
    queue.extend(statements)
    engine.store.set("queue", queue)


def _drop_queued(engine, mark: int) -> None:
    queue = engine.store.get("queue", [])
    del queue[mark:]
    engine.store.set("queue", queue)


def _cache_lock(engine) -> threading.RLock:
    """Guards the cached tree against the expiry thread."""
    lock = engine.store.get("lock")
    if lock is None:
        lock = threading.RLock()
        engine.store.set("lock", lock)
    return lock


def _needs_reload(engine) -> bool:
    return engine.loaded and "db" in engine.store and "data" not in engine.store


def expire_cache(engine, ttl: float) -> bool:
    """Drop the cached tree if it has been idle for ``ttl`` seconds.

    Returns True if the cache was dropped. Pending writes keep it alive.
    """
    store = engine.store
    with _cache_lock(engine):
        if "data" not in store or store.get("queue", []):
            return False
        if time.monotonic() - store.get("last_access", 0.0) < ttl:
            return False
        store.delete("data")
    logger.debug("Dropped idle SQLite cache", driver=engine.driver.identify)
    return True


def _timing(engine) -> tuple[float, float]:
    config = engine.driver_config
    return float(config["cache_ttl"]), float(config["cache_interval"])


def _queue_update(engine, opts: dict) -> None:
    _touch(engine)
    statements = write_statements(_table(engine), opts["path"], opts["value"], engine.multimode)
    _queue(engine, statements)
    logger.debug("Queued update", path=opts["path"], statements=len(statements))


def _queue_delete(engine, opts: dict) -> None:
    _touch(engine)
    table = _table(engine)
    _queue(engine, [delete(table).where(_subtree(table, opts["path"], engine.multimode))])
    logger.debug("Queued delete", path=opts["path"])


def _queue_create(engine, opts: dict) -> int:
    """Queue the rows of a new record; returns the queue length before them."""
    record = opts["data"]
    record_id = str(record[engine.id_field])
    mark = len(engine.store.get("queue", []))
    _queue(engine, write_statements(_table(engine), record_id, record, engine.multimode))
    return mark


def _config(path, table, cache_ttl, cache_interval) -> dict:
    settings = get_settings()
    return {
        "path": path or settings.sqlite_path,
        "table": table or settings.sqlite_table,
        "cache_ttl": cache_ttl if cache_ttl is not None else settings.sqlite_cache_ttl,
        "cache_interval": (
            cache_interval if cache_interval is not None else settings.sqlite_cache_interval
        ),
    }


# --- Sync driver ---


class CacheExpiry:
    """Background thread that drops an idle cache.

    The engine is held weakly; the thread exits once the engine is collected,
    even if it was never unmounted.
    """

    def __init__(self, engine, ttl: float, interval: float):
        self._engine = weakref.ref(engine)
        self.ttl = ttl
        self.interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="kfg-sqlite-cache", daemon=True)

    def start(self) -> None:
        self._thread.start()

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval + 1)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            engine = self._engine()
            if engine is None:
                logger.debug("SQLite engine collected, stopping cache expiry")
                return
            expire_cache(engine, self.ttl)
            del engine


def _load(engine) -> dict:
    with engine.store.get("db").connect() as conn:
        rows = conn.execute(select(_table(engine))).all()
    logger.debug("Loaded SQLite rows", count=len(rows))
    return rows_to_tree(rows)


def _flush(engine) -> None:
    queue = engine.store.get("queue", [])
    if not queue:
        return
    with engine.store.get("db").begin() as conn:
        for statement in queue:
            conn.execute(statement)
    # Cleared only once the transaction has committed
    engine.store.set("queue", [])
    logger.info("Saved SQLite changes", statements=len(queue))


def _stop_expiry(engine) -> None:
    expiry = engine.store.get("expiry")
    if expiry is not None:
        expiry.stop()
        engine.store.delete("expiry")


def _mount(engine, opts: dict) -> dict:
    config = engine.driver_config
    _stop_expiry(engine)
    if "db" not in engine.store:
        db = create_engine(f"sqlite:///{config['path']}", connect_args=CONNECT_ARGS)
        engine.store.set("db", db)

    table = build_table(config["table"])
    table.metadata.create_all(engine.store.get("db"))
    engine.store.set("table", table)
    _flush(engine)
    _touch(engine)
    _cache_lock(engine)

    ttl, interval = _timing(engine)
    expiry = CacheExpiry(engine, ttl, interval)
    expiry.start()
    engine.store.set("expiry", expiry)

    logger.info("Mounted SQLite driver", path=config["path"], table=config["table"])
    return _load(engine)


def _unmount(engine, opts: dict) -> None:
    _stop_expiry(engine)
    db = engine.store.get("db")
    if db is None:
        return
    _flush(engine)
    db.dispose()
    engine.store.delete("db")
    logger.info("Closed SQLite database", path=engine.driver_config["path"])


def _reload_if_expired(engine) -> None:
    if _needs_reload(engine):
        logger.debug("SQLite cache miss, reloading")
        engine.store.set("data", engine.validate(_load(engine)))


def _request(engine, opts: dict) -> None:
    with _cache_lock(engine):
        _touch(engine)
        _reload_if_expired(engine)


def _fresh(hook):
    """Run a cached read hook on a loaded tree, reloading it if it expired."""

    @functools.wraps(hook)
    def wrapper(engine, opts: dict) -> Any:
        with _cache_lock(engine):
            _reload_if_expired(engine)
            return hook(engine, opts)

    return wrapper


def _create(engine, opts: dict) -> None:
    mark = _queue_create(engine, opts)
    try:
        _flush(engine)
    except Exception:
        # The engine rolls the record back, so its rows must not stay queued
        _drop_queued(engine, mark)
        logger.warning("Create failed, dropped its queued rows", driver=engine.driver.identify)
        raise


def _save(engine, opts: dict) -> None:
    _touch(engine)
    _flush(engine)


def sqlite_driver(
    path: str | None = None,
    table: str | None = None,
    cache_ttl: float | None = None,
    cache_interval: float | None = None,
) -> Driver:
    """Build a SQLite driver (pysqlite through SQLAlchemy).

    Defaults come from ``KfgSettings`` (``KFG_SQLITE_*``).
    """
    return Driver(
        identify="sqlite-driver",
        config=_config(path, table, cache_ttl, cache_interval),
        on_mount=_mount,
        on_unmount=_unmount,
        on_request=_request,
        on_get=_fresh(cached_get),
        on_has=_fresh(cached_has),
        on_to_json=_fresh(cached_to_json),
        on_size=_fresh(cached_size),
        on_inject=cached_inject,
        on_update=_queue_update,
        on_delete=_queue_delete,
        on_create=_create,
        save=_save,
    )


# --- Async driver ---


async def _expire_loop(engine_ref: weakref.ref, ttl: float, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        engine = engine_ref()
        if engine is None:
            logger.debug("SQLite engine collected, stopping cache expiry")
            return
        expire_cache(engine, ttl)
        del engine


async def _aload(engine) -> dict:
    async with engine.store.get("db").connect() as conn:
        result = await conn.execute(select(_table(engine)))
        rows = result.all()
    logger.debug("Loaded SQLite rows", count=len(rows))
    return rows_to_tree(rows)


async def _aflush(engine) -> None:
    queue = engine.store.get("queue", [])
    if not queue:
        return
    async with engine.store.get("db").begin() as conn:
        for statement in queue:
            await conn.execute(statement)
    engine.store.set("queue", [])
    logger.info("Saved SQLite changes", statements=len(queue))


async def _astop_expiry(engine) -> None:
    task = engine.store.get("expiry")
    if task is None:
        return
    engine.store.delete("expiry")
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        logger.debug("SQLite cache expiry task cancelled")


async def _amount(engine, opts: dict) -> dict:
    config = engine.driver_config
    await _astop_expiry(engine)
    if "db" not in engine.store:
        db = create_async_engine(
            f"sqlite+aiosqlite:///{config['path']}", connect_args=CONNECT_ARGS
        )
        engine.store.set("db", db)

    table = build_table(config["table"])
    async with engine.store.get("db").begin() as conn:
        await conn.run_sync(table.metadata.create_all)
    engine.store.set("table", table)
    await _aflush(engine)
    _touch(engine)
    _cache_lock(engine)

    ttl, interval = _timing(engine)
    task = asyncio.create_task(_expire_loop(weakref.ref(engine), ttl, interval))
    engine.store.set("expiry", task)

    logger.info("Mounted SQLite driver", path=config["path"], table=config["table"])
    return await _aload(engine)


async def _aunmount(engine, opts: dict) -> None:
    await _astop_expiry(engine)
    db = engine.store.get("db")
    if db is None:
        return
    await _aflush(engine)
    await db.dispose()
    engine.store.delete("db")
    logger.info("Closed SQLite database", path=engine.driver_config["path"])


async def _areload_if_expired(engine) -> None:
    if _needs_reload(engine):
        logger.debug("SQLite cache miss, reloading")
        engine.store.set("data", engine.validate(await _aload(engine)))


async def _arequest(engine, opts: dict) -> None:
    _touch(engine)
    await _areload_if_expired(engine)


def _afresh(hook):
    @functools.wraps(hook)
    async def wrapper(engine, opts: dict) -> Any:
        await _areload_if_expired(engine)
        return hook(engine, opts)

    return wrapper


async def _acreate(engine, opts: dict) -> None:
    mark = _queue_create(engine, opts)
    try:
        await _aflush(engine)
    except Exception:
        _drop_queued(engine, mark)
        logger.warning("Create failed, dropped its queued rows", driver=engine.driver.identify)
        raise


async def _asave(engine, opts: dict) -> None:
    _touch(engine)
    await _aflush(engine)


def async_sqlite_driver(
    path: str | None = None,
    table: str | None = None,
    cache_ttl: float | None = None,
    cache_interval: float | None = None,
) -> Driver:
    """Async SQLite driver (SQLAlchemy asyncio over aiosqlite). Use with ``AsyncKfg``."""
    return Driver(
        identify="async-sqlite-driver",
        is_async=True,
        config=_config(path, table, cache_ttl, cache_interval),
        on_mount=_amount,
        on_unmount=_aunmount,
        on_request=_arequest,
        on_get=_afresh(cached_get),
        on_has=_afresh(cached_has),
        on_to_json=_afresh(cached_to_json),
        on_size=_afresh(cached_size),
        on_inject=as_async(cached_inject),
        on_update=as_async(_queue_update),
        on_delete=as_async(_queue_delete),
        on_create=_acreate,
        save=_asave,
    )
