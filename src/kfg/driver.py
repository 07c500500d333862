"""Driver capability records and the contracts that dispatch to them.

A ``Driver`` is a plain record of optional hooks. Each hook takes
``(engine, opts)`` and returns a value (sync drivers) or an awaitable (async
drivers). The contracts below give the engine one uniform surface and turn a
missing hook into a ``DriverCapabilityError``.

Hook options by operation:

    get / delete     {"path": str | None}
    set              {"path": str, "value": Any, "description": str | None}
    has              {"paths": tuple[str, ...]}
    inject / create  {"data": dict}
    to_json / size   {}
    save             {}
"""

import copy
import functools
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from loguru import logger

from kfg.errors import DriverCapabilityError, StructuralError
from kfg.utils import get_property

type DriverHook = Callable[..., Any]


@dataclass
class Driver:
    """Pluggable persistence backend described by its hooks."""

    identify: str
    is_async: bool = False
    config: dict[str, Any] = field(default_factory=dict)

    on_mount: DriverHook | None = None
    on_unmount: DriverHook | None = None
    on_request: DriverHook | None = None
    on_get: DriverHook | None = None
    on_update: DriverHook | None = None
    on_delete: DriverHook | None = None
    on_merge: DriverHook | None = None
    on_has: DriverHook | None = None
    on_inject: DriverHook | None = None
    on_to_json: DriverHook | None = None
    on_create: DriverHook | None = None
    on_size: DriverHook | None = None
    save: DriverHook | None = None
    format_error: DriverHook | None = None

    def clone(self, **config: Any) -> "Driver":
        """Return a copy with its own config dict, optionally overriding keys.

        Engines always work on a clone, so per-engine state never aliases.
        """
        return replace(self, config={**copy.deepcopy(self.config), **config})


# --- Shared hooks for drivers that keep the whole tree in the store ---


def cached_data(engine) -> dict:
    return engine.store.get("data", {})


def cached_get(engine, opts: dict) -> Any:
    return get_property(cached_data(engine), opts.get("path"))


def cached_has(engine, opts: dict) -> bool:
    data = cached_data(engine)
    return all(get_property(data, path) is not None for path in opts["paths"])


def cached_to_json(engine, opts: dict) -> dict:
    return cached_data(engine)


def cached_size(engine, opts: dict) -> int:
    return len(cached_data(engine))


def cached_inject(engine, opts: dict) -> None:
    engine.store.merge("data", opts["data"])


def merge_partial(path: str, target: Any, partial: dict) -> dict:
    """Shallow-merge ``partial`` into ``target``, the current object at ``path``."""
    if not isinstance(target, dict):
        raise StructuralError(f"Cannot insert into non-object at path: {path}")
    return {**target, **partial}


def as_async(hook: DriverHook) -> DriverHook:
    """Wrap a synchronous hook so async drivers can reuse it."""

    @functools.wraps(hook)
    async def wrapper(engine, opts: dict) -> Any:
        return hook(engine, opts)

    return wrapper


class _BaseContract:
    def __init__(self, driver: Driver):
        self.driver = driver

    @property
    def identify(self) -> str:
        return self.driver.identify

    def _hook(self, name: str, operation: str) -> DriverHook:
        hook = getattr(self.driver, name)
        if hook is None:
            raise DriverCapabilityError(self.driver.identify, operation)
        return hook

    def _inject_hook(self) -> DriverHook:
        hook = self.driver.on_merge or self.driver.on_inject
        if hook is None:
            raise DriverCapabilityError(self.driver.identify, "inject")
        return hook

    def _merge_config(self, engine, opts: dict | None) -> None:
        engine.store.set("~driver", {**self.driver.config, **(opts or {})})


class DriverContract(_BaseContract):
    """Uniform surface over a synchronous driver."""

    def mount(self, engine, opts: dict | None = None) -> Any:
        self._merge_config(engine, opts)
        logger.info("Mounting driver", driver=self.identify)
        if self.driver.on_mount is None:
            return None
        return self.driver.on_mount(engine, opts or {})

    def unmount(self, engine) -> None:
        if self.driver.on_unmount is not None:
            self.driver.on_unmount(engine, {})
        logger.info("Unmounted driver", driver=self.identify)

    def request(self, engine, opts: dict) -> None:
        if self.driver.on_request is not None:
            self.driver.on_request(engine, opts)

    def _call(self, engine, name: str, operation: str, opts: dict) -> Any:
        hook = self._hook(name, operation)
        self.request(engine, opts)
        return hook(engine, opts)

    def get(self, engine, path: str | None = None) -> Any:
        return self._call(engine, "on_get", "get", {"path": path})

    def set(self, engine, path: str, value: Any, description: str | None = None) -> Any:
        opts = {"path": path, "value": value, "description": description}
        return self._call(engine, "on_update", "set", opts)

    def has(self, engine, *paths: str) -> bool:
        return self._call(engine, "on_has", "has", {"paths": paths})

    def delete(self, engine, path: str) -> Any:
        return self._call(engine, "on_delete", "delete", {"path": path})

    def insert(self, engine, path: str, partial: dict) -> Any:
        return self.set(engine, path, merge_partial(path, self.get(engine, path), partial))

    def inject(self, engine, data: dict) -> Any:
        hook = self._inject_hook()
        opts = {"data": data}
        self.request(engine, opts)
        return hook(engine, opts)

    def to_json(self, engine) -> Any:
        return self._call(engine, "on_to_json", "to_json", {})

    def create(self, engine, data: dict) -> Any:
        return self._call(engine, "on_create", "create", {"data": data})

    def size(self, engine) -> int:
        return self._call(engine, "on_size", "size", {})

    def save(self, engine) -> Any:
        # save is optional
        if self.driver.save is None:
            return None
        self.request(engine, {})
        return self.driver.save(engine, {})


class AsyncDriverContract(_BaseContract):
    """Uniform surface over an async driver; every hook is awaited in turn."""

    async def mount(self, engine, opts: dict | None = None) -> Any:
        self._merge_config(engine, opts)
        logger.info("Mounting driver", driver=self.identify)
        if self.driver.on_mount is None:
            return None
        return await self.driver.on_mount(engine, opts or {})

    async def unmount(self, engine) -> None:
        if self.driver.on_unmount is not None:
            await self.driver.on_unmount(engine, {})
        logger.info("Unmounted driver", driver=self.identify)

    async def request(self, engine, opts: dict) -> None:
        if self.driver.on_request is not None:
            await self.driver.on_request(engine, opts)

    async def _call(self, engine, name: str, operation: str, opts: dict) -> Any:
        hook = self._hook(name, operation)
        await self.request(engine, opts)
        return await hook(engine, opts)

    async def get(self, engine, path: str | None = None) -> Any:
        return await self._call(engine, "on_get", "get", {"path": path})

    async def set(self, engine, path: str, value: Any, description: str | None = None) -> Any:
        opts = {"path": path, "value": value, "description": description}
        return await self._call(engine, "on_update", "set", opts)

    async def has(self, engine, *paths: str) -> bool:
        return await self._call(engine, "on_has", "has", {"paths": paths})

    async def delete(self, engine, path: str) -> Any:
        return await self._call(engine, "on_delete", "delete", {"path": path})

    async def insert(self, engine, path: str, partial: dict) -> Any:
        target = await self.get(engine, path)
        return await self.set(engine, path, merge_partial(path, target, partial))

    async def inject(self, engine, data: dict) -> Any:
        hook = self._inject_hook()
        opts = {"data": data}
        await self.request(engine, opts)
        return await hook(engine, opts)

    async def to_json(self, engine) -> Any:
        return await self._call(engine, "on_to_json", "to_json", {})

    async def create(self, engine, data: dict) -> Any:
        return await self._call(engine, "on_create", "create", {"data": data})

    async def size(self, engine) -> int:
        return await self._call(engine, "on_size", "size", {})

    async def save(self, engine) -> Any:
        if self.driver.save is None:
            return None
        await self.request(engine, {})
        return await self.driver.save(engine, {})

