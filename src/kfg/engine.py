"""The configuration engine.

``Kfg`` drives synchronous drivers and ``AsyncKfg`` drives async ones. Both
own a cloned driver, a private ``KfgStore`` and a hook pipeline, and both
follow the same mutation protocol:

1. Snapshot the current tree.
2. Apply the change to a copy and validate it (the affected record in
   multimode, the whole tree otherwise). Nothing is persisted on failure.
3. Put the validated tree in the store, then let the driver persist it.
4. If the driver raises, restore the snapshot and re-raise.
"""

import copy
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from loguru import logger

from kfg.driver import AsyncDriverContract, Driver, DriverContract, merge_partial
from kfg.errors import (
    DriverCapabilityError,
    KfgValidationError,
    NotLoadedError,
    ReadOnlyError,
    StructuralError,
)
from kfg.hooks import HookCallback, HookPipeline
from kfg.schema import fields
from kfg.schema.fields import SchemaDefinition
from kfg.schema.validator import CompiledSchema, compile_schema
from kfg.store import KfgStore
from kfg.utils import deep_merge, delete_property, get_property, set_property, split_path


class ConfigView:
    """Read-only accessor over a snapshot of the configuration tree."""

    def __init__(self, data: dict):
        self._data = data

    def get(self, path: str | None = None) -> Any:
        return copy.deepcopy(get_property(self._data, path))

    def has(self, *paths: str) -> bool:
        return all(get_property(self._data, path) is not None for path in paths)

    def to_dict(self) -> dict:
        return copy.deepcopy(self._data)

    def __getitem__(self, path: str) -> Any:
        value = get_property(self._data, path)
        if value is None:
            raise KeyError(path)
        return copy.deepcopy(value)

    def __contains__(self, path: str) -> bool:
        return self.has(path)

    def set(self, *args: Any, **kwargs: Any) -> None:
        raise ReadOnlyError("Cannot write through a read-only configuration view")

    def delete(self, *args: Any, **kwargs: Any) -> None:
        raise ReadOnlyError("Cannot delete through a read-only configuration view")

    __setitem__ = set
    __delitem__ = delete


class RecordScope:
    """Paths relative to one multimode record.

    Calls are forwarded to the engine as-is, so on an ``AsyncKfg`` every
    method returns an awaitable.
    """

    def __init__(self, engine: "BaseKfg", record_id: str):
        self.engine = engine
        self.record_id = record_id

    def _path(self, path: str | None) -> str:
        return f"{self.record_id}.{path}" if path else self.record_id

    def get(self, path: str | None = None) -> Any:
        return self.engine.get(self._path(path))

    def set(self, path: str | None, value: Any, description: str | None = None) -> Any:
        return self.engine.set(self._path(path), value, description)

    def delete(self, path: str | None = None) -> Any:
        return self.engine.delete(self._path(path))


class BaseKfg:
    """State and validation shared by the sync and async engines."""

    contract_class: type = DriverContract

    def __init__(
        self,
        driver: Driver,
        schema: SchemaDefinition,
        multimode: bool = False,
        id_field: str = "id",
    ):
        self.driver = driver.clone()
        self.schema = schema
        self.multimode = multimode
        self.id_field = id_field
        self.store = KfgStore()
        self.hooks = HookPipeline()
        self.contract = self.contract_class(self.driver)
        self.loaded = False
        self._compiled: CompiledSchema | None = None
        self._last_options: dict | None = None

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(driver={self.driver.identify!r}, "
            f"multimode={self.multimode}, loaded={self.loaded})"
        )

    @property
    def driver_config(self) -> dict:
        """Driver options merged from its defaults and the last mount options."""
        return self.store.get("~driver", self.driver.config)

    @property
    def compiled(self) -> CompiledSchema:
        if self._compiled is None:
            self._compiled = compile_schema(self.schema)
        return self._compiled

    def on(self, event: str, fn: HookCallback) -> "BaseKfg":
        self.hooks.on(event, fn)
        return self

    def where(self, record_id: str) -> RecordScope:
        return RecordScope(self, str(record_id))

    def schematic(self, path: str) -> Any:
        """Return the schema node for a data path (record ids are skipped in multimode)."""
        segments = split_path(path)
        if self.multimode:
            segments = segments[1:]
        if not segments:
            return self.schema
        return fields.schematic(self.schema, ".".join(segments))

    def validate(self, data: Any) -> dict:
        """Validate a raw tree, or every record of it in multimode."""
        if not self.multimode:
            return self._checked(data)
        if not isinstance(data, dict):
            return {}
        return {str(key): self._checked(record, str(key)) for key, record in data.items()}

    def _checked(self, data: Any, prefix: str | None = None) -> dict:
        try:
            return self.compiled.validate(data)
        except KfgValidationError as e:
            issues = e.issues
            if prefix:
                issues = [
                    replace(issue, path=f"{prefix}.{issue.path}" if issue.path else prefix)
                    for issue in issues
                ]
            message = None
            if self.driver.format_error is not None:
                message = self.driver.format_error(self, issues)
            raise KfgValidationError(issues, message) from e

    def _require_loaded(self, operation: str) -> None:
        if not self.loaded:
            raise NotLoadedError(operation)

    def _prepare_mount(self, options: dict | None) -> tuple[dict, dict]:
        self._last_options = options
        opts = dict(options or {})
        only_importants = bool(opts.pop("only_importants", False))
        self._compiled = compile_schema(self.schema, only_importants)
        # Data injected before the first mount sits under whatever the driver loads
        base = {} if self.loaded else self.store.get("data", {})
        self.loaded = False
        return opts, base

    def _finish_mount(self, raw: Any, base: dict) -> None:
        data = self.validate(deep_merge(base, raw or {}))
        self.store.set("data", data)
        self.loaded = True
        logger.info(
            "Configuration loaded",
            driver=self.driver.identify,
            multimode=self.multimode,
            keys=len(data),
        )

    def _candidate(self, snapshot: dict, path: str, mutate: Callable[[dict], Any]) -> dict:
        """Apply ``mutate`` to a copy of ``snapshot`` and validate what it touched."""
        candidate = copy.deepcopy(snapshot)
        mutate(candidate)
        if not self.multimode:
            return self._checked(candidate)

        record_id = split_path(path)[0]
        if record_id in candidate:
            candidate[record_id] = self._checked(candidate[record_id], record_id)
        return candidate

    def _new_record(self, record: Any) -> tuple[str, dict]:
        record_id = record.get(self.id_field) if isinstance(record, dict) else None
        if record_id is None or record_id == "":
            raise StructuralError(f"Cannot create a record without '{self.id_field}'")
        record_id = str(record_id)
        return record_id, self._checked(record, record_id)

    def _require_multimode(self, operation: str) -> None:
        if not self.multimode:
            raise StructuralError(f"{operation}() is only available in multimode")

    @staticmethod
    def _require_path(path: str) -> None:
        if not split_path(path):
            raise StructuralError("A non-empty path is required")

    def _rollback(self, snapshot: dict, operation: str, error: Exception) -> None:
        self.store.set("data", snapshot)
        logger.warning(
            "Driver failed, restored previous data",
            driver=self.driver.identify,
            operation=operation,
            error=str(error),
        )


class Kfg(BaseKfg):
    """Schema-validated configuration bound to a synchronous driver.

    Example:
        config = Kfg(env_driver(), {"app": {"port": c.number(default=3000)}})
        config.mount()
        config.get("app.port")
    """

    contract_class = DriverContract

    def __init__(
        self,
        driver: Driver,
        schema: SchemaDefinition,
        multimode: bool = False,
        id_field: str = "id",
    ):
        if driver.is_async:
            raise DriverCapabilityError(driver.identify, "synchronous access; use AsyncKfg")
        super().__init__(driver, schema, multimode, id_field)

    # --- Lifecycle ---

    def mount(self, options: dict | None = None) -> None:
        """Load data through the driver and validate it.

        Args:
            options: Driver config overrides, plus ``only_importants`` to relax
                every field not marked important.
        """
        opts, base = self._prepare_mount(options)
        raw = self.contract.mount(self, opts)
        self._finish_mount(raw, base)
        self.hooks.run("ready", self)

    def load(self, options: dict | None = None) -> None:
        return self.mount(options)

    def reload(self, options: dict | None = None) -> None:
        self.loaded = False
        self.store.delete("data")
        return self.mount(options if options is not None else self._last_options)

    def unmount(self) -> None:
        self.contract.unmount(self)
        self.loaded = False
        self.store.delete("data")

    def save(self) -> Any:
        """Flush pending writes through the driver, if it buffers any."""
        self._require_loaded("save")
        return self.contract.save(self)

    # --- Reads ---

    def get(self, path: str | None = None) -> Any:
        self._require_loaded("get")
        return self.contract.get(self, path)

    def has(self, *paths: str) -> bool:
        self._require_loaded("has")
        return self.contract.has(self, *paths)

    def to_json(self) -> dict:
        self._require_loaded("to_json")
        return self.contract.to_json(self)

    def size(self) -> int:
        self._require_loaded("size")
        return self.contract.size(self)

    def view(self) -> ConfigView:
        return ConfigView(copy.deepcopy(self.to_json()))

    # --- Writes ---

    def _snapshot(self) -> dict:
        return copy.deepcopy(self.contract.to_json(self) or {})

    def _commit(self, snapshot: dict, validated: dict, operation: str, persist: Callable[[], Any]):
        self.store.set("data", validated)
        try:
            return persist()
        except Exception as e:
            self._rollback(snapshot, operation, e)
            raise

    def set(self, path: str, value: Any, description: str | None = None) -> None:
        self._require_loaded("set")
        self._require_path(path)

        # Only whole-record writes run the update hooks
        if self.multimode and len(split_path(path)) == 1:
            previous = self.contract.get(self, path)
            if previous is not None:
                value = self.hooks.run("update", value, copy.deepcopy(previous))

        snapshot = self._snapshot()
        validated = self._candidate(snapshot, path, lambda tree: set_property(tree, path, value))
        stored = get_property(validated, path)
        self._commit(
            snapshot,
            validated,
            "set",
            lambda: self.contract.set(self, path, stored, description),
        )
        logger.debug("Set value", path=path)

    def insert(self, path: str, partial: dict) -> None:
        """Shallow-merge ``partial`` into the object at ``path``."""
        self._require_loaded("insert")
        self.set(path, merge_partial(path, self.contract.get(self, path), partial))

    def inject(self, data: dict) -> None:
        """Deep-merge ``data`` into the root.

        Before mount the data is merged as-is and loaded data is applied over
        it. After mount the merged tree is validated and rolled back on failure.
        """
        if not self.loaded:
            self.contract.inject(self, data)
            return

        snapshot = self._snapshot()
        self.contract.inject(self, data)
        try:
            validated = self.validate(self.store.get("data", {}))
        except KfgValidationError:
            self.store.set("data", snapshot)
            raise
        self.store.set("data", validated)

    def delete(self, path: str) -> None:
        self._require_loaded("delete")
        self._require_path(path)

        if self.multimode and len(split_path(path)) == 1:
            previous = self.contract.get(self, path)
            if previous is not None:
                self.hooks.run("delete", copy.deepcopy(previous))

        snapshot = self._snapshot()
        validated = self._candidate(snapshot, path, lambda tree: delete_property(tree, path))
        self._commit(snapshot, validated, "delete", lambda: self.contract.delete(self, path))
        logger.debug("Deleted value", path=path)

    def create(self, data: dict) -> dict:
        """Run the create hooks over ``data`` and persist the result as a new record."""
        self._require_loaded("create")
        self._require_multimode("create")

        record_id, record = self._new_record(self.hooks.run("create", copy.deepcopy(data)))
        snapshot = self._snapshot()
        self._commit(
            snapshot,
            {**snapshot, record_id: record},
            "create",
            lambda: self.contract.create(self, record),
        )
        logger.debug("Created record", id=record_id)
        return copy.deepcopy(record)


class AsyncKfg(BaseKfg):
    """Schema-validated configuration bound to an async driver.

    Every driver hook and every lifecycle hook is awaited before the next
    step runs, so hook ordering and rollback behave as in ``Kfg``.
    """

    contract_class = AsyncDriverContract

    def __init__(
        self,
        driver: Driver,
        schema: SchemaDefinition,
        multimode: bool = False,
        id_field: str = "id",
    ):
        if not driver.is_async:
            raise DriverCapabilityError(driver.identify, "async access; use Kfg")
        super().__init__(driver, schema, multimode, id_field)

    # --- Lifecycle ---

    async def mount(self, options: dict | None = None) -> None:
        opts, base = self._prepare_mount(options)
        raw = await self.contract.mount(self, opts)
        self._finish_mount(raw, base)
        await self.hooks.arun("ready", self)

    async def load(self, options: dict | None = None) -> None:
        await self.mount(options)

    async def reload(self, options: dict | None = None) -> None:
        self.loaded = False
        self.store.delete("data")
        await self.mount(options if options is not None else self._last_options)

    async def unmount(self) -> None:
        await self.contract.unmount(self)
        self.loaded = False
        self.store.delete("data")

    async def save(self) -> Any:
        self._require_loaded("save")
        return await self.contract.save(self)

    # --- Reads ---

    async def get(self, path: str | None = None) -> Any:
        self._require_loaded("get")
        return await self.contract.get(self, path)

    async def has(self, *paths: str) -> bool:
        self._require_loaded("has")
        return await self.contract.has(self, *paths)

    async def to_json(self) -> dict:
        self._require_loaded("to_json")
        return await self.contract.to_json(self)

    async def size(self) -> int:
        self._require_loaded("size")
        return await self.contract.size(self)

    async def view(self) -> ConfigView:
        return ConfigView(copy.deepcopy(await self.to_json()))

    # --- Writes ---

    async def _snapshot(self) -> dict:
        return copy.deepcopy(await self.contract.to_json(self) or {})

    async def _commit(self, snapshot: dict, validated: dict, operation: str, persist):
        self.store.set("data", validated)
        try:
            return await persist()
        except Exception as e:
            self._rollback(snapshot, operation, e)
            raise

    async def set(self, path: str, value: Any, description: str | None = None) -> None:
        self._require_loaded("set")
        self._require_path(path)

        if self.multimode and len(split_path(path)) == 1:
            previous = await self.contract.get(self, path)
            if previous is not None:
                value = await self.hooks.arun("update", value, copy.deepcopy(previous))

        snapshot = await self._snapshot()
        validated = self._candidate(snapshot, path, lambda tree: set_property(tree, path, value))
        stored = get_property(validated, path)
        await self._commit(
            snapshot,
            validated,
            "set",
            lambda: self.contract.set(self, path, stored, description),
        )
        logger.debug("Set value", path=path)

    async def insert(self, path: str, partial: dict) -> None:
        self._require_loaded("insert")
        target = await self.contract.get(self, path)
        await self.set(path, merge_partial(path, target, partial))

    async def inject(self, data: dict) -> None:
        if not self.loaded:
            await self.contract.inject(self, data)
            return

        snapshot = await self._snapshot()
        await self.contract.inject(self, data)
        try:
            validated = self.validate(self.store.get("data", {}))
        except KfgValidationError:
            self.store.set("data", snapshot)
            raise
        self.store.set("data", validated)

    async def delete(self, path: str) -> None:
        self._require_loaded("delete")
        self._require_path(path)

        if self.multimode and len(split_path(path)) == 1:
            previous = await self.contract.get(self, path)
            if previous is not None:
                await self.hooks.arun("delete", copy.deepcopy(previous))

        snapshot = await self._snapshot()
        validated = self._candidate(snapshot, path, lambda tree: delete_property(tree, path))
        await self._commit(snapshot, validated, "delete", lambda: self.contract.delete(self, path))
        logger.debug("Deleted value", path=path)

    async def create(self, data: dict) -> dict:
        self._require_loaded("create")
        self._require_multimode("create")

        record = await self.hooks.arun("create", copy.deepcopy(data))
        record_id, record = self._new_record(record)
        snapshot = await self._snapshot()
        await self._commit(
            snapshot,
            {**snapshot, record_id: record},
            "create",
            lambda: self.contract.create(self, record),
        )
        logger.debug("Created record", id=record_id)
        return copy.deepcopy(record)
