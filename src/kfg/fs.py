"""File-backed entity collections and the relations between them.

A ``KfgFS`` maps entity ids to files through a path function and opens each
file as its own engine. Schema leaves built with ``many`` and ``join`` point
at another ``KfgFS``; only ids are stored, and the related entities are opened
when the relation is read.

Example:
    users = KfgFS(json_driver(), {"name": c.string()})
    users.init(lambda id: f"data/users/{id}.json")

    posts = KfgFS(json_driver(), {
        "title": c.string(),
        "author_id": c.string(),
        "author": join(users, fk="author_id"),
        "editors": many(users),
    })
    posts.init(lambda id: f"data/posts/{id}.json")

    post = posts.file("1")
    post.get_join("author").get("name")
"""

import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger

from kfg.driver import Driver
from kfg.engine import AsyncKfg, BaseKfg, Kfg
from kfg.errors import DriverCapabilityError, StructuralError
from kfg.schema.fields import Leaf, Relation, SchemaDefinition


def many(target: "KfgFS", default: list | None = None, **options: Any) -> Leaf:
    """Leaf holding a list of ids in ``target``."""
    return Leaf(
        "many",
        default=default if default is not None else [],
        relation=Relation("many", target),
        **options,
    )


def join(target: "KfgFS", fk: str, **options: Any) -> Leaf:
    """Leaf resolving the id stored in field ``fk`` against ``target``."""
    return Leaf("join", relation=Relation("join", target, fk), **options)


def _relation(engine: BaseKfg, path: str, kind: str) -> Relation:
    node = engine.schematic(path)
    relation = node.relation if isinstance(node, Leaf) else None
    if relation is None or relation.type != kind:
        raise StructuralError(f"[KfgFS] '{path}' is not a {kind}-relation field.")
    return relation


class FileKfg(Kfg):
    """Engine bound to one entity file."""

    def __init__(self, driver: Driver, schema: SchemaDefinition, file_path: Path | str):
        self.file_path = Path(file_path)
        super().__init__(driver.clone(path=str(self.file_path)), schema)

    def __str__(self) -> str:
        return str(self.file_path)

    def get_many(self, path: str) -> list["FileKfg"] | None:
        """Open every entity whose id is listed at ``path``."""
        relation = _relation(self, path, "many")
        ids = self.get(path)
        if not isinstance(ids, list):
            return None
        return [relation.target.file(entity_id) for entity_id in ids]

    def get_join(self, path: str) -> "FileKfg | None":
        """Open the entity referenced by the relation's foreign key."""
        relation = _relation(self, path, "join")
        foreign_key = self.get(relation.fk)
        if not foreign_key:
            return None
        return relation.target.file(foreign_key)


class AsyncFileKfg(AsyncKfg):
    """Async engine bound to one entity file."""

    def __init__(self, driver: Driver, schema: SchemaDefinition, file_path: Path | str):
        self.file_path = Path(file_path)
        super().__init__(driver.clone(path=str(self.file_path)), schema)

    def __str__(self) -> str:
        return str(self.file_path)

    async def get_many(self, path: str) -> list["AsyncFileKfg"] | None:
        relation = _relation(self, path, "many")
        ids = await self.get(path)
        if not isinstance(ids, list):
            return None
        # Opened one after another, in list order
        return [await relation.target.open(entity_id) for entity_id in ids]

    async def get_join(self, path: str) -> "AsyncFileKfg | None":
        relation = _relation(self, path, "join")
        foreign_key = await self.get(relation.fk)
        if not foreign_key:
            return None
        return await relation.target.open(foreign_key)


class KfgFS:
    """A collection of entities, one file per id.

    ``create`` and ``to_json`` return awaitables when the driver is async.
    """

    def __init__(
        self,
        driver: Driver,
        schema: SchemaDefinition,
        only_importants: bool = False,
        **config: Any,
    ):
        self.driver = driver
        self.schema = schema
        self.only_importants = only_importants
        self.config = config
        self._path_fn: Callable[[str], str | Path] | None = None

    @property
    def is_async(self) -> bool:
        return self.driver.is_async

    def init(self, path_fn: Callable[[str], str | Path]) -> "KfgFS":
        self._path_fn = path_fn
        return self

    def path(self, entity_id: str) -> Path:
        if self._path_fn is None:
            raise StructuralError("[KfgFS] Not initialized. Call init() first.")
        return Path(self._path_fn(str(entity_id)))

    def _options(self) -> dict:
        return {**self.config, "only_importants": self.only_importants}

    def _require_sync(self, operation: str) -> None:
        if self.is_async:
            raise DriverCapabilityError(self.driver.identify, f"{operation}(); use await open()")

    def _require_async(self, operation: str) -> None:
        if not self.is_async:
            raise DriverCapabilityError(self.driver.identify, f"{operation}(); use file()")

    def _require_absent(self, entity_id: str) -> None:
        if self.exists(entity_id):
            raise StructuralError(f"[KfgFS] Entity '{entity_id}' already exists at {self.path(entity_id)}")

    def file(self, entity_id: str) -> FileKfg:
        """Open and load the entity ``entity_id``."""
        self._require_sync("file")
        entity = FileKfg(self.driver, self.schema, self.path(entity_id))
        entity.mount(self._options())
        return entity

    async def open(self, entity_id: str) -> AsyncFileKfg:
        """Open and load the entity ``entity_id`` with an async driver."""
        self._require_async("open")
        entity = AsyncFileKfg(self.driver, self.schema, self.path(entity_id))
        await entity.mount(self._options())
        return entity

    def exists(self, entity_id: str) -> bool:
        return self.path(entity_id).exists()

    def create(self, entity_id: str, data: dict | None = None):
        """Write a new entity file from ``data`` plus schema defaults.

        Raises:
            StructuralError: If the entity already exists.
            KfgValidationError: If ``data`` does not satisfy the schema.
        """
        if self.is_async:
            return self._acreate(entity_id, data)

        self._require_absent(entity_id)
        entity = FileKfg(self.driver, self.schema, self.path(entity_id))
        entity.inject(data or {})
        entity.mount(self._options())
        entity.save()
        logger.info("Created entity", id=entity_id, path=str(entity.file_path))
        return entity

    async def _acreate(self, entity_id: str, data: dict | None) -> AsyncFileKfg:
        self._require_absent(entity_id)
        entity = AsyncFileKfg(self.driver, self.schema, self.path(entity_id))
        await entity.inject(data or {})
        await entity.mount(self._options())
        await entity.save()
        logger.info("Created entity", id=entity_id, path=str(entity.file_path))
        return entity

    def delete(self, entity_id: str) -> None:
        path = self.path(entity_id)
        path.unlink(missing_ok=True)
        logger.info("Deleted entity", id=entity_id, path=str(path))

    def copy(self, from_id: str, to_id: str) -> None:
        source, target = self.path(from_id), self.path(to_id)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        logger.info("Copied entity", source=str(source), target=str(target))

    def to_json(self, entity_id: str):
        if self.is_async:
            return self._ato_json(entity_id)
        return self.file(entity_id).to_json()

    async def _ato_json(self, entity_id: str) -> dict:
        entity = await self.open(entity_id)
        return await entity.to_json()
