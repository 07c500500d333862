"""Shared fixtures for kfg tests."""

import copy

import pytest

from kfg import c
from kfg.driver import (
    Driver,
    as_async,
    cached_get,
    cached_has,
    cached_inject,
    cached_size,
    cached_to_json,
)


class MemoryBackend:
    """Records driver calls and can be told to fail one operation."""

    def __init__(self, initial: dict | None = None):
        self.initial = initial or {}
        self.calls: list[tuple[str, dict]] = []
        self.fail_on: str | None = None

    def mount(self, engine, opts):
        self.calls.append(("mount", opts))
        return copy.deepcopy(self.initial)

    def recorder(self, name: str):
        def hook(engine, opts):
            self.calls.append((name, copy.deepcopy(opts)))
            if self.fail_on == name:
                raise OSError(f"{name} failed")

        return hook

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def driver(self) -> Driver:
        return Driver(
            identify="memory-driver",
            config={"path": "memory"},
            on_mount=self.mount,
            on_get=cached_get,
            on_has=cached_has,
            on_to_json=cached_to_json,
            on_size=cached_size,
            on_inject=cached_inject,
            on_update=self.recorder("update"),
            on_delete=self.recorder("delete"),
            on_create=self.recorder("create"),
            save=self.recorder("save"),
        )

    def async_driver(self) -> Driver:
        return Driver(
            identify="async-memory-driver",
            is_async=True,
            config={"path": "memory"},
            on_mount=as_async(self.mount),
            on_get=as_async(cached_get),
            on_has=as_async(cached_has),
            on_to_json=as_async(cached_to_json),
            on_size=as_async(cached_size),
            on_inject=as_async(cached_inject),
            on_update=as_async(self.recorder("update")),
            on_delete=as_async(self.recorder("delete")),
            on_create=as_async(self.recorder("create")),
            save=as_async(self.recorder("save")),
        )


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def app_schema():
    return {
        "app": {
            "host": c.string(default="localhost"),
            "port": c.number(default=3000),
            "debug": c.boolean(default=False),
        },
        "server": {
            "host": c.string(default="x"),
            "port": c.number(default=80),
        },
    }


@pytest.fixture
def user_schema():
    return {
        "id": c.string(),
        "name": c.string(),
        "age": c.number(default=18),
        "role": c.enum(["admin", "member"], default="member"),
    }
