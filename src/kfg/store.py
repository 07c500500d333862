"""Per-engine keyed cache for driver state."""

from typing import Any

from kfg.utils import deep_merge


class KfgStore:
    """Private key/value map owned by one engine.

    Drivers keep transient state here (open handles, pending write queues,
    last-access timestamps) next to the cached configuration data under the
    ``"data"`` key. A store is never shared between engines.
    """

    def __init__(self):
        self._map: dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        value = self._map.get(key)
        return default if value is None else value

    def set(self, key: str, value: Any) -> None:
        self._map[key] = value

    def delete(self, key: str) -> None:
        self._map.pop(key, None)

    def merge(self, key: str, value: dict) -> None:
        """Deep-merge ``value`` into the dict stored at ``key``."""
        self.set(key, deep_merge(self.get(key, {}), value))

    def insert(self, key: str, value: dict) -> None:
        """Shallow-merge ``value`` into the dict stored at ``key``."""
        current = self.get(key, {})
        current.update(value)
        self.set(key, current)

    def __contains__(self, key: str) -> bool:
        return self._map.get(key) is not None

    def clear(self) -> None:
        self._map.clear()
