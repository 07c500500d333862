"""Ordered lifecycle hook chains for create/update/delete/ready events."""

import inspect
from collections.abc import Callable
from typing import Any

from loguru import logger

HOOK_EVENTS = ("create", "update", "delete", "ready")

type HookCallback = Callable[..., Any]


class HookPipeline:
    """Named-event, ordered callback chains.

    For every event except ``ready``, a hook that returns something other than
    None replaces the payload handed to the next hook. ``ready`` is a pure
    notification and its return values are ignored.
    """

    def __init__(self):
        self._hooks: dict[str, list[HookCallback]] = {}

    def on(self, event: str, fn: HookCallback) -> None:
        if event not in HOOK_EVENTS:
            raise ValueError(f"Unknown hook event '{event}', expected one of {HOOK_EVENTS}")
        self._hooks.setdefault(event, []).append(fn)

    def hooks(self, event: str) -> list[HookCallback]:
        return list(self._hooks.get(event, []))

    def run(self, event: str, payload: Any = None, *args: Any) -> Any:
        """Run the chain synchronously and return the final payload."""
        current = payload
        for hook in self.hooks(event):
            result = hook(current, *args)
            if inspect.isawaitable(result):
                raise TypeError(
                    f"Hook {getattr(hook, '__name__', hook)!r} for '{event}' is async; "
                    "use AsyncKfg with an async driver"
                )
            if result is not None and event != "ready":
                current = result
        logger.debug("Ran hooks", event=event, count=len(self._hooks.get(event, [])))
        return current

    async def arun(self, event: str, payload: Any = None, *args: Any) -> Any:
        """Run the chain, awaiting each hook before starting the next one."""
        current = payload
        for hook in self.hooks(event):
            result = hook(current, *args)
            if inspect.isawaitable(result):
                result = await result
            if result is not None and event != "ready":
                current = result
        logger.debug("Ran hooks", event=event, count=len(self._hooks.get(event, [])))
        return current
