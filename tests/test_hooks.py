"""Tests for the lifecycle hook pipeline."""

import pytest

from kfg.hooks import HookPipeline


class TestHookPipeline:
    def test_hooks_run_in_registration_order(self):
        pipeline = HookPipeline()
        pipeline.on("create", lambda data: {**data, "trail": data["trail"] + ["first"]})
        pipeline.on("create", lambda data: {**data, "trail": data["trail"] + ["second"]})

        assert pipeline.run("create", {"trail": []}) == {"trail": ["first", "second"]}

    def test_none_return_keeps_payload(self):
        seen = []
        pipeline = HookPipeline()
        pipeline.on("update", lambda new, old: seen.append((new, old)))

        assert pipeline.run("update", {"a": 2}, {"a": 1}) == {"a": 2}
        assert seen == [({"a": 2}, {"a": 1})]

    def test_ready_ignores_return_values(self):
        pipeline = HookPipeline()
        pipeline.on("ready", lambda engine: "replaced")
        assert pipeline.run("ready", "engine") == "engine"

    def test_unknown_event_rejected(self):
        with pytest.raises(ValueError, match="Unknown hook event"):
            HookPipeline().on("saved", lambda data: data)

    def test_sync_run_rejects_async_hooks(self):
        async def hook(data):
            return data

        pipeline = HookPipeline()
        pipeline.on("create", hook)
        with pytest.raises(TypeError, match="is async"):
            pipeline.run("create", {})

    @pytest.mark.asyncio
    async def test_arun_awaits_each_hook_in_order(self):
        order = []

        async def first(data):
            order.append("first")
            return {**data, "n": data["n"] + 1}

        def second(data):
            order.append("second")
            return {**data, "n": data["n"] * 10}

        pipeline = HookPipeline()
        pipeline.on("create", first)
        pipeline.on("create", second)

        assert await pipeline.arun("create", {"n": 1}) == {"n": 20}
        assert order == ["first", "second"]
