"""
Unit tests for the server registry and the periodic updater.
"""

import asyncio

import pytest

from helpqueue.core.registry import ServerRegistry
from helpqueue.extensions.base import BaseServerExtension
from helpqueue.scheduler.main import PeriodicUpdater


class TestServerRegistry:
    """Tests for joining and leaving communities."""

    @pytest.mark.asyncio
    async def test_join_builds_server(self, registry: ServerRegistry):
        server = await registry.join("s1", "One", ["Math"])

        assert "s1" in registry
        assert len(registry) == 1
        assert registry.get("s1") is server
        assert server.queue_names == ["Math"]

    @pytest.mark.asyncio
    async def test_join_twice_returns_existing(self, registry: ServerRegistry):
        first = await registry.join("s1", "One", ["Math"])
        second = await registry.join("s1", "One again", ["Physics"])

        assert second is first
        assert second.queue_names == ["Math"]

    @pytest.mark.asyncio
    async def test_extension_factory_runs_per_server(self, recorder):
        calls: list[str] = []

        def factory(server_id: str) -> list[object]:
            calls.append(server_id)
            return [recorder]

        registry = ServerRegistry(extension_factory=factory)
        await registry.join("s1", "One", ["Math"])

        assert calls == ["s1"]
        assert recorder.names() == ["QueueCreate", "ServerInit"]

    @pytest.mark.asyncio
    async def test_leave_shuts_down(self, recorder):
        registry = ServerRegistry(extension_factory=lambda _: [recorder])
        await registry.join("s1", "One")
        recorder.clear()

        assert await registry.leave("s1") is True
        assert await registry.leave("s1") is False
        assert "s1" not in registry
        assert recorder.names() == ["ServerDelete"]

    @pytest.mark.asyncio
    async def test_slow_init_does_not_block_other_joins(self):
        """A slow ServerInit hook delays only its own server."""
        gate = asyncio.Event()

        class SlowInit(BaseServerExtension):
            async def on_server_init(self, event):
                if event.server_id == "slow":
                    await gate.wait()

        registry = ServerRegistry(extension_factory=lambda _: [SlowInit()])
        slow = asyncio.create_task(registry.join("slow", "Slow"))
        await asyncio.sleep(0)

        fast = await asyncio.wait_for(registry.join("fast", "Fast"), timeout=1)

        assert fast.server_id == "fast"
        assert "slow" not in registry
        gate.set()
        await asyncio.wait_for(slow, timeout=1)
        assert "slow" in registry

    @pytest.mark.asyncio
    async def test_hook_may_join_another_server(self):
        registry = ServerRegistry()

        class Chained(BaseServerExtension):
            async def on_server_init(self, event):
                await registry.join("b", "B")

        registry._extension_factory = lambda server_id: [Chained()] if server_id == "a" else []

        await asyncio.wait_for(registry.join("a", "A"), timeout=1)

        assert "a" in registry
        assert "b" in registry

    @pytest.mark.asyncio
    async def test_concurrent_joins_share_one_server(self):
        gate = asyncio.Event()
        calls: list[str] = []

        class Gated(BaseServerExtension):
            async def on_server_init(self, event):
                await gate.wait()

        def factory(server_id: str) -> list[object]:
            calls.append(server_id)
            return [Gated()]

        registry = ServerRegistry(extension_factory=factory)
        first = asyncio.create_task(registry.join("s1", "One"))
        second = asyncio.create_task(registry.join("s1", "One"))
        await asyncio.sleep(0)
        gate.set()

        a, b = await asyncio.wait_for(asyncio.gather(first, second), timeout=1)

        assert a is b
        assert calls == ["s1"]

    @pytest.mark.asyncio
    async def test_failed_join_can_be_retried(self):
        class BrokenFactory:
            def __init__(self):
                self.fail = True

            def __call__(self, server_id: str) -> list[object]:
                if self.fail:
                    raise RuntimeError("extension config missing")
                return []

        factory = BrokenFactory()
        registry = ServerRegistry(extension_factory=factory)

        with pytest.raises(RuntimeError):
            await registry.join("s1", "One")
        factory.fail = False
        server = await registry.join("s1", "One")

        assert registry.get("s1") is server

    @pytest.mark.asyncio
    async def test_get_missing(self, registry: ServerRegistry):
        assert registry.get("nope") is None

    @pytest.mark.asyncio
    async def test_close_leaves_every_server(self, registry: ServerRegistry):
        await registry.join("s1", "One")
        await registry.join("s2", "Two")

        await registry.close()

        assert len(registry) == 0


class TestPeriodicUpdater:
    """Tests for the periodic update loop."""

    @pytest.mark.asyncio
    async def test_first_round_is_flagged(self, recorder):
        registry = ServerRegistry(extension_factory=lambda _: [recorder])
        await registry.join("s1", "One")
        recorder.clear()
        updater = PeriodicUpdater(registry, interval_seconds=60)

        await updater.run_once()
        await updater.run_once()

        assert recorder.names() == ["PeriodicUpdate", "PeriodicUpdate"]
        assert [e.is_first_call for e in recorder.events] == [True, False]

    @pytest.mark.asyncio
    async def test_run_once_counts_failures(self):
        class Broken:
            async def on_server_periodic_update(self, event):
                raise RuntimeError("calendar unreachable")

        registry = ServerRegistry(extension_factory=lambda _: [Broken()])
        await registry.join("s1", "One")
        await registry.join("s2", "Two")

        failures = await PeriodicUpdater(registry, interval_seconds=60).run_once()

        assert failures == 2

    @pytest.mark.asyncio
    async def test_stop_ends_loop(self, registry: ServerRegistry):
        updater = PeriodicUpdater(registry, interval_seconds=3600)
        task = asyncio.create_task(updater.start())
        await asyncio.sleep(0.01)

        await updater.stop()
        await asyncio.wait_for(task, timeout=1)

        assert not updater.running
