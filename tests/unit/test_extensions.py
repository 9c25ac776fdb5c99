"""
Unit tests for the built-in extensions.
"""

import json

import pytest

from helpqueue.api.websocket import EventStreamExtension, WebSocketManager
from helpqueue.api.main import default_extensions
from helpqueue.core.registry import ServerRegistry
from helpqueue.core.server import AttendingServer
from helpqueue.extensions.metrics import MetricsExtension
from helpqueue.extensions.rendering import RenderingExtension
from helpqueue.observability.metrics import MetricsCollector
from helpqueue.types.events import QueueViewModel
from helpqueue.types.members import Member


class FakeRenderer:
    def __init__(self):
        self.views: list[QueueViewModel] = []

    async def render(self, view: QueueViewModel) -> None:
        self.views.append(view)


class FakeWebSocket:
    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail
        self.close_code: int | None = None

    async def accept(self) -> None:
        pass

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000) -> None:
        self.close_code = code


def sample(metrics: MetricsCollector, name: str, **labels) -> float | None:
    return metrics._registry.get_sample_value(name, labels)


class TestRenderingExtension:
    """Tests for queue rendering on state changes."""

    @pytest.mark.asyncio
    async def test_renders_after_each_change(self, clock, math_helper: Member, students):
        renderer = FakeRenderer()
        server = await AttendingServer.create(
            "s1", "S", queue_channels=["Math"], extensions=[RenderingExtension(renderer)], clock=clock
        )

        await server.open_all(math_helper)
        await server.enqueue(students[0], "Math")

        latest = renderer.views[-1]
        assert len(renderer.views) == 3
        assert latest.queue_name == "Math"
        assert latest.is_open is True
        assert latest.helper_ids == (math_helper.id,)
        assert latest.requester_display_names == (students[0].display_name,)

    @pytest.mark.asyncio
    async def test_closed_queue_has_no_helper_ids(self, clock, math_helper: Member):
        renderer = FakeRenderer()
        server = await AttendingServer.create(
            "s1", "S", queue_channels=["Math"], extensions=[RenderingExtension(renderer)], clock=clock
        )
        await server.open_all(math_helper)

        await server.close_all(math_helper)

        assert renderer.views[-1].helper_ids == ()
        assert renderer.views[-1].is_open is False

    @pytest.mark.asyncio
    async def test_delete_is_not_rendered(self, clock):
        renderer = FakeRenderer()
        server = await AttendingServer.create(
            "s1", "S", queue_channels=["Math"], extensions=[RenderingExtension(renderer)], clock=clock
        )
        before = len(renderer.views)

        await server.delete_queue("Math")

        assert len(renderer.views) == before


class TestMetricsExtension:
    """Tests for metrics recorded from lifecycle events."""

    @pytest.mark.asyncio
    async def test_requester_flow(self, clock, metrics: MetricsCollector, math_helper: Member, students):
        server = await AttendingServer.create(
            "s1", "S", queue_channels=["Math"], extensions=[MetricsExtension(metrics)], clock=clock
        )
        await server.open_all(math_helper)
        for s in students[:3]:
            await server.enqueue(s, "Math")
        await server.dequeue_next(math_helper)
        await server.remove_requester(students[1], "Math")
        await server.clear_queue("Math")

        labels = {"server_id": "s1", "queue": "Math"}
        assert sample(metrics, "requesters_enqueued_total", **labels) == 3
        assert sample(metrics, "requesters_dequeued_total", **labels) == 1
        assert sample(metrics, "requesters_removed_total", reason="leave", **labels) == 1
        assert sample(metrics, "requesters_removed_total", reason="clear", **labels) == 1
        assert sample(metrics, "help_queue_depth", **labels) == 0

    @pytest.mark.asyncio
    async def test_help_session_recorded(self, clock, metrics: MetricsCollector, math_helper: Member):
        server = await AttendingServer.create(
            "s1", "S", queue_channels=["Math"], extensions=[MetricsExtension(metrics)], clock=clock
        )
        await server.open_all(math_helper)
        clock.advance(120)

        await server.close_all(math_helper)

        assert sample(metrics, "help_session_duration_seconds_count", server_id="s1") == 1
        assert sample(metrics, "help_session_duration_seconds_sum", server_id="s1") == 120

    @pytest.mark.asyncio
    async def test_deleted_queue_depth_removed(self, clock, metrics: MetricsCollector):
        server = await AttendingServer.create(
            "s1", "S", queue_channels=["Math"], extensions=[MetricsExtension(metrics)], clock=clock
        )
        assert sample(metrics, "help_queue_depth", server_id="s1", queue="Math") == 0

        await server.delete_queue("Math")

        assert sample(metrics, "help_queue_depth", server_id="s1", queue="Math") is None


class TestEventStreamExtension:
    """Tests for forwarding events to WebSocket clients."""

    @pytest.mark.asyncio
    async def test_events_reach_clients_of_the_server(self, clock, math_helper: Member):
        manager = WebSocketManager()
        watcher, other = FakeWebSocket(), FakeWebSocket()
        await manager.connect(watcher, "s1")
        await manager.connect(other, "s2")
        server = await AttendingServer.create(
            "s1", "S", queue_channels=["Math"], extensions=[EventStreamExtension(manager)], clock=clock
        )

        await server.open_all(math_helper)

        types = [m["type"] for m in watcher.sent]
        assert types == ["QueueCreate", "ServerInit", "QueueOpen", "HelperStart"]
        assert watcher.sent[2]["payload"]["queue"]["name"] == "Math"
        assert other.sent == []

    @pytest.mark.asyncio
    async def test_broken_connection_is_dropped(self, clock):
        manager = WebSocketManager()
        await manager.connect(FakeWebSocket(fail=True), "s1")

        await AttendingServer.create(
            "s1", "S", queue_channels=["Math"], extensions=[EventStreamExtension(manager)], clock=clock
        )

        assert manager.get_connection_count("s1") == 0

    @pytest.mark.asyncio
    async def test_leaving_closes_the_servers_sockets(self):
        manager = WebSocketManager()
        registry = ServerRegistry(extension_factory=lambda _: [EventStreamExtension(manager)])
        await registry.join("s1", "One", ["Math"])
        await registry.join("s2", "Two", ["Math"])
        leaving, staying = FakeWebSocket(), FakeWebSocket()
        await manager.connect(leaving, "s1")
        await manager.connect(staying, "s2")

        await registry.leave("s1")

        assert leaving.sent[-1]["type"] == "ServerDelete"
        assert leaving.close_code == 1001
        assert manager.get_connection_count("s1") == 0
        assert "s1" not in manager._connections
        assert staying.close_code is None
        assert manager.get_connection_count("s2") == 1

    @pytest.mark.asyncio
    async def test_disconnect_forgets_empty_servers(self):
        manager = WebSocketManager()
        connection = await manager.connect(FakeWebSocket(), "s1")

        await manager.disconnect(connection)

        assert manager._connections == {}

    @pytest.mark.asyncio
    async def test_default_extensions_stream_to_given_manager(self):
        manager = WebSocketManager()
        registry = ServerRegistry(extension_factory=default_extensions(manager))
        watcher = FakeWebSocket()
        await manager.connect(watcher, "s1")

        await registry.join("s1", "One", ["Math"])
        await registry.leave("s1")

        assert [m["type"] for m in watcher.sent] == ["QueueCreate", "ServerInit", "ServerDelete"]
        assert watcher.close_code == 1001
