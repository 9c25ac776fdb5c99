"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import CollectorRegistry

from helpqueue.api.main import create_app
from helpqueue.constants import ADMIN_ROLE, STAFF_ROLE
from helpqueue.core.bus import NotificationBus
from helpqueue.core.registry import ServerRegistry
from helpqueue.core.server import AttendingServer
from helpqueue.extensions.base import BaseQueueExtension, BaseServerExtension
from helpqueue.observability.metrics import MetricsCollector
from helpqueue.types.events import LifecycleEvent, MemberSnapshot
from helpqueue.types.members import Member
from helpqueue.types.results import Announcement


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class RecordingExtension(BaseQueueExtension, BaseServerExtension):
    """Records every lifecycle event it observes."""

    def __init__(self):
        self.events: list[LifecycleEvent] = []

    async def _record(self, event: LifecycleEvent) -> None:
        self.events.append(event)

    on_queue_create = _record
    on_queue_open = _record
    on_queue_close = _record
    on_enqueue = _record
    on_dequeue = _record
    on_student_remove = _record
    on_remove_all_students = _record
    on_queue_delete = _record
    on_server_init = _record
    on_dequeue_first = _record
    on_helper_start = _record
    on_helper_stop = _record
    on_server_periodic_update = _record
    on_server_delete = _record

    def names(self) -> list[str]:
        return [e.event.value for e in self.events]

    def clear(self) -> None:
        self.events.clear()


class FakeMessenger:
    """Collects announcements; members listed in `unreachable` fail."""

    def __init__(self, unreachable: set[str] | None = None):
        self.sent: list[tuple[MemberSnapshot, Announcement]] = []
        self.unreachable = unreachable or set()

    async def send(self, recipient: MemberSnapshot, announcement: Announcement) -> None:
        if recipient.id in self.unreachable:
            raise ConnectionError(f"cannot reach {recipient.id}")
        self.sent.append((recipient, announcement))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def bus(metrics: MetricsCollector) -> NotificationBus:
    return NotificationBus(name="test", metrics=metrics)


@pytest.fixture
def recorder() -> RecordingExtension:
    return RecordingExtension()


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def math_helper() -> Member:
    """Staff member with the Math role."""
    return Member(id="helper-1", display_name="Ada", roles=frozenset({STAFF_ROLE, "Math"}))


@pytest.fixture
def physics_helper() -> Member:
    """Staff member with the Physics role."""
    return Member(id="helper-2", display_name="Emmy", roles=frozenset({STAFF_ROLE, "Physics"}))


@pytest.fixture
def admin() -> Member:
    return Member(id="admin-1", display_name="Root", roles=frozenset({ADMIN_ROLE}))


@pytest.fixture
def students() -> list[Member]:
    return [Member(id=f"student-{i}", display_name=f"Student {i}") for i in range(1, 6)]


@pytest_asyncio.fixture
async def server(
    clock: FakeClock,
    recorder: RecordingExtension,
    messenger: FakeMessenger,
) -> AttendingServer:
    """Server with closed Math and Physics queues and a recording extension."""
    return await AttendingServer.create(
        "server-1",
        "Office Hours",
        queue_channels=["Math", "Physics"],
        extensions=[recorder],
        messenger=messenger,
        clock=clock,
    )


@pytest.fixture
def registry() -> ServerRegistry:
    return ServerRegistry()


@pytest.fixture
def app(registry: ServerRegistry) -> FastAPI:
    """FastAPI app serving the test registry."""
    return create_app(registry)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
