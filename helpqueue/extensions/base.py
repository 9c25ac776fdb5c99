"""
Extension base classes and registration.

Extensions are observers of lifecycle events. They override the hooks they
care about; attach_extension subscribes only those. Hooks receive frozen
event snapshots and run concurrently with other extensions, so an extension
must not assume exclusive access to state it shares with others.

Example:
    class Greeter(BaseQueueExtension):
        async def on_enqueue(self, event: QueueEvent) -> None:
            ...

    attach_extension(bus, Greeter())
"""

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

from helpqueue.constants import EventName
from helpqueue.types.backup import ServerBackup
from helpqueue.types.events import QueueEvent, ServerEvent

if TYPE_CHECKING:
    from helpqueue.core.bus import NotificationBus

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

QUEUE_HOOKS: dict[EventName, str] = {
    EventName.QUEUE_CREATE: "on_queue_create",
    EventName.QUEUE_OPEN: "on_queue_open",
    EventName.QUEUE_CLOSE: "on_queue_close",
    EventName.ENQUEUE: "on_enqueue",
    EventName.DEQUEUE: "on_dequeue",
    EventName.STUDENT_REMOVE: "on_student_remove",
    EventName.REMOVE_ALL: "on_remove_all_students",
    EventName.QUEUE_DELETE: "on_queue_delete",
}

SERVER_HOOKS: dict[EventName, str] = {
    EventName.SERVER_INIT: "on_server_init",
    EventName.DEQUEUE_FIRST: "on_dequeue_first",
    EventName.HELPER_START: "on_helper_start",
    EventName.HELPER_STOP: "on_helper_stop",
    EventName.PERIODIC_UPDATE: "on_server_periodic_update",
    EventName.SERVER_DELETE: "on_server_delete",
}


def default_hook(func: F) -> F:
    """Mark a base-class hook as a no-op so it is never subscribed."""
    func._default_hook = True  # type: ignore[attr-defined]
    return func


class BaseQueueExtension:
    """
    Boilerplate base class of queue level extensions.
    Override the events that you want to observe.
    """

    @default_hook
    async def on_queue_create(self, event: QueueEvent) -> None:
        pass

    @default_hook
    async def on_queue_open(self, event: QueueEvent) -> None:
        pass

    @default_hook
    async def on_queue_close(self, event: QueueEvent) -> None:
        pass

    @default_hook
    async def on_enqueue(self, event: QueueEvent) -> None:
        pass

    @default_hook
    async def on_dequeue(self, event: QueueEvent) -> None:
        pass

    @default_hook
    async def on_student_remove(self, event: QueueEvent) -> None:
        pass

    @default_hook
    async def on_remove_all_students(self, event: QueueEvent) -> None:
        pass

    @default_hook
    async def on_queue_delete(self, event: QueueEvent) -> None:
        pass


class BaseServerExtension:
    """
    Boilerplate base class of server level extensions.
    Override the events that you want to observe.
    """

    @default_hook
    async def on_server_init(self, event: ServerEvent) -> None:
        pass

    @default_hook
    async def on_dequeue_first(self, event: ServerEvent) -> None:
        pass

    @default_hook
    async def on_helper_start(self, event: ServerEvent) -> None:
        pass

    @default_hook
    async def on_helper_stop(self, event: ServerEvent) -> None:
        pass

    @default_hook
    async def on_server_periodic_update(self, event: ServerEvent) -> None:
        pass

    @default_hook
    async def on_server_delete(self, event: ServerEvent) -> None:
        pass

    async def load_external_server_data(self, server_id: str) -> ServerBackup | None:
        """
        Supply prior state for a server being constructed.

        Returns:
            A backup, or None if this extension has nothing to offer.
        """
        return None


def _overrides(extension: object, hook: str) -> bool:
    func = getattr(type(extension), hook, None)
    return func is not None and not getattr(func, "_default_hook", False)


def attach_extension(bus: "NotificationBus", extension: object) -> list[EventName]:
    """
    Subscribe every hook an extension overrides.

    Args:
        bus: The bus to register on.
        extension: Any object implementing queue and/or server hooks.

    Returns:
        The events the extension was subscribed to.
    """
    subscribed: list[EventName] = []
    for event, hook in (QUEUE_HOOKS | SERVER_HOOKS).items():
        if _overrides(extension, hook):
            bus.subscribe(event, getattr(extension, hook))
            subscribed.append(event)

    logger.info(
        "Attached extension",
        extra={
            "bus": bus.name,
            "extension": type(extension).__name__,
            "events": [e.value for e in subscribed],
        },
    )
    return subscribed


def detach_extension(bus: "NotificationBus", extension: object) -> None:
    """Remove every hook of an extension from the bus."""
    for event, hook in (QUEUE_HOOKS | SERVER_HOOKS).items():
        if _overrides(extension, hook):
            bus.unsubscribe(event, getattr(extension, hook))
