"""
Notification bus for lifecycle events.

Every observer registered for an event is invoked concurrently and the bus
waits for all of them before returning. Observers only ever receive frozen
snapshots, so they can reach core state through public operations alone.

Observers run concurrently with each other: they must not assume exclusive
access to any state they share.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable

from helpqueue.constants import EventName
from helpqueue.observability.metrics import MetricsCollector, get_metrics
from helpqueue.types.events import LifecycleEvent
from helpqueue.types.results import FanOutReport, ObserverFailure

logger = logging.getLogger(__name__)

# Type alias for observer callbacks
Observer = Callable[[LifecycleEvent], Awaitable[None]]


def observer_name(observer: Observer) -> str:
    """Readable name of an observer for diagnostics."""
    owner = getattr(observer, "__self__", None)
    name = getattr(observer, "__qualname__", None) or repr(observer)
    if owner is not None and "." not in name:
        return f"{type(owner).__name__}.{name}"
    return name


class NotificationBus:
    """
    Fan-out of lifecycle events to registered observers.

    A failing observer is isolated: its exception is collected into the
    FanOutReport, sibling observers still run, and publish never raises
    on its behalf.
    """

    def __init__(self, name: str = "default", metrics: MetricsCollector | None = None):
        """
        Initialize the bus.

        Args:
            name: Label used in log records (usually the server id).
            metrics: Collector for failure counts. Defaults to the global one.
        """
        self.name = name
        self._observers: dict[EventName, list[Observer]] = defaultdict(list)
        self._metrics = metrics

    def subscribe(self, event: EventName, observer: Observer) -> None:
        """Register an observer for an event."""
        self._observers[event].append(observer)

    def unsubscribe(self, event: EventName, observer: Observer) -> bool:
        """
        Remove an observer from an event.

        Returns:
            True if the observer was registered.
        """
        observers = self._observers.get(event, [])
        if observer in observers:
            observers.remove(observer)
            return True
        return False

    def observers(self, event: EventName) -> tuple[Observer, ...]:
        """Observers currently registered for an event."""
        return tuple(self._observers.get(event, ()))

    def clear(self) -> None:
        """Drop every registration."""
        self._observers.clear()

    async def publish(self, event: EventName, payload: LifecycleEvent) -> FanOutReport:
        """
        Deliver an event to every registered observer concurrently.

        Args:
            event: The event name.
            payload: Frozen event snapshot.

        Returns:
            FanOutReport listing observers that raised.
        """
        # Copy so observers (un)subscribing mid-flight do not affect this round
        observers = self.observers(event)
        if not observers:
            return FanOutReport(event=event, delivered=0)

        results = await asyncio.gather(
            *(self._deliver(observer, payload) for observer in observers),
            return_exceptions=True,
        )

        failures: list[ObserverFailure] = []
        for observer, result in zip(observers, results):
            if isinstance(result, BaseException):
                failure = ObserverFailure(
                    event=event,
                    observer=observer_name(observer),
                    error=result,
                )
                logger.warning(
                    "Observer failed",
                    extra={
                        "bus": self.name,
                        "event": event.value,
                        "observer": failure.observer,
                        "error": repr(result),
                    },
                )
                failures.append(failure)

        if failures:
            metrics = self._metrics or get_metrics()
            metrics.record_observer_failure(event.value, len(failures))

        return FanOutReport(
            event=event,
            delivered=len(observers),
            failures=tuple(failures),
        )

    @staticmethod
    async def _deliver(observer: Observer, payload: LifecycleEvent) -> None:
        # Wrapped so a synchronous raise inside the call is collected too
        await observer(payload)
