"""
Prometheus metrics fed by lifecycle events.
"""

from helpqueue.extensions.base import BaseQueueExtension, BaseServerExtension
from helpqueue.observability.metrics import MetricsCollector, get_metrics
from helpqueue.types.events import QueueEvent, ServerEvent


class MetricsExtension(BaseQueueExtension, BaseServerExtension):
    """
    Records queue depth, requester flow and help session lengths.
    """

    def __init__(self, metrics: MetricsCollector | None = None):
        self.metrics = metrics or get_metrics()

    def _depth(self, event: QueueEvent) -> None:
        self.metrics.update_queue_depth(event.server_id, event.queue.name, event.queue.length)

    async def on_queue_create(self, event: QueueEvent) -> None:
        self._depth(event)

    async def on_enqueue(self, event: QueueEvent) -> None:
        self.metrics.record_enqueued(event.server_id, event.queue.name)
        self._depth(event)

    async def on_dequeue(self, event: QueueEvent) -> None:
        self.metrics.record_dequeued(event.server_id, event.queue.name)
        self._depth(event)

    async def on_student_remove(self, event: QueueEvent) -> None:
        self.metrics.record_removed(event.server_id, event.queue.name, "leave")
        self._depth(event)

    async def on_remove_all_students(self, event: QueueEvent) -> None:
        self.metrics.record_removed(
            event.server_id, event.queue.name, "clear", count=len(event.requesters)
        )
        self._depth(event)

    async def on_queue_delete(self, event: QueueEvent) -> None:
        self.metrics.remove_queue(event.server_id, event.queue.name)

    async def on_helper_stop(self, event: ServerEvent) -> None:
        if event.helper is not None and event.helper.duration_seconds is not None:
            self.metrics.record_help_session(event.server_id, event.helper.duration_seconds)

    async def on_server_delete(self, event: ServerEvent) -> None:
        for queue in event.queues:
            self.metrics.remove_queue(event.server_id, queue.name)
