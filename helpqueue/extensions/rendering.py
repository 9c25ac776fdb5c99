"""
Queue presentation as an observer.

The core never draws anything. A RenderingExtension listens for every event
that leaves a queue's presentation stale and hands the renderer a fresh
QueueViewModel.
"""

import logging
from typing import Protocol

from helpqueue.extensions.base import BaseQueueExtension
from helpqueue.types.events import QueueEvent, QueueViewModel

logger = logging.getLogger(__name__)


class QueueRenderer(Protocol):
    """Draws one queue's state on the chat client."""

    async def render(self, view: QueueViewModel) -> None: ...


class RenderingExtension(BaseQueueExtension):
    """Re-render a queue after each change."""

    def __init__(self, renderer: QueueRenderer):
        self.renderer = renderer

    async def _render(self, event: QueueEvent) -> None:
        view = QueueViewModel.from_snapshot(event.queue)
        logger.debug(
            "Rendering queue",
            extra={"queue": view.queue_name, "event": event.event.value},
        )
        await self.renderer.render(view)

    on_queue_create = _render
    on_queue_open = _render
    on_queue_close = _render
    on_enqueue = _render
    on_dequeue = _render
    on_student_remove = _render
    on_remove_all_students = _render
