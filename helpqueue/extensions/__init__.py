"""
Extensions observe queue and server lifecycle events.
"""

from helpqueue.extensions.base import (
    BaseQueueExtension,
    BaseServerExtension,
    attach_extension,
    detach_extension,
)
from helpqueue.extensions.metrics import MetricsExtension
from helpqueue.extensions.rendering import QueueRenderer, RenderingExtension

__all__ = [
    "BaseQueueExtension",
    "BaseServerExtension",
    "MetricsExtension",
    "QueueRenderer",
    "RenderingExtension",
    "attach_extension",
    "detach_extension",
]
