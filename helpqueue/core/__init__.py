"""Core help queue state: queues, servers and the notification bus."""

from helpqueue.core.bus import NotificationBus, Observer
from helpqueue.core.queue import HelpQueue
from helpqueue.core.registry import ServerRegistry
from helpqueue.core.server import AttendingServer, Messenger

__all__ = [
    "AttendingServer",
    "HelpQueue",
    "Messenger",
    "NotificationBus",
    "Observer",
    "ServerRegistry",
]
