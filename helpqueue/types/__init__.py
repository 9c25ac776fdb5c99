"""
Type definitions for the help queue coordinator.
Contains input/output type definitions, grouped by module.
"""

from helpqueue.types.api import (
    CommandReply,
    ErrorResponse,
    HealthResponse,
    JoinServerRequest,
    MemberModel,
    QueueListResponse,
    ServerResponse,
)
from helpqueue.types.backup import QueueBackup, ServerBackup
from helpqueue.types.events import (
    HelperSnapshot,
    LifecycleEvent,
    MemberSnapshot,
    QueueEvent,
    QueueSnapshot,
    QueueViewModel,
    RequesterSnapshot,
    ServerEvent,
    WebSocketMessage,
)
from helpqueue.types.members import (
    HelperSession,
    Member,
    QueueChannel,
    Requester,
    utcnow,
)
from helpqueue.types.results import (
    AnnounceResult,
    Announcement,
    BulkResult,
    FanOutReport,
    ObserverFailure,
    Outcome,
)

__all__ = [
    # API types
    "CommandReply",
    "ErrorResponse",
    "HealthResponse",
    "JoinServerRequest",
    "MemberModel",
    "QueueListResponse",
    "ServerResponse",
    # Backup types
    "QueueBackup",
    "ServerBackup",
    # Event types
    "HelperSnapshot",
    "LifecycleEvent",
    "MemberSnapshot",
    "QueueEvent",
    "QueueSnapshot",
    "QueueViewModel",
    "RequesterSnapshot",
    "ServerEvent",
    "WebSocketMessage",
    # Member types
    "HelperSession",
    "Member",
    "QueueChannel",
    "Requester",
    "utcnow",
    # Result types
    "AnnounceResult",
    "Announcement",
    "BulkResult",
    "FanOutReport",
    "ObserverFailure",
    "Outcome",
]
