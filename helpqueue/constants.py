"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class QueueState(StrEnum):
    """
    Help queue lifecycle states.

    State transitions:
    - CLOSED -> OPEN (a helper opens the queue)
    - OPEN -> CLOSED (the hosting helper closes the queue)

    Closing never clears the waiting list.
    """

    CLOSED = "closed"
    OPEN = "open"


class EventName(StrEnum):
    """Lifecycle events fanned out to registered extensions."""

    # Queue level
    QUEUE_CREATE = "QueueCreate"
    QUEUE_OPEN = "QueueOpen"
    QUEUE_CLOSE = "QueueClose"
    ENQUEUE = "Enqueue"
    DEQUEUE = "Dequeue"
    STUDENT_REMOVE = "StudentRemove"
    REMOVE_ALL = "RemoveAll"
    QUEUE_DELETE = "QueueDelete"

    # Server level
    SERVER_INIT = "ServerInit"
    DEQUEUE_FIRST = "DequeueFirst"
    HELPER_START = "HelperStart"
    HELPER_STOP = "HelperStop"
    PERIODIC_UPDATE = "PeriodicUpdate"
    SERVER_DELETE = "ServerDelete"


# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_QUEUE_DEPTH = "help_queue_depth"
METRIC_REQUESTERS_ENQUEUED = "requesters_enqueued_total"
METRIC_REQUESTERS_DEQUEUED = "requesters_dequeued_total"
METRIC_REQUESTERS_REMOVED = "requesters_removed_total"
METRIC_HELP_SESSION_DURATION = "help_session_duration_seconds"
METRIC_OBSERVER_FAILURES = "observer_failures_total"
METRIC_COMMANDS = "commands_total"
METRIC_COMMAND_LATENCY = "command_latency_seconds"

# Trace span names
SPAN_DISPATCH_COMMAND = "dispatch_command"
SPAN_PERIODIC_UPDATE = "periodic_update"
SPAN_ATTRIBUTE_PREFIX = "helpqueue"

# Log fields copied onto the active span
SPAN_LOG_FIELDS = ("server_id", "queue", "helper_id", "command")

# Endpoints kept out of request tracing
UNTRACED_PATHS = ("/health", "/ready", "/live", "/metrics")

# WebSocket message types
WS_MESSAGE_PONG = "pong"
WS_MESSAGE_ERROR = "error"

# Roles checked by the command layer
ADMIN_ROLE = "Bot Admin"
STAFF_ROLE = "Staff"
