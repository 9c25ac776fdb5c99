"""
Error types raised by the help queue core.

Errors are scoped to the entity that rejected the operation: a queue raises
QueueError (always carrying its name), a server raises ServerError.
"""

from enum import StrEnum


class QueueErrorKind(StrEnum):
    """Reasons a single queue rejects an operation."""

    ALREADY_OPEN = "already_open"
    NOT_HOSTING = "not_hosting"
    NOT_OPEN = "not_open"
    EMPTY = "empty"
    ALREADY_QUEUED = "already_queued"
    NOT_QUEUED = "not_queued"
    NOT_AUTHORIZED = "not_authorized"


class ServerErrorKind(StrEnum):
    """Reasons a server rejects an operation."""

    DUPLICATE_QUEUE = "duplicate_queue"
    QUEUE_NOT_FOUND = "queue_not_found"
    NOT_AUTHORIZED = "not_authorized"
    NOTHING_TO_SERVE = "nothing_to_serve"
    NOT_HOSTING = "not_hosting"


class HelpQueueError(Exception):
    """Base class for rejected core operations."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class QueueError(HelpQueueError):
    """Raised by a help queue when it rejects an operation."""

    def __init__(self, kind: QueueErrorKind, queue_name: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.queue_name = queue_name

    def __repr__(self) -> str:
        return f"QueueError({self.kind.value!r}, {self.queue_name!r}, {self.message!r})"


class ServerError(HelpQueueError):
    """Raised by an attending server when it rejects an operation."""

    def __init__(self, kind: ServerErrorKind, message: str):
        super().__init__(message)
        self.kind = kind

    def __repr__(self) -> str:
        return f"ServerError({self.kind.value!r}, {self.message!r})"


class ObserverError(ExceptionGroup):
    """
    Aggregate of observer failures collected during event fan-out.

    Only raised on request (see Outcome.raise_for_observers); the operation
    that triggered the fan-out has already been committed.
    """


class CommandErrorKind(StrEnum):
    """Reasons the command layer rejects a command before it reaches a server."""

    MISSING_ROLE = "missing_role"
    NO_QUEUES = "no_queues"
    UNKNOWN_COMMAND = "unknown_command"


class CommandError(HelpQueueError):
    """Raised by a command handler when the caller may not run it."""

    def __init__(self, kind: CommandErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
