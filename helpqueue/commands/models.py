"""
Command type definitions.

Commands form a closed set discriminated by their `command` field. Names
outside the set parse to UnknownCommand rather than failing validation.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from helpqueue.types.api import MemberModel


class BaseCommand(BaseModel):
    """Fields shared by every command."""

    caller: MemberModel = Field(..., description="Member issuing the command")


class EnqueueCommand(BaseCommand):
    """Join a queue."""

    command: Literal["enqueue"] = "enqueue"
    queue_name: str


class LeaveCommand(BaseCommand):
    """Leave a queue."""

    command: Literal["leave"] = "leave"
    queue_name: str


class NextCommand(BaseCommand):
    """
    Claim the next requester.

    With neither a queue nor a member, the longest-waiting requester across
    every queue the caller helps is claimed.
    """

    command: Literal["next"] = "next"
    queue_name: str | None = None
    member: MemberModel | None = Field(default=None, description="Claim this member specifically")


class StartCommand(BaseCommand):
    """Open every queue the caller may serve."""

    command: Literal["start"] = "start"
    mute_notif: bool = Field(
        default=False, description="Do not notify members waiting for the queues to open"
    )


class StopCommand(BaseCommand):
    """Close every queue the caller is hosting."""

    command: Literal["stop"] = "stop"


class AnnounceCommand(BaseCommand):
    """Message waiting requesters."""

    command: Literal["announce"] = "announce"
    message: str = Field(..., min_length=1)
    queue_name: str | None = None


class ClearCommand(BaseCommand):
    """Remove everyone from one queue."""

    command: Literal["clear"] = "clear"
    queue_name: str


class ClearAllCommand(BaseCommand):
    """Remove everyone from every queue."""

    command: Literal["clear_all"] = "clear_all"


class QueueAddCommand(BaseCommand):
    """Create a queue."""

    command: Literal["queue_add"] = "queue_add"
    queue_name: str = Field(..., min_length=1)


class QueueRemoveCommand(BaseCommand):
    """Delete a queue."""

    command: Literal["queue_remove"] = "queue_remove"
    queue_name: str


class NotifyJoinCommand(BaseCommand):
    """Get notified when a queue opens."""

    command: Literal["notify_join"] = "notify_join"
    queue_name: str


class NotifyLeaveCommand(BaseCommand):
    """Stop being notified when a queue opens."""

    command: Literal["notify_leave"] = "notify_leave"
    queue_name: str


class ListHelpersCommand(BaseCommand):
    """Show who is currently helping."""

    command: Literal["list_helpers"] = "list_helpers"


class UnknownCommand(BaseModel):
    """A command name outside the supported set."""

    command: str
    caller: MemberModel | None = None
    arguments: dict[str, Any] = Field(default_factory=dict)


Command = Annotated[
    Union[
        EnqueueCommand,
        LeaveCommand,
        NextCommand,
        StartCommand,
        StopCommand,
        AnnounceCommand,
        ClearCommand,
        ClearAllCommand,
        QueueAddCommand,
        QueueRemoveCommand,
        NotifyJoinCommand,
        NotifyLeaveCommand,
        ListHelpersCommand,
    ],
    Field(discriminator="command"),
]

_command_adapter: TypeAdapter[Command] = TypeAdapter(Command)

COMMAND_NAMES: frozenset[str] = frozenset(
    model.model_fields["command"].default
    for model in (
        EnqueueCommand,
        LeaveCommand,
        NextCommand,
        StartCommand,
        StopCommand,
        AnnounceCommand,
        ClearCommand,
        ClearAllCommand,
        QueueAddCommand,
        QueueRemoveCommand,
        NotifyJoinCommand,
        NotifyLeaveCommand,
        ListHelpersCommand,
    )
)


def parse_command(data: dict[str, Any]) -> Command | UnknownCommand:
    """
    Parse a raw command payload.

    Args:
        data: Payload with a `command` name plus that command's fields.

    Returns:
        The typed command, or UnknownCommand for a name outside the set.

    Raises:
        pydantic.ValidationError: if a known command has invalid fields.
    """
    name = data.get("command")
    if name not in COMMAND_NAMES:
        arguments = {k: v for k, v in data.items() if k not in ("command", "caller")}
        caller = data.get("caller")
        return UnknownCommand(
            command=str(name),
            caller=MemberModel.model_validate(caller) if isinstance(caller, dict) else None,
            arguments=arguments,
        )
    return _command_adapter.validate_python(data)
