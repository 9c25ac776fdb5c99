"""
Command handler registry and implementations.

Handlers translate one command into server operations. Rejections raised by
the core (QueueError, ServerError) or by the role checks here become failed
replies; anything else is a bug and propagates.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from helpqueue.commands.models import (
    AnnounceCommand,
    ClearAllCommand,
    ClearCommand,
    Command,
    EnqueueCommand,
    LeaveCommand,
    ListHelpersCommand,
    NextCommand,
    NotifyJoinCommand,
    NotifyLeaveCommand,
    QueueAddCommand,
    QueueRemoveCommand,
    StartCommand,
    StopCommand,
    UnknownCommand,
)
from helpqueue.constants import ADMIN_ROLE, SPAN_DISPATCH_COMMAND, STAFF_ROLE
from helpqueue.core.server import AttendingServer
from helpqueue.errors import CommandError, CommandErrorKind, HelpQueueError
from helpqueue.observability.logging import command_context
from helpqueue.observability.metrics import get_metrics
from helpqueue.observability.tracing import annotate, traced_span
from helpqueue.types.api import CommandReply
from helpqueue.types.members import Member
from helpqueue.types.results import Outcome

logger = logging.getLogger(__name__)

# Type alias for command handler functions
CommandHandler = Callable[[AttendingServer, Any, Member], Awaitable[CommandReply]]


@dataclass(frozen=True)
class Registration:
    """A handler and the roles allowed to trigger it (empty: anyone)."""

    handler: CommandHandler
    roles: frozenset[str]


# Handler registry
_handlers: dict[str, Registration] = {}


def register_command(
    name: str,
    roles: tuple[str, ...] = (),
) -> Callable[[CommandHandler], CommandHandler]:
    """
    Decorator to register a command handler.

    Args:
        name: The command name this handler processes.
        roles: Roles of which the caller must carry at least one.

    Returns:
        Decorator function.

    Example:
        @register_command("stop", roles=(ADMIN_ROLE, STAFF_ROLE))
        async def handle_stop(server, command, caller) -> CommandReply:
            ...
    """

    def decorator(handler: CommandHandler) -> CommandHandler:
        _handlers[name] = Registration(handler=handler, roles=frozenset(roles))
        logger.debug(f"Registered handler for command: {name}")
        return handler

    return decorator


def get_handler(name: str) -> CommandHandler | None:
    registration = _handlers.get(name)
    return registration.handler if registration else None


def list_commands() -> list[str]:
    """List all registered command names."""
    return list(_handlers.keys())


def format_duration(seconds: float) -> str:
    """Render a duration as H:MM:SS."""
    return str(timedelta(seconds=int(seconds)))


def _reply(
    command: str,
    message: str,
    outcome: Outcome[Any] | None = None,
    data: dict[str, Any] | None = None,
) -> CommandReply:
    return CommandReply(
        command=command,
        success=True,
        message=message,
        data=data,
        diagnostics=[str(f) for f in outcome.failures] if outcome else [],
    )


def _require_roles(caller: Member, command: str, roles: frozenset[str]) -> None:
    if roles and not roles & caller.roles:
        raise CommandError(
            CommandErrorKind.MISSING_ROLE,
            f"You need one of the roles {', '.join(sorted(roles))} to use `{command}`.",
        )


# ============================================================================
# Requester commands
# ============================================================================


@register_command("enqueue")
async def handle_enqueue(
    server: AttendingServer, command: EnqueueCommand, caller: Member
) -> CommandReply:
    outcome = await server.enqueue(caller, command.queue_name)
    return _reply(
        command.command,
        f"Successfully joined `{command.queue_name}`.",
        outcome,
        {"wait_start": outcome.value.wait_start.isoformat()},
    )


@register_command("leave")
async def handle_leave(
    server: AttendingServer, command: LeaveCommand, caller: Member
) -> CommandReply:
    outcome = await server.remove_requester(caller, command.queue_name)
    return _reply(command.command, f"You have left `{command.queue_name}`.", outcome)


@register_command("notify_join")
async def handle_notify_join(
    server: AttendingServer, command: NotifyJoinCommand, caller: Member
) -> CommandReply:
    added = await server.add_to_notify_group(caller, command.queue_name)
    message = (
        f"You will be notified when `{command.queue_name}` opens."
        if added
        else f"You are already notified when `{command.queue_name}` opens."
    )
    return _reply(command.command, message, data={"changed": added})


@register_command("notify_leave")
async def handle_notify_leave(
    server: AttendingServer, command: NotifyLeaveCommand, caller: Member
) -> CommandReply:
    removed = await server.remove_from_notify_group(caller, command.queue_name)
    message = (
        f"You will no longer be notified when `{command.queue_name}` opens."
        if removed
        else f"You were not notified for `{command.queue_name}`."
    )
    return _reply(command.command, message, data={"changed": removed})


@register_command("list_helpers")
async def handle_list_helpers(
    server: AttendingServer, command: ListHelpersCommand, caller: Member
) -> CommandReply:
    helpers = server.active_helpers
    if not helpers:
        return _reply(command.command, "No one is currently helping.", data={"helpers": []})

    now = server.now()
    hosting = {
        helper.member.id: [
            snapshot.name
            for snapshot in server.snapshot()
            if any(h.member.id == helper.member.id and h.is_hosting for h in snapshot.helpers)
        ]
        for helper in helpers.values()
    }
    rows = [
        {
            "id": helper.member.id,
            "display_name": helper.member.display_name,
            "queues": hosting[helper.member.id],
            "elapsed": format_duration(
                (now - helper.help_start).total_seconds() if helper.help_start else 0
            ),
        }
        for helper in helpers.values()
    ]
    return _reply(command.command, "Current Helpers", data={"helpers": rows})


# ============================================================================
# Helper commands
# ============================================================================


@register_command("next", roles=(ADMIN_ROLE, STAFF_ROLE))
async def handle_next(
    server: AttendingServer, command: NextCommand, caller: Member
) -> CommandReply:
    if command.member is not None:
        outcome = await server.dequeue_member(
            caller, command.member.to_member(), command.queue_name
        )
    else:
        outcome = await server.dequeue_next(caller, command.queue_name)
    requester = outcome.value
    return _reply(
        command.command,
        f"An invite has been sent to {requester.member.display_name}.",
        outcome,
        {"member_id": requester.member.id, "wait_start": requester.wait_start.isoformat()},
    )


@register_command("start", roles=(ADMIN_ROLE, STAFF_ROLE))
async def handle_start(
    server: AttendingServer, command: StartCommand, caller: Member
) -> CommandReply:
    outcome = await server.open_all(caller, notify=not command.mute_notif)
    result = outcome.value
    return _reply(
        command.command,
        "You have started helping! Have fun!",
        outcome,
        {
            "opened": list(result.transitioned),
            "skipped": list(result.skipped),
            "notified": len(result.notified),
        },
    )


@register_command("stop", roles=(ADMIN_ROLE, STAFF_ROLE))
async def handle_stop(
    server: AttendingServer, command: StopCommand, caller: Member
) -> CommandReply:
    outcome = await server.close_all(caller)
    result = outcome.value
    seconds = result.session.duration_seconds if result.session else 0.0
    return _reply(
        command.command,
        f"You helped for {format_duration(seconds or 0.0)}. See you later!",
        outcome,
        {
            "closed": list(result.transitioned),
            "skipped": list(result.skipped),
            "help_seconds": seconds,
            "helped": [m.id for m in result.session.helped_members] if result.session else [],
        },
    )


@register_command("announce", roles=(ADMIN_ROLE, STAFF_ROLE))
async def handle_announce(
    server: AttendingServer, command: AnnounceCommand, caller: Member
) -> CommandReply:
    outcome = await server.announce(caller, command.message, command.queue_name)
    result = outcome.value
    return _reply(
        command.command,
        f"Your announcement: {command.message} has been sent!",
        outcome,
        {
            "recipients": len(result.recipients),
            "undelivered": [m.id for m in result.undelivered],
        },
    )


@register_command("clear", roles=(ADMIN_ROLE, STAFF_ROLE))
async def handle_clear(
    server: AttendingServer, command: ClearCommand, caller: Member
) -> CommandReply:
    queue = server.get_queue(command.queue_name)
    if not (caller.has_role(ADMIN_ROLE) or server.can_access(caller, queue)):
        raise CommandError(
            CommandErrorKind.MISSING_ROLE,
            f"You don't have permission to clear `{command.queue_name}`.",
        )
    outcome = await server.clear_queue(command.queue_name)
    return _reply(
        command.command,
        f"Everyone in queue {command.queue_name} was removed.",
        outcome,
        {"removed": len(outcome.value)},
    )


# ============================================================================
# Admin commands
# ============================================================================


@register_command("clear_all", roles=(ADMIN_ROLE,))
async def handle_clear_all(
    server: AttendingServer, command: ClearAllCommand, caller: Member
) -> CommandReply:
    if not server.queue_names:
        raise CommandError(CommandErrorKind.NO_QUEUES, "This server doesn't seem to have a queue.")
    outcome = await server.clear_all()
    return _reply(
        command.command,
        f"All queues on {server.name} were cleared.",
        outcome,
        {"removed": outcome.value.removed, "cleared": list(outcome.value.transitioned)},
    )


@register_command("queue_add", roles=(ADMIN_ROLE,))
async def handle_queue_add(
    server: AttendingServer, command: QueueAddCommand, caller: Member
) -> CommandReply:
    outcome = await server.create_queue(command.queue_name)
    return _reply(command.command, f"Successfully created `{command.queue_name}`.", outcome)


@register_command("queue_remove", roles=(ADMIN_ROLE,))
async def handle_queue_remove(
    server: AttendingServer, command: QueueRemoveCommand, caller: Member
) -> CommandReply:
    outcome = await server.delete_queue(command.queue_name)
    return _reply(
        command.command,
        f"Successfully deleted `{command.queue_name}`.",
        outcome,
        {"dropped": outcome.value.length},
    )


# ============================================================================
# Dispatch
# ============================================================================


async def _run(server: AttendingServer, command: Command | UnknownCommand) -> CommandReply:
    registration = None if isinstance(command, UnknownCommand) else _handlers.get(command.command)
    if registration is None:
        logger.warning(f"No handler for command: {command.command}")
        return CommandReply(
            command=command.command,
            success=False,
            message="Command not found.",
            error_kind=CommandErrorKind.UNKNOWN_COMMAND.value,
        )

    caller = command.caller.to_member()
    try:
        _require_roles(caller, command.command, registration.roles)
        return await registration.handler(server, command, caller)
    except HelpQueueError as e:
        kind = getattr(e, "kind", None)
        logger.info(
            "Command rejected",
            extra={"caller_id": caller.id, "error_kind": kind, "reason": e.message},
        )
        return CommandReply(
            command=command.command,
            success=False,
            message=e.message,
            error_kind=kind.value if kind is not None else None,
        )


async def dispatch(server: AttendingServer, command: Command | UnknownCommand) -> CommandReply:
    """
    Execute a command against a server.

    Args:
        server: The server the command was issued on.
        command: A parsed command.

    Returns:
        CommandReply; rejected commands yield success=False with the
        rejection's kind and message.
    """
    metrics = get_metrics()
    started = time.perf_counter()
    status = "error"

    try:
        with (
            command_context(server.server_id, command.command),
            traced_span(
                SPAN_DISPATCH_COMMAND, server_id=server.server_id, command=command.command
            ) as span,
        ):
            reply = await _run(server, command)
            annotate(span, success=reply.success, error_kind=reply.error_kind)
        status = "success" if reply.success else "rejected"
        return reply
    finally:
        metrics.record_command(command.command, status, time.perf_counter() - started)
