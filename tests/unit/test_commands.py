"""
Unit tests for command parsing and dispatch.
"""

import pytest
import structlog
from pydantic import ValidationError

from helpqueue.commands import dispatch, list_commands, parse_command
from helpqueue.commands.dispatcher import format_duration, get_handler, handle_enqueue
from helpqueue.commands.models import NextCommand, StartCommand, UnknownCommand
from helpqueue.constants import EventName
from helpqueue.core.server import AttendingServer
from helpqueue.extensions.base import BaseQueueExtension
from helpqueue.types.members import Member


def caller(member: Member) -> dict:
    return {"id": member.id, "display_name": member.display_name, "roles": sorted(member.roles)}


async def run(server: AttendingServer, **payload):
    return await dispatch(server, parse_command(payload))


class TestParseCommand:
    """Tests for turning payloads into commands."""

    def test_parses_known_command(self):
        command = parse_command({"command": "start", "caller": {"id": "h1"}, "mute_notif": True})

        assert isinstance(command, StartCommand)
        assert command.mute_notif is True
        assert command.caller.id == "h1"

    def test_optional_arguments(self):
        command = parse_command({"command": "next", "caller": {"id": "h1"}})

        assert isinstance(command, NextCommand)
        assert command.queue_name is None
        assert command.member is None

    def test_unknown_command_does_not_raise(self):
        command = parse_command({"command": "dance", "caller": {"id": "h1"}, "style": "tango"})

        assert isinstance(command, UnknownCommand)
        assert command.command == "dance"
        assert command.arguments == {"style": "tango"}

    def test_invalid_arguments_raise(self):
        with pytest.raises(ValidationError):
            parse_command({"command": "enqueue", "caller": {"id": "s1"}})

    def test_every_command_has_a_handler(self):
        assert set(list_commands()) == {
            "enqueue",
            "leave",
            "next",
            "start",
            "stop",
            "announce",
            "clear",
            "clear_all",
            "queue_add",
            "queue_remove",
            "notify_join",
            "notify_leave",
            "list_helpers",
        }
        assert get_handler("enqueue") is handle_enqueue
        assert get_handler("dance") is None


class TestDispatch:
    """Tests for dispatching commands onto a server."""

    @pytest.mark.asyncio
    async def test_unknown_command_reply(self, server: AttendingServer):
        reply = await run(server, command="dance", caller={"id": "x"})

        assert reply.success is False
        assert reply.error_kind == "unknown_command"

    @pytest.mark.asyncio
    async def test_start_enqueue_next_stop(self, server: AttendingServer, math_helper: Member, students, clock):
        reply = await run(server, command="start", caller=caller(math_helper))
        assert reply.success is True
        assert reply.data["opened"] == ["Math"]

        reply = await run(server, command="enqueue", caller=caller(students[0]), queue_name="Math")
        assert reply.success is True
        assert reply.message == "Successfully joined `Math`."

        reply = await run(server, command="next", caller=caller(math_helper))
        assert reply.success is True
        assert reply.data["member_id"] == students[0].id

        clock.advance(3725)
        reply = await run(server, command="stop", caller=caller(math_helper))
        assert reply.success is True
        assert reply.message == "You helped for 1:02:05. See you later!"
        assert reply.data["helped"] == [students[0].id]

    @pytest.mark.asyncio
    async def test_log_context_is_scoped_to_the_command(
        self, server: AttendingServer, math_helper: Member, students
    ):
        """Records written during a command carry its server and name; the caller's context survives."""
        seen: list[dict] = []

        class ContextSpy(BaseQueueExtension):
            async def on_enqueue(self, event):
                seen.append(structlog.contextvars.get_contextvars())

        server.add_extension(ContextSpy())
        await run(server, command="start", caller=caller(math_helper))

        with structlog.contextvars.bound_contextvars(request_id="req-1"):
            await run(server, command="enqueue", caller=caller(students[0]), queue_name="Math")
            after = structlog.contextvars.get_contextvars()

        assert seen == [{"request_id": "req-1", "server_id": server.server_id, "command": "enqueue"}]
        assert after == {"request_id": "req-1"}

    @pytest.mark.asyncio
    async def test_queue_errors_become_failed_replies(self, server: AttendingServer, students):
        reply = await run(server, command="enqueue", caller=caller(students[0]), queue_name="Math")

        assert reply.success is False
        assert reply.error_kind == "not_open"
        assert reply.message == "Queue Math is not open."

    @pytest.mark.asyncio
    async def test_server_errors_become_failed_replies(self, server: AttendingServer, math_helper: Member):
        await run(server, command="start", caller=caller(math_helper))

        reply = await run(server, command="next", caller=caller(math_helper))

        assert reply.success is False
        assert reply.error_kind == "nothing_to_serve"

    @pytest.mark.asyncio
    async def test_missing_role(self, server: AttendingServer, students):
        reply = await run(server, command="start", caller=caller(students[0]))

        assert reply.success is False
        assert reply.error_kind == "missing_role"
        assert server.active_helpers == {}

    @pytest.mark.asyncio
    async def test_admin_only_commands(self, server: AttendingServer, math_helper: Member, admin: Member):
        reply = await run(server, command="queue_add", caller=caller(math_helper), queue_name="Art")
        assert reply.error_kind == "missing_role"

        reply = await run(server, command="queue_add", caller=caller(admin), queue_name="Art")
        assert reply.success is True
        assert "Art" in server.queue_names

        reply = await run(server, command="queue_remove", caller=caller(admin), queue_name="Art")
        assert reply.success is True
        assert "Art" not in server.queue_names

    @pytest.mark.asyncio
    async def test_clear_requires_queue_access(
        self, server: AttendingServer, math_helper: Member, physics_helper: Member, students
    ):
        await run(server, command="start", caller=caller(physics_helper))
        await run(server, command="enqueue", caller=caller(students[0]), queue_name="Physics")

        denied = await run(server, command="clear", caller=caller(math_helper), queue_name="Physics")
        allowed = await run(server, command="clear", caller=caller(physics_helper), queue_name="Physics")

        assert denied.success is False
        assert allowed.success is True
        assert allowed.data["removed"] == 1

    @pytest.mark.asyncio
    async def test_clear_all_without_queues(self, clock, admin: Member):
        empty = await AttendingServer.create("empty", "Empty", clock=clock)

        reply = await run(empty, command="clear_all", caller=caller(admin))

        assert reply.success is False
        assert reply.error_kind == "no_queues"

    @pytest.mark.asyncio
    async def test_next_specific_member(self, server: AttendingServer, math_helper: Member, students):
        await run(server, command="start", caller=caller(math_helper))
        for s in students[:2]:
            await run(server, command="enqueue", caller=caller(s), queue_name="Math")

        reply = await run(
            server,
            command="next",
            caller=caller(math_helper),
            member={"id": students[1].id},
            queue_name="Math",
        )

        assert reply.data["member_id"] == students[1].id

    @pytest.mark.asyncio
    async def test_notify_join_and_leave(self, server: AttendingServer, students):
        joined = await run(server, command="notify_join", caller=caller(students[0]), queue_name="Math")
        again = await run(server, command="notify_join", caller=caller(students[0]), queue_name="Math")
        left = await run(server, command="notify_leave", caller=caller(students[0]), queue_name="Math")

        assert joined.data == {"changed": True}
        assert again.data == {"changed": False}
        assert left.data == {"changed": True}

    @pytest.mark.asyncio
    async def test_list_helpers(self, server: AttendingServer, math_helper: Member, clock):
        reply = await run(server, command="list_helpers", caller={"id": "anyone"})
        assert reply.data == {"helpers": []}

        await run(server, command="start", caller=caller(math_helper))
        clock.advance(90)
        reply = await run(server, command="list_helpers", caller={"id": "anyone"})

        [row] = reply.data["helpers"]
        assert row["id"] == math_helper.id
        assert row["queues"] == ["Math"]
        assert row["elapsed"] == "0:01:30"

    @pytest.mark.asyncio
    async def test_announce(self, server: AttendingServer, math_helper: Member, students, messenger):
        await run(server, command="start", caller=caller(math_helper))
        await run(server, command="enqueue", caller=caller(students[0]), queue_name="Math")

        reply = await run(server, command="announce", caller=caller(math_helper), message="Back in 5")

        assert reply.success is True
        assert reply.data["recipients"] == 1
        assert messenger.sent[0][1].message == "Back in 5"

    @pytest.mark.asyncio
    async def test_observer_failures_become_diagnostics(self, server: AttendingServer, math_helper: Member):
        async def broken(event):
            raise RuntimeError("display offline")

        server.bus.subscribe(EventName.QUEUE_OPEN, broken)

        reply = await run(server, command="start", caller=caller(math_helper))

        assert reply.success is True
        assert len(reply.diagnostics) == 1
        assert "display offline" in reply.diagnostics[0]


class TestFormatDuration:
    """Tests for help time rendering."""

    def test_format(self):
        assert format_duration(0) == "0:00:00"
        assert format_duration(3725.9) == "1:02:05"
