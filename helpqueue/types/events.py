"""
Event and snapshot type definitions.

Everything here is frozen: observers receive these values and can never reach
back into queue or server state through them.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from helpqueue.constants import EventName, QueueState
from helpqueue.types.members import HelperSession, Member, Requester, utcnow


class Snapshot(BaseModel):
    """Base class for immutable value snapshots."""

    model_config = ConfigDict(frozen=True)


class MemberSnapshot(Snapshot):
    """Identity of a member as seen by observers."""

    id: str
    display_name: str

    @classmethod
    def from_member(cls, member: Member) -> "MemberSnapshot":
        return cls(id=member.id, display_name=member.name)


class RequesterSnapshot(Snapshot):
    """A waiting requester."""

    member: MemberSnapshot
    wait_start: datetime

    @classmethod
    def from_requester(cls, requester: Requester) -> "RequesterSnapshot":
        return cls(
            member=MemberSnapshot.from_member(requester.member),
            wait_start=requester.wait_start,
        )


class HelperSnapshot(Snapshot):
    """A helper's session on one queue."""

    member: MemberSnapshot
    help_start: datetime | None = None
    help_end: datetime | None = None
    helped_members: tuple[MemberSnapshot, ...] = ()

    @classmethod
    def from_session(cls, session: HelperSession) -> "HelperSnapshot":
        return cls(
            member=MemberSnapshot.from_member(session.member),
            help_start=session.help_start,
            help_end=session.help_end,
            helped_members=tuple(
                MemberSnapshot.from_member(m) for m in session.helped_members
            ),
        )

    @property
    def is_hosting(self) -> bool:
        return self.help_start is not None and self.help_end is None

    @property
    def duration_seconds(self) -> float | None:
        """Session length in seconds, if the session has ended."""
        if self.help_start is None or self.help_end is None:
            return None
        return (self.help_end - self.help_start).total_seconds()


class QueueSnapshot(Snapshot):
    """Point-in-time copy of one queue."""

    name: str
    channel_id: str
    state: QueueState
    requesters: tuple[RequesterSnapshot, ...] = ()
    helpers: tuple[HelperSnapshot, ...] = ()
    notify_group: tuple[MemberSnapshot, ...] = ()

    @property
    def is_open(self) -> bool:
        return self.state == QueueState.OPEN

    @property
    def length(self) -> int:
        return len(self.requesters)

    @property
    def first(self) -> RequesterSnapshot | None:
        return self.requesters[0] if self.requesters else None


class QueueViewModel(Snapshot):
    """
    What a rendering adapter needs to present a queue.
    """

    queue_name: str
    helper_ids: tuple[str, ...]
    requester_display_names: tuple[str, ...]
    is_open: bool

    @classmethod
    def from_snapshot(cls, queue: QueueSnapshot) -> "QueueViewModel":
        return cls(
            queue_name=queue.name,
            helper_ids=tuple(h.member.id for h in queue.helpers if h.is_hosting),
            requester_display_names=tuple(
                r.member.display_name for r in queue.requesters
            ),
            is_open=queue.is_open,
        )


class QueueEvent(Snapshot):
    """
    Event emitted when a queue changes.
    Delivered to queue extensions and the WebSocket stream.
    """

    event: EventName
    server_id: str
    queue: QueueSnapshot
    timestamp: datetime
    requester: RequesterSnapshot | None = None
    requesters: tuple[RequesterSnapshot, ...] = ()
    helper: HelperSnapshot | None = None

    @classmethod
    def create(
        cls,
        event: EventName,
        server_id: str,
        queue: QueueSnapshot,
        *,
        requester: RequesterSnapshot | None = None,
        requesters: Iterable[RequesterSnapshot] = (),
        helper: HelperSnapshot | None = None,
    ) -> "QueueEvent":
        """Create a queue event stamped with the current time."""
        return cls(
            event=event,
            server_id=server_id,
            queue=queue,
            timestamp=utcnow(),
            requester=requester,
            requesters=tuple(requesters),
            helper=helper,
        )


class ServerEvent(Snapshot):
    """
    Event emitted for server-wide lifecycle changes.
    Delivered to server extensions and the WebSocket stream.
    """

    event: EventName
    server_id: str
    server_name: str
    queues: tuple[QueueSnapshot, ...]
    timestamp: datetime
    helper: HelperSnapshot | None = None
    requester: RequesterSnapshot | None = None
    is_first_call: bool | None = None

    @classmethod
    def create(
        cls,
        event: EventName,
        server_id: str,
        server_name: str,
        queues: Iterable[QueueSnapshot],
        *,
        helper: HelperSnapshot | None = None,
        requester: RequesterSnapshot | None = None,
        is_first_call: bool | None = None,
    ) -> "ServerEvent":
        """Create a server event stamped with the current time."""
        return cls(
            event=event,
            server_id=server_id,
            server_name=server_name,
            queues=tuple(queues),
            timestamp=utcnow(),
            helper=helper,
            requester=requester,
            is_first_call=is_first_call,
        )


LifecycleEvent = QueueEvent | ServerEvent


class WebSocketMessage(BaseModel):
    """
    Message format for WebSocket communication.
    """

    type: str
    payload: dict[str, Any]
    timestamp: datetime

    @classmethod
    def from_event(cls, event: LifecycleEvent) -> "WebSocketMessage":
        """Create a WebSocket message from a lifecycle event."""
        return cls(
            type=event.event.value,
            payload=event.model_dump(mode="json", exclude={"timestamp"}),
            timestamp=event.timestamp,
        )
