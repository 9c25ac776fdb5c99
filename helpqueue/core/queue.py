"""
Help queue: one queue's state machine, FIFO waiting list and helpers.

Every mutation runs inside the queue's own asyncio.Lock and never awaits
while holding it, so each operation is atomic to interleaved callers. A
caller can only be cancelled while waiting for the lock. Events are published
after the lock is released, so a slow observer delays only the operation that
triggered it.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from datetime import datetime

from helpqueue.constants import EventName, QueueState
from helpqueue.core.bus import NotificationBus
from helpqueue.errors import QueueError, QueueErrorKind
from helpqueue.types.events import (
    HelperSnapshot,
    MemberSnapshot,
    QueueEvent,
    QueueSnapshot,
    RequesterSnapshot,
)
from helpqueue.types.members import HelperSession, Member, QueueChannel, Requester, utcnow
from helpqueue.types.results import FanOutReport, Outcome

logger = logging.getLogger(__name__)

# Type alias for injectable time sources
Clock = Callable[[], datetime]


class HelpQueue:
    """
    A named FIFO waiting line that helpers open, serve and close.

    State transitions:
    - CLOSED -> OPEN via open(helper)
    - OPEN -> CLOSED via close(helper)

    A closed queue keeps its waiting requesters.
    """

    def __init__(
        self,
        channel: QueueChannel,
        bus: NotificationBus,
        server_id: str = "",
        clock: Clock = utcnow,
    ):
        """
        Initialize an empty, closed queue.

        Args:
            channel: Queue name and backing channel reference.
            bus: Bus shared with the owning server.
            server_id: Id of the owning server, stamped on events.
            clock: Time source for wait and help timestamps.
        """
        self.channel = channel
        self.server_id = server_id
        self._bus = bus
        self._clock = clock
        self._lock = asyncio.Lock()
        self._state = QueueState.CLOSED
        self._requesters: deque[Requester] = deque()
        self._queued: dict[str, Requester] = {}
        self._helpers: dict[str, HelperSession] = {}
        self._notify_group: dict[str, Member] = {}

    def __repr__(self) -> str:
        return f"HelpQueue({self.name!r}, state={self._state.value}, length={len(self)})"

    def __len__(self) -> int:
        return len(self._requesters)

    @property
    def name(self) -> str:
        return self.channel.name

    @property
    def channel_id(self) -> str:
        return self.channel.channel_id

    @property
    def state(self) -> QueueState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == QueueState.OPEN

    @property
    def length(self) -> int:
        """Number of waiting requesters."""
        return len(self._requesters)

    @property
    def first(self) -> RequesterSnapshot | None:
        """The requester that has waited longest, if any."""
        if not self._requesters:
            return None
        return RequesterSnapshot.from_requester(self._requesters[0])

    @property
    def head_wait_start(self) -> datetime | None:
        """wait_start of the head requester."""
        return self._requesters[0].wait_start if self._requesters else None

    @property
    def helper_ids(self) -> frozenset[str]:
        """Ids of every authorized helper."""
        return frozenset(self._helpers)

    @property
    def requesters(self) -> tuple[RequesterSnapshot, ...]:
        """Waiting requesters in wait order."""
        return tuple(RequesterSnapshot.from_requester(r) for r in self._requesters)

    @property
    def active_helpers(self) -> tuple[HelperSnapshot, ...]:
        """Helpers currently hosting this queue."""
        return tuple(
            HelperSnapshot.from_session(s) for s in self._helpers.values() if s.is_hosting
        )

    def has_helper(self, member: Member) -> bool:
        """Check if the member is in the authorized helper set."""
        return member.id in self._helpers

    def is_hosted_by(self, member: Member) -> bool:
        """Check if the member is actively hosting this queue."""
        session = self._helpers.get(member.id)
        return session is not None and session.is_hosting

    def has_requester(self, member: Member) -> bool:
        return member.id in self._queued

    def snapshot(self) -> QueueSnapshot:
        """Immutable copy of the queue's current state."""
        return QueueSnapshot(
            name=self.name,
            channel_id=self.channel_id,
            state=self._state,
            requesters=self.requesters,
            helpers=tuple(HelperSnapshot.from_session(s) for s in self._helpers.values()),
            notify_group=tuple(
                MemberSnapshot.from_member(m) for m in self._notify_group.values()
            ),
        )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def open(self, helper: Member) -> Outcome[HelperSnapshot]:
        """
        Open the queue and start the helper's session.

        Args:
            helper: The helper opening the queue. Added to the authorized
                set if absent.

        Returns:
            Outcome with the helper's fresh session.

        Raises:
            QueueError: ALREADY_OPEN if the queue is open.
        """
        async with self._lock:
            if self._state == QueueState.OPEN:
                raise QueueError(
                    QueueErrorKind.ALREADY_OPEN,
                    self.name,
                    f"Queue {self.name} is already open.",
                )
            session = self._helpers.get(helper.id)
            if session is None:
                session = self._helpers[helper.id] = HelperSession(member=helper)
            session.member = helper
            session.start(self._clock())
            self._state = QueueState.OPEN
            helper_snapshot = HelperSnapshot.from_session(session)
            event = self._event(EventName.QUEUE_OPEN, helper=helper_snapshot)

        logger.info(
            "Queue opened",
            extra={"queue": self.name, "helper_id": helper.id},
        )
        report = await self._publish(event)
        return Outcome(helper_snapshot, (report,))

    async def close(self, helper: Member) -> Outcome[HelperSnapshot]:
        """
        Close the queue and end the helper's session.

        Args:
            helper: The hosting helper.

        Returns:
            Outcome with the finished session (start, end, served members).

        Raises:
            QueueError: NOT_HOSTING if the queue is closed or the helper is
                not actively hosting it.
        """
        async with self._lock:
            session = self._helpers.get(helper.id)
            if self._state != QueueState.OPEN or session is None or not session.is_hosting:
                raise QueueError(
                    QueueErrorKind.NOT_HOSTING,
                    self.name,
                    f"You are not currently hosting {self.name}.",
                )
            session.stop(self._clock())
            self._state = QueueState.CLOSED
            helper_snapshot = HelperSnapshot.from_session(session)
            event = self._event(EventName.QUEUE_CLOSE, helper=helper_snapshot)

        logger.info(
            "Queue closed",
            extra={
                "queue": self.name,
                "helper_id": helper.id,
                "helped": len(helper_snapshot.helped_members),
            },
        )
        report = await self._publish(event)
        return Outcome(helper_snapshot, (report,))

    # ------------------------------------------------------------------
    # Waiting list
    # ------------------------------------------------------------------

    async def enqueue(self, member: Member) -> Outcome[RequesterSnapshot]:
        """
        Append a member to the tail of the waiting list.

        Raises:
            QueueError: NOT_OPEN if the queue is closed, ALREADY_QUEUED if the
                member is already waiting here.
        """
        async with self._lock:
            if self._state != QueueState.OPEN:
                raise QueueError(
                    QueueErrorKind.NOT_OPEN,
                    self.name,
                    f"Queue {self.name} is not open.",
                )
            if member.id in self._queued:
                raise QueueError(
                    QueueErrorKind.ALREADY_QUEUED,
                    self.name,
                    f"{member.name} is already in {self.name}.",
                )
            requester = Requester(member=member, wait_start=self._clock())
            self._requesters.append(requester)
            self._queued[member.id] = requester
            requester_snapshot = RequesterSnapshot.from_requester(requester)
            event = self._event(EventName.ENQUEUE, requester=requester_snapshot)

        logger.info(
            "Requester enqueued",
            extra={"queue": self.name, "member_id": member.id, "length": event.queue.length},
        )
        report = await self._publish(event)
        return Outcome(requester_snapshot, (report,))

    async def dequeue_next(
        self,
        helper: Member,
        *,
        require_open: bool = False,
    ) -> Outcome[RequesterSnapshot]:
        """
        Remove the longest-waiting requester on behalf of a helper.

        Args:
            helper: The helper claiming the requester.
            require_open: Refuse to serve a closed queue.

        Raises:
            QueueError: NOT_AUTHORIZED if the helper is not authorized for
                this queue, NOT_OPEN if require_open is set and the queue
                is closed, EMPTY if no one is waiting.
        """
        async with self._lock:
            session = self._authorized_session(helper)
            if require_open and self._state != QueueState.OPEN:
                raise QueueError(
                    QueueErrorKind.NOT_OPEN,
                    self.name,
                    f"Queue {self.name} is not open.",
                )
            if not self._requesters:
                raise QueueError(
                    QueueErrorKind.EMPTY,
                    self.name,
                    f"There's no one in {self.name}.",
                )
            requester = self._requesters.popleft()
            del self._queued[requester.member.id]
            session.helped_members.append(requester.member)
            requester_snapshot = RequesterSnapshot.from_requester(requester)
            event = self._event(
                EventName.DEQUEUE,
                requester=requester_snapshot,
                helper=HelperSnapshot.from_session(session),
            )

        logger.info(
            "Requester dequeued",
            extra={
                "queue": self.name,
                "member_id": requester.member.id,
                "helper_id": helper.id,
            },
        )
        report = await self._publish(event)
        return Outcome(requester_snapshot, (report,))

    async def dequeue_member(self, helper: Member, member: Member) -> Outcome[RequesterSnapshot]:
        """
        Remove a specific requester on behalf of a helper.

        Raises:
            QueueError: NOT_AUTHORIZED if the helper is not authorized for
                this queue, NOT_QUEUED if the member is not waiting here.
        """
        async with self._lock:
            session = self._authorized_session(helper)
            requester = self._take(member)
            session.helped_members.append(requester.member)
            requester_snapshot = RequesterSnapshot.from_requester(requester)
            event = self._event(
                EventName.DEQUEUE,
                requester=requester_snapshot,
                helper=HelperSnapshot.from_session(session),
            )

        logger.info(
            "Requester dequeued",
            extra={"queue": self.name, "member_id": member.id, "helper_id": helper.id},
        )
        report = await self._publish(event)
        return Outcome(requester_snapshot, (report,))

    async def remove(self, member: Member) -> Outcome[RequesterSnapshot]:
        """
        Remove a requester from any position (voluntary leave).

        Raises:
            QueueError: NOT_QUEUED if the member is not waiting here.
        """
        async with self._lock:
            requester = self._take(member)
            requester_snapshot = RequesterSnapshot.from_requester(requester)
            event = self._event(EventName.STUDENT_REMOVE, requester=requester_snapshot)

        logger.info(
            "Requester removed",
            extra={"queue": self.name, "member_id": member.id},
        )
        report = await self._publish(event)
        return Outcome(requester_snapshot, (report,))

    async def clear(self) -> Outcome[tuple[RequesterSnapshot, ...]]:
        """
        Empty the waiting list in one step.

        Publishes a single RemoveAll event carrying every removed requester.
        """
        async with self._lock:
            removed = tuple(RequesterSnapshot.from_requester(r) for r in self._requesters)
            self._requesters.clear()
            self._queued.clear()
            event = self._event(EventName.REMOVE_ALL, requesters=removed)

        logger.info(
            "Queue cleared",
            extra={"queue": self.name, "removed": len(removed)},
        )
        report = await self._publish(event)
        return Outcome(removed, (report,))

    # ------------------------------------------------------------------
    # Helpers and notification group
    # ------------------------------------------------------------------

    async def authorize(self, helper: Member) -> bool:
        """
        Add a helper to the authorized set without starting a session.

        Returns:
            True if the helper was not authorized before.
        """
        async with self._lock:
            if helper.id in self._helpers:
                return False
            self._helpers[helper.id] = HelperSession(member=helper)
            return True

    async def add_to_notify_group(self, member: Member) -> bool:
        """
        Subscribe a member to "notify when open".

        Returns:
            True if the member was not subscribed before.
        """
        async with self._lock:
            if member.id in self._notify_group:
                return False
            self._notify_group[member.id] = member
            return True

    async def remove_from_notify_group(self, member: Member) -> bool:
        """
        Unsubscribe a member from "notify when open".

        Returns:
            True if the member was subscribed.
        """
        async with self._lock:
            return self._notify_group.pop(member.id, None) is not None

    # ------------------------------------------------------------------
    # Internals (callers hold the lock)
    # ------------------------------------------------------------------

    def _authorized_session(self, helper: Member) -> HelperSession:
        session = self._helpers.get(helper.id)
        if session is None:
            raise QueueError(
                QueueErrorKind.NOT_AUTHORIZED,
                self.name,
                f"You don't have permission to help {self.name}.",
            )
        return session

    def _take(self, member: Member) -> Requester:
        requester = self._queued.pop(member.id, None)
        if requester is None:
            raise QueueError(
                QueueErrorKind.NOT_QUEUED,
                self.name,
                f"{member.name} is not in {self.name}.",
            )
        self._requesters.remove(requester)
        return requester

    def _event(
        self,
        event: EventName,
        *,
        requester: RequesterSnapshot | None = None,
        requesters: tuple[RequesterSnapshot, ...] = (),
        helper: HelperSnapshot | None = None,
    ) -> QueueEvent:
        return QueueEvent.create(
            event,
            self.server_id,
            self.snapshot(),
            requester=requester,
            requesters=requesters,
            helper=helper,
        )

    async def _publish(self, event: QueueEvent) -> FanOutReport:
        return await self._bus.publish(event.event, event)
