"""
Attending server: all help queues of one community.

Implements the cross-queue "serve next" selection, the mapping from helpers
to the queues they may serve, and bulk operations over those queues. There
is no cross-queue lock; each queue serializes its own mutations.
"""

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol
from uuid import uuid4

from helpqueue.constants import EventName
from helpqueue.core.bus import NotificationBus
from helpqueue.core.queue import Clock, HelpQueue
from helpqueue.errors import QueueError, QueueErrorKind, ServerError, ServerErrorKind
from helpqueue.extensions.base import BaseServerExtension, attach_extension
from helpqueue.types.backup import QueueBackup, ServerBackup
from helpqueue.types.events import (
    HelperSnapshot,
    MemberSnapshot,
    QueueEvent,
    QueueSnapshot,
    RequesterSnapshot,
    ServerEvent,
)
from helpqueue.types.members import Member, QueueChannel, utcnow
from helpqueue.types.results import (
    AnnounceResult,
    Announcement,
    BulkResult,
    FanOutReport,
    Outcome,
)

logger = logging.getLogger(__name__)


class Messenger(Protocol):
    """Delivers announcements to members; implemented by the chat client."""

    async def send(self, recipient: MemberSnapshot, announcement: Announcement) -> None: ...


def new_channel_id() -> str:
    """Channel reference for queues created without one."""
    return uuid4().hex


class AttendingServer:
    """
    The help queues of one community and the operations spanning them.

    A helper may serve a queue if it carries a role named after the queue
    or is already in the queue's authorized helper set.
    """

    def __init__(
        self,
        server_id: str,
        name: str,
        *,
        bus: NotificationBus | None = None,
        messenger: Messenger | None = None,
        clock: Clock = utcnow,
    ):
        """
        Initialize a server with no queues.

        Prefer AttendingServer.create(), which also restores backups and
        announces initialization.

        Args:
            server_id: Community identity.
            name: Community display name.
            bus: Bus for this server's events. A fresh one by default.
            messenger: Delivery adapter for announcements.
            clock: Time source handed to every queue.
        """
        self.server_id = server_id
        self.name = name
        self.bus = bus or NotificationBus(name=server_id)
        self._messenger = messenger
        self._clock = clock
        self._queues: dict[str, HelpQueue] = {}
        self._extensions: list[object] = []
        self.init_reports: tuple[FanOutReport, ...] = ()

    def __repr__(self) -> str:
        return f"AttendingServer({self.server_id!r}, queues={len(self._queues)})"

    @classmethod
    async def create(
        cls,
        server_id: str,
        name: str,
        *,
        queue_channels: Iterable[QueueChannel | str] = (),
        extensions: Iterable[object] = (),
        messenger: Messenger | None = None,
        clock: Clock = utcnow,
    ) -> "AttendingServer":
        """
        Build a server from its discovered queue channels.

        Extensions are attached first so they observe QueueCreate and
        ServerInit. Backup data offered by an extension is merged in; a
        missing or failing backup means starting empty.

        Args:
            server_id: Community identity.
            name: Community display name.
            queue_channels: Queues found on the community, by channel or name.
            extensions: Queue and/or server extensions to attach.
            messenger: Delivery adapter for announcements.
            clock: Time source handed to every queue.

        Returns:
            The initialized server.
        """
        server = cls(server_id, name, messenger=messenger, clock=clock)
        for extension in extensions:
            server.add_extension(extension)

        backup = await server._load_backup()
        reports = await server._init_queues(queue_channels, backup)
        reports.append(await server._publish_server(EventName.SERVER_INIT))
        server.init_reports = tuple(reports)

        logger.info(
            "Server initialized",
            extra={
                "server_id": server_id,
                "queues": server.queue_names,
                "restored": backup is not None,
            },
        )
        return server

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def queues(self) -> tuple[HelpQueue, ...]:
        return tuple(self._queues.values())

    @property
    def queue_names(self) -> list[str]:
        return list(self._queues)

    @property
    def helper_names(self) -> set[str]:
        """Display names of every authorized helper on any queue."""
        return {
            helper.member.display_name
            for queue in self._queues.values()
            for helper in queue.snapshot().helpers
        }

    @property
    def active_helpers(self) -> dict[str, HelperSnapshot]:
        """
        Helpers currently hosting at least one queue, by member id.

        When a helper hosts several queues the earliest session is reported.
        """
        active: dict[str, HelperSnapshot] = {}
        for queue in self._queues.values():
            for helper in queue.active_helpers:
                current = active.get(helper.member.id)
                if current is None or (
                    helper.help_start is not None
                    and current.help_start is not None
                    and helper.help_start < current.help_start
                ):
                    active[helper.member.id] = helper
        return active

    def now(self) -> datetime:
        """Current time from the server's clock."""
        return self._clock()

    @property
    def extensions(self) -> tuple[object, ...]:
        return tuple(self._extensions)

    def get_queue(self, name: str) -> HelpQueue:
        """
        Look up a queue by name.

        Raises:
            ServerError: QUEUE_NOT_FOUND if no queue has this name.
        """
        queue = self._queues.get(name)
        if queue is None:
            raise ServerError(
                ServerErrorKind.QUEUE_NOT_FOUND,
                f"Queue {name} does not exist.",
            )
        return queue

    def snapshot(self) -> tuple[QueueSnapshot, ...]:
        """Snapshots of every queue in map order."""
        return tuple(queue.snapshot() for queue in self._queues.values())

    def backup(self) -> ServerBackup:
        """Queue names and helper assignments, for an external store."""
        return ServerBackup(
            server_id=self.server_id,
            server_name=self.name,
            queues=[
                QueueBackup(
                    name=snapshot.name,
                    channel_id=snapshot.channel_id,
                    helpers=[helper.member for helper in snapshot.helpers],
                )
                for snapshot in self.snapshot()
            ],
        )

    def can_access(self, helper: Member, queue: HelpQueue) -> bool:
        """Check whether a helper may serve a queue."""
        return helper.has_role(queue.name) or queue.has_helper(helper)

    def accessible_queues(self, helper: Member) -> list[HelpQueue]:
        """Every queue the helper may serve, in map order."""
        return [q for q in self._queues.values() if self.can_access(helper, q)]

    # ------------------------------------------------------------------
    # Extensions
    # ------------------------------------------------------------------

    def add_extension(self, extension: object) -> None:
        """Attach an extension to this server's bus."""
        attach_extension(self.bus, extension)
        self._extensions.append(extension)

    # ------------------------------------------------------------------
    # Queue management
    # ------------------------------------------------------------------

    async def create_queue(self, name: str, channel_id: str | None = None) -> Outcome[QueueSnapshot]:
        """
        Create a new, empty, closed queue.

        Raises:
            ServerError: DUPLICATE_QUEUE if the name is taken.
        """
        if name in self._queues:
            raise ServerError(
                ServerErrorKind.DUPLICATE_QUEUE,
                f"Queue {name} already exists.",
            )
        queue = self._add_queue(QueueChannel(name=name, channel_id=channel_id or new_channel_id()))
        report = await self._publish_queue(EventName.QUEUE_CREATE, queue.snapshot())

        logger.info("Queue created", extra={"server_id": self.server_id, "queue": name})
        return Outcome(queue.snapshot(), (report,))

    async def delete_queue(self, name: str) -> Outcome[QueueSnapshot]:
        """
        Delete a queue and everything in it. Not reversible.

        Raises:
            ServerError: QUEUE_NOT_FOUND if no queue has this name.
        """
        queue = self._queues.pop(name, None)
        if queue is None:
            raise ServerError(
                ServerErrorKind.QUEUE_NOT_FOUND,
                f"Queue {name} does not exist.",
            )
        snapshot = queue.snapshot()
        report = await self._publish_queue(EventName.QUEUE_DELETE, snapshot)

        logger.info(
            "Queue deleted",
            extra={"server_id": self.server_id, "queue": name, "dropped": snapshot.length},
        )
        return Outcome(snapshot, (report,))

    # ------------------------------------------------------------------
    # Requesters
    # ------------------------------------------------------------------

    async def enqueue(self, member: Member, queue_name: str) -> Outcome[RequesterSnapshot]:
        """Add a member to a queue. QueueError propagates from the queue."""
        return await self.get_queue(queue_name).enqueue(member)

    async def remove_requester(self, member: Member, queue_name: str) -> Outcome[RequesterSnapshot]:
        """Remove a member who leaves a queue voluntarily."""
        return await self.get_queue(queue_name).remove(member)

    async def clear_queue(self, queue_name: str) -> Outcome[tuple[RequesterSnapshot, ...]]:
        """Remove everyone from one queue."""
        return await self.get_queue(queue_name).clear()

    async def clear_all(self) -> Outcome[BulkResult]:
        """
        Clear every queue of the server.

        Returns:
            Outcome whose BulkResult lists cleared queues as transitioned and
            already-empty queues as skipped.
        """
        queues = list(self._queues.values())
        outcomes = await asyncio.gather(*(queue.clear() for queue in queues))

        cleared = tuple(q.name for q, o in zip(queues, outcomes) if o.value)
        skipped = tuple(q.name for q, o in zip(queues, outcomes) if not o.value)
        removed = sum(len(o.value) for o in outcomes)
        reports = tuple(r for o in outcomes for r in o.reports)

        logger.info(
            "All queues cleared",
            extra={"server_id": self.server_id, "removed": removed},
        )
        return Outcome(
            BulkResult(transitioned=cleared, skipped=skipped, removed=removed),
            reports,
        )

    async def add_to_notify_group(self, member: Member, queue_name: str) -> bool:
        """Subscribe a member to be notified when a queue opens."""
        return await self.get_queue(queue_name).add_to_notify_group(member)

    async def remove_from_notify_group(self, member: Member, queue_name: str) -> bool:
        """Unsubscribe a member from a queue's open notifications."""
        return await self.get_queue(queue_name).remove_from_notify_group(member)

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    async def dequeue_next(
        self,
        helper: Member,
        queue_name: str | None = None,
    ) -> Outcome[RequesterSnapshot]:
        """
        Claim the next requester for a helper.

        Without a queue, the head that has waited longest across every open,
        non-empty queue the helper is authorized for wins; ties go to the
        queue that comes first in map order.

        Raises:
            ServerError: QUEUE_NOT_FOUND or NOT_AUTHORIZED for an explicit
                queue, NOTHING_TO_SERVE if no candidate queue exists.
            QueueError: if the chosen queue rejects the dequeue.
        """
        if queue_name is not None:
            queue = self.get_queue(queue_name)
            if not self.can_access(helper, queue):
                raise ServerError(
                    ServerErrorKind.NOT_AUTHORIZED,
                    f"You don't have permission to dequeue {queue_name}.",
                )
            outcome = await queue.dequeue_next(helper)
        else:
            outcome = await self._dequeue_oldest(helper)

        report = await self._publish_server(
            EventName.DEQUEUE_FIRST,
            requester=outcome.value,
        )
        return Outcome(outcome.value, outcome.reports + (report,))

    async def dequeue_member(
        self,
        helper: Member,
        member: Member,
        queue_name: str | None = None,
    ) -> Outcome[RequesterSnapshot]:
        """
        Claim a specific requester for a helper.

        Without a queue, the first queue in map order that the helper is
        authorized for and where the member waits is used.

        Raises:
            ServerError: QUEUE_NOT_FOUND or NOT_AUTHORIZED for an explicit
                queue, NOTHING_TO_SERVE if the member waits nowhere the
                helper serves.
            QueueError: if the queue rejects the dequeue.
        """
        if queue_name is not None:
            queue = self.get_queue(queue_name)
            if not self.can_access(helper, queue):
                raise ServerError(
                    ServerErrorKind.NOT_AUTHORIZED,
                    f"You don't have permission to dequeue {queue_name}.",
                )
            return await queue.dequeue_member(helper, member)

        for queue in self._queues.values():
            if queue.has_helper(helper) and queue.has_requester(member):
                return await queue.dequeue_member(helper, member)
        raise ServerError(
            ServerErrorKind.NOTHING_TO_SERVE,
            f"{member.name} is not waiting in any queue you help.",
        )

    async def _dequeue_oldest(self, helper: Member) -> Outcome[RequesterSnapshot]:
        while True:
            candidates = [
                q
                for q in self._queues.values()
                if q.has_helper(helper) and q.is_open and len(q) > 0
            ]
            if not candidates:
                raise ServerError(
                    ServerErrorKind.NOTHING_TO_SERVE,
                    "There's no one left to help. You should get some coffee!",
                )
            # min() keeps the first of equal keys, which is the map order tie-break
            winner = min(candidates, key=lambda q: q.head_wait_start)
            try:
                return await winner.dequeue_next(helper, require_open=True)
            except QueueError as e:
                # Drained or closed by a concurrent caller while we waited for its lock
                if e.kind not in (QueueErrorKind.EMPTY, QueueErrorKind.NOT_OPEN):
                    raise
                logger.debug(
                    "Candidate queue no longer servable, reselecting",
                    extra={"server_id": self.server_id, "queue": winner.name, "reason": e.kind},
                )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def open_all(self, helper: Member, notify: bool = True) -> Outcome[BulkResult]:
        """
        Open every queue the helper may serve.

        Queues that are already open are skipped.

        Args:
            helper: The helper starting a session.
            notify: Tell members of each opened queue's notification group
                that the queue is open.

        Raises:
            ServerError: NOT_AUTHORIZED if the helper maps to no queue.
        """
        queues = self.accessible_queues(helper)
        if not queues:
            raise ServerError(
                ServerErrorKind.NOT_AUTHORIZED,
                "It seems like you don't have access to any queue.",
            )

        results = await asyncio.gather(
            *(queue.open(helper) for queue in queues),
            return_exceptions=True,
        )
        opened, skipped, sessions, reports = self._partition(
            queues, results, QueueErrorKind.ALREADY_OPEN
        )

        session = None
        notified: list[MemberSnapshot] = []
        if sessions:
            session = min(sessions, key=lambda s: s.help_start or self._clock())
            reports.append(
                await self._publish_server(EventName.HELPER_START, helper=session)
            )
            if notify:
                notified = await self._notify_opened(helper, opened)

        logger.info(
            "Helper started",
            extra={
                "server_id": self.server_id,
                "helper_id": helper.id,
                "opened": opened,
                "notified": len(notified),
            },
        )
        return Outcome(
            BulkResult(
                transitioned=tuple(opened),
                skipped=tuple(skipped),
                session=session,
                notified=tuple(notified),
            ),
            tuple(reports),
        )

    async def close_all(self, helper: Member) -> Outcome[BulkResult]:
        """
        Close every queue the helper is hosting.

        Helpers stamp near-identical times on queues they host together, so
        the longest of the closed sessions stands in for the whole session.

        Raises:
            ServerError: NOT_HOSTING if nothing was closed.
        """
        queues = self.accessible_queues(helper)
        results = await asyncio.gather(
            *(queue.close(helper) for queue in queues),
            return_exceptions=True,
        )
        closed, skipped, sessions, reports = self._partition(
            queues, results, QueueErrorKind.NOT_HOSTING
        )
        if not sessions:
            raise ServerError(
                ServerErrorKind.NOT_HOSTING,
                "You are not currently hosting.",
            )

        session = max(sessions, key=lambda s: s.duration_seconds or 0.0)
        reports.append(await self._publish_server(EventName.HELPER_STOP, helper=session))

        logger.info(
            "Helper stopped",
            extra={
                "server_id": self.server_id,
                "helper_id": helper.id,
                "closed": closed,
                "help_seconds": session.duration_seconds,
            },
        )
        return Outcome(
            BulkResult(transitioned=tuple(closed), skipped=tuple(skipped), session=session),
            tuple(reports),
        )

    async def announce(
        self,
        helper: Member,
        message: str,
        queue_name: str | None = None,
    ) -> Outcome[AnnounceResult]:
        """
        Send a message to waiting requesters.

        Without a queue, every requester in every queue the helper may serve
        is addressed once; with a queue, only that queue's requesters.

        Raises:
            ServerError: QUEUE_NOT_FOUND, or NOT_AUTHORIZED if the helper
                may not serve the given queue.
        """
        if queue_name is not None:
            queue = self.get_queue(queue_name)
            if not self.can_access(helper, queue):
                raise ServerError(
                    ServerErrorKind.NOT_AUTHORIZED,
                    f"You don't have permission to announce in {queue_name}.",
                )
            queues = [queue]
        else:
            queues = self.accessible_queues(helper)

        recipients: dict[str, MemberSnapshot] = {}
        for queue in queues:
            for requester in queue.requesters:
                recipients.setdefault(requester.member.id, requester.member)

        announcement = Announcement(
            helper=MemberSnapshot.from_member(helper),
            message=message,
            queue_name=queue_name,
        )
        undelivered = await self._deliver(announcement, list(recipients.values()))

        logger.info(
            "Announcement sent",
            extra={
                "server_id": self.server_id,
                "helper_id": helper.id,
                "recipients": len(recipients),
                "undelivered": len(undelivered),
            },
        )
        return Outcome(
            AnnounceResult(
                announcement=announcement,
                recipients=tuple(recipients.values()),
                undelivered=undelivered,
            )
        )

    # ------------------------------------------------------------------
    # Server lifecycle
    # ------------------------------------------------------------------

    async def periodic_update(self, is_first_call: bool = False) -> FanOutReport:
        """Publish a PeriodicUpdate tick to server extensions."""
        return await self._publish_server(EventName.PERIODIC_UPDATE, is_first_call=is_first_call)

    async def shutdown(self) -> FanOutReport:
        """
        Publish ServerDelete and drop every registration.
        The server must not be used afterwards.
        """
        report = await self._publish_server(EventName.SERVER_DELETE)
        self.bus.clear()
        self._extensions.clear()
        logger.info("Server shut down", extra={"server_id": self.server_id})
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _add_queue(self, channel: QueueChannel) -> HelpQueue:
        queue = HelpQueue(channel, self.bus, server_id=self.server_id, clock=self._clock)
        self._queues[channel.name] = queue
        return queue

    async def _load_backup(self) -> ServerBackup | None:
        for extension in self._extensions:
            if not isinstance(extension, BaseServerExtension):
                continue
            try:
                backup = await extension.load_external_server_data(self.server_id)
            except Exception as e:
                logger.warning(
                    "Backup load failed, starting empty",
                    extra={
                        "server_id": self.server_id,
                        "extension": type(extension).__name__,
                        "error": repr(e),
                    },
                )
                continue
            if backup is None:
                continue
            if backup.server_id != self.server_id:
                logger.warning(
                    "Ignoring backup for another server",
                    extra={"server_id": self.server_id, "backup_server_id": backup.server_id},
                )
                continue
            return backup
        return None

    async def _init_queues(
        self,
        queue_channels: Iterable[QueueChannel | str],
        backup: ServerBackup | None,
    ) -> list[FanOutReport]:
        created: list[HelpQueue] = []
        duplicates: list[str] = []
        for channel in queue_channels:
            if isinstance(channel, str):
                channel = QueueChannel(name=channel, channel_id=new_channel_id())
            if channel.name in self._queues:
                duplicates.append(channel.name)
                continue
            created.append(self._add_queue(channel))

        if duplicates:
            logger.warning(
                "Server contains duplicate queues, keeping the first of each",
                extra={"server_id": self.server_id, "duplicates": duplicates},
            )

        if backup is not None:
            for saved in backup.queues:
                queue = self._queues.get(saved.name)
                if queue is None:
                    queue = self._add_queue(
                        QueueChannel(
                            name=saved.name,
                            channel_id=saved.channel_id or new_channel_id(),
                        )
                    )
                    created.append(queue)
                for helper in saved.helpers:
                    await queue.authorize(Member(id=helper.id, display_name=helper.display_name))

        return list(
            await asyncio.gather(
                *(self._publish_queue(EventName.QUEUE_CREATE, q.snapshot()) for q in created)
            )
        )

    def _partition(
        self,
        queues: list[HelpQueue],
        results: list[Outcome[HelperSnapshot] | BaseException],
        skip_kind: QueueErrorKind,
    ) -> tuple[list[str], list[str], list[HelperSnapshot], list[FanOutReport]]:
        """Split bulk open/close results into changed and skipped queues."""
        changed: list[str] = []
        skipped: list[str] = []
        sessions: list[HelperSnapshot] = []
        reports: list[FanOutReport] = []
        for queue, result in zip(queues, results):
            if isinstance(result, QueueError) and result.kind == skip_kind:
                skipped.append(queue.name)
                continue
            if isinstance(result, BaseException):
                raise result
            changed.append(queue.name)
            sessions.append(result.value)
            reports.extend(result.reports)
        return changed, skipped, sessions, reports

    async def _notify_opened(self, helper: Member, queue_names: list[str]) -> list[MemberSnapshot]:
        notified: list[MemberSnapshot] = []
        for name in queue_names:
            queue = self._queues.get(name)
            if queue is None:
                continue
            recipients = list(queue.snapshot().notify_group)
            if not recipients:
                continue
            announcement = Announcement(
                helper=MemberSnapshot.from_member(helper),
                message=f"Queue {name} is now open.",
                queue_name=name,
            )
            undelivered = await self._deliver(announcement, recipients)
            notified.extend(r for r in recipients if r not in undelivered)
        return notified

    async def _deliver(
        self,
        announcement: Announcement,
        recipients: list[MemberSnapshot],
    ) -> tuple[MemberSnapshot, ...]:
        if self._messenger is None or not recipients:
            return ()
        results = await asyncio.gather(
            *(self._messenger.send(recipient, announcement) for recipient in recipients),
            return_exceptions=True,
        )
        undelivered = []
        for recipient, result in zip(recipients, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Announcement delivery failed",
                    extra={
                        "server_id": self.server_id,
                        "member_id": recipient.id,
                        "error": repr(result),
                    },
                )
                undelivered.append(recipient)
        return tuple(undelivered)

    async def _publish_queue(self, event: EventName, snapshot: QueueSnapshot) -> FanOutReport:
        return await self.bus.publish(
            event,
            QueueEvent.create(event, self.server_id, snapshot),
        )

    async def _publish_server(
        self,
        event: EventName,
        *,
        helper: HelperSnapshot | None = None,
        requester: RequesterSnapshot | None = None,
        is_first_call: bool | None = None,
    ) -> FanOutReport:
        payload = ServerEvent.create(
            event,
            self.server_id,
            self.name,
            self.snapshot(),
            helper=helper,
            requester=requester,
            is_first_call=is_first_call,
        )
        return await self.bus.publish(event, payload)
