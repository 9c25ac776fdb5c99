"""
Member state types owned by the help queue core.

These are mutable internal records; nothing outside the core ever receives
them directly. Observers get the frozen snapshots from helpqueue.types.events.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Member:
    """
    Opaque reference to an external community member.

    Identity is the id alone; display name and roles are carried along for
    presentation and authorization but never compared.
    """

    id: str
    display_name: str = field(default="", compare=False)
    roles: frozenset[str] = field(default_factory=frozenset, compare=False)

    @property
    def name(self) -> str:
        """Display name, falling back to the id."""
        return self.display_name or self.id

    def has_role(self, role: str) -> bool:
        """Check whether the member carries a role with this name."""
        return role in self.roles


@dataclass(frozen=True)
class QueueChannel:
    """A queue name together with its backing communication channel."""

    name: str
    channel_id: str


@dataclass
class Requester:
    """A member waiting in one queue."""

    member: Member
    wait_start: datetime


@dataclass
class HelperSession:
    """
    A helper's record on one queue.

    help_start/help_end bound the current (or last) hosting session; a
    helper that was only authorized has neither.
    """

    member: Member
    help_start: datetime | None = None
    help_end: datetime | None = None
    helped_members: list[Member] = field(default_factory=list)

    @property
    def is_hosting(self) -> bool:
        """Check if the helper is between help_start and help_end."""
        return self.help_start is not None and self.help_end is None

    @property
    def duration(self) -> timedelta | None:
        """Length of a finished session."""
        if self.help_start is None or self.help_end is None:
            return None
        return self.help_end - self.help_start

    def start(self, now: datetime) -> None:
        """Begin a fresh session."""
        self.help_start = now
        self.help_end = None
        self.helped_members = []

    def stop(self, now: datetime) -> None:
        """End the current session."""
        self.help_end = now
