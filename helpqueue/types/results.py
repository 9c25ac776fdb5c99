"""
Result types returned by core operations.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel

from helpqueue.constants import EventName
from helpqueue.errors import ObserverError
from helpqueue.types.events import HelperSnapshot, MemberSnapshot

T = TypeVar("T")


@dataclass(frozen=True)
class ObserverFailure:
    """An exception raised by one observer during fan-out."""

    event: EventName
    observer: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.observer} failed on {self.event}: {self.error!r}"


@dataclass(frozen=True)
class FanOutReport:
    """
    Outcome of publishing one event.

    Built after every observer has finished.
    """

    event: EventName
    delivered: int
    failures: tuple[ObserverFailure, ...] = ()

    @property
    def ok(self) -> bool:
        """Check if every observer completed without raising."""
        return not self.failures


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    Value of a successful operation plus its fan-out diagnostics.

    The state change is committed regardless of observer failures; callers
    that care can inspect `failures` or call `raise_for_observers`.
    """

    value: T
    reports: tuple[FanOutReport, ...] = ()

    @property
    def failures(self) -> tuple[ObserverFailure, ...]:
        return tuple(f for report in self.reports for f in report.failures)

    @property
    def ok(self) -> bool:
        return all(report.ok for report in self.reports)

    def raise_for_observers(self) -> None:
        """
        Raise an ObserverError grouping every observer failure, if any.
        """
        failures = self.failures
        if not failures:
            return
        errors = [
            f.error if isinstance(f.error, Exception) else RuntimeError(str(f))
            for f in failures
        ]
        raise ObserverError(f"{len(errors)} observer(s) failed", errors)


@dataclass(frozen=True)
class BulkResult:
    """
    Aggregate result of an operation applied to several queues.

    `transitioned` lists queues that changed, `skipped` lists queues that were
    already in the target state.
    """

    transitioned: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    session: HelperSnapshot | None = None
    removed: int = 0
    notified: tuple[MemberSnapshot, ...] = ()

    @property
    def count(self) -> int:
        """Number of queues that transitioned."""
        return len(self.transitioned)


class Announcement(BaseModel):
    """A message from a helper to waiting requesters."""

    helper: MemberSnapshot
    message: str
    queue_name: str | None = None


@dataclass(frozen=True)
class AnnounceResult:
    """Who an announcement was addressed to and who could not be reached."""

    announcement: Announcement
    recipients: tuple[MemberSnapshot, ...] = ()
    undelivered: tuple[MemberSnapshot, ...] = ()

    @property
    def delivered(self) -> int:
        return len(self.recipients) - len(self.undelivered)
