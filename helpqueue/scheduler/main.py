"""
Periodic updater for attending servers.

Publishes PeriodicUpdate on every registered server at a fixed interval so
extensions can refresh external state (calendars, backups, displays).
"""

import asyncio
import logging

from helpqueue.config import get_settings
from helpqueue.constants import SPAN_PERIODIC_UPDATE
from helpqueue.core.registry import ServerRegistry
from helpqueue.observability.tracing import annotate, traced_span

logger = logging.getLogger(__name__)


class PeriodicUpdater:
    """
    Periodic PeriodicUpdate publisher.

    Each round:
    1. Publishes PeriodicUpdate on every registered server
    2. Logs observer failures reported by the fan-out
    The first round is flagged with is_first_call.
    """

    def __init__(self, registry: ServerRegistry, interval_seconds: float | None = None):
        """
        Initialize the updater.

        Args:
            registry: Servers to update.
            interval_seconds: Seconds between rounds.
        """
        settings = get_settings()
        self.registry = registry
        self.interval = interval_seconds or settings.periodic_update_interval_seconds
        self._running = False
        self._first_call = True
        self._wakeup = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the update loop."""
        logger.info(f"Periodic updater starting with interval {self.interval}s")
        self._running = True
        self._wakeup.clear()

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in periodic update loop: {e}")

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Periodic updater stopped")

    async def stop(self) -> None:
        """Stop the updater after the current round."""
        logger.info("Periodic updater stopping")
        self._running = False
        self._wakeup.set()

    async def run_once(self) -> int:
        """
        Run one round of updates.

        Returns:
            Number of observer failures across all servers.
        """
        is_first_call = self._first_call
        self._first_call = False

        with traced_span(
            SPAN_PERIODIC_UPDATE, servers=len(self.registry), is_first_call=is_first_call
        ) as span:
            reports = await self.registry.periodic_update(is_first_call)
            failures = sum(len(report.failures) for report in reports)
            annotate(span, failures=failures)

        if failures:
            logger.warning(
                "Periodic update had observer failures",
                extra={"servers": len(reports), "failures": failures},
            )
        else:
            logger.debug("Periodic update complete", extra={"servers": len(reports)})
        return failures
