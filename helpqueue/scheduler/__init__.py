"""
Scheduler module.
Runs periodic updates for registered servers.
"""

from helpqueue.scheduler.main import PeriodicUpdater

__all__ = ["PeriodicUpdater"]
