"""
Keeper scheduling and the service entry point.
"""

from .keeper_scheduler import KeeperScheduler, SchedulerStatus, calculate_keeper_fee

__all__ = [
    "KeeperScheduler",
    "SchedulerStatus",
    "calculate_keeper_fee",
]
