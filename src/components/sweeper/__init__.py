"""
Sweeper component - Scheduled purge of long-expired invite codes.
"""

from ._impl import (
    ExpirationSweeper,
    ExpiredCodePurgePort,
    SweepResult,
    SweeperConfig,
    SweeperScheduler,
    TimePort,
    create_sweeper,
)

__all__ = [
    "ExpirationSweeper",
    "ExpiredCodePurgePort",
    "SweepResult",
    "SweeperConfig",
    "SweeperScheduler",
    "TimePort",
    "create_sweeper",
]
