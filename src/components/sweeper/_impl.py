"""
Expiration sweeper - periodic purge of stale expired codes.

Each pass deletes rows whose expires_at is older than now minus the
retention window. The window keeps borderline rows out of reach of any
redemption still in flight, and keeps recent history for investigations.

Key behaviors:
- Runs on a fixed interval, independent of request traffic
- A failed pass is logged and retried on the next tick, never raised
- trigger_now() runs a pass synchronously (admin endpoint, CLI)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from src.adapters.clock import SystemClock
from src.rules.models import Rules

logger = logging.getLogger(__name__)


class ExpiredCodePurgePort(Protocol):
    def delete_older_than(self, cutoff: datetime) -> int: ...


class TimePort(Protocol):
    def now_utc(self) -> datetime: ...


@dataclass(frozen=True)
class SweeperConfig:
    enabled: bool = True
    interval_hours: float = 24
    retention_days: int = 7

    @classmethod
    def from_rules(cls, rules: Rules) -> SweeperConfig:
        return cls(
            enabled=rules.sweeper.enabled,
            interval_hours=rules.sweeper.interval_hours,
            retention_days=rules.sweeper.retention_days,
        )


@dataclass(frozen=True)
class SweepResult:
    """Outcome of one sweep pass."""

    success: bool
    cutoff: datetime
    deleted: int = 0
    error: str | None = None


class ExpirationSweeper:
    def __init__(
        self,
        repo: ExpiredCodePurgePort,
        time_port: TimePort | None = None,
        config: SweeperConfig | None = None,
    ) -> None:
        self.repo = repo
        self.time = time_port or SystemClock()
        self.config = config or SweeperConfig()

    def run_once(self) -> SweepResult:
        cutoff = self.time.now_utc() - timedelta(days=self.config.retention_days)
        try:
            deleted = self.repo.delete_older_than(cutoff)
        except Exception as e:
            logger.exception("Expiration sweep failed; will retry next cycle")
            return SweepResult(success=False, cutoff=cutoff, error=str(e))

        logger.info(
            "Expiration sweep removed %d codes expired before %s",
            deleted,
            cutoff.isoformat(),
        )
        return SweepResult(success=True, cutoff=cutoff, deleted=deleted)


class SweeperScheduler:
    """
    Background thread that runs the sweeper at a fixed interval.

    The first pass happens one interval after start().
    """

    def __init__(
        self,
        sweeper: ExpirationSweeper,
        interval_seconds: float | None = None,
    ) -> None:
        self._sweeper = sweeper
        self._interval = (
            interval_seconds
            if interval_seconds is not None
            else sweeper.config.interval_hours * 3600
        )
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._running = False

    def start(self) -> None:
        """Start the background sweeper. No-op when disabled or already running."""
        if self._running:
            return
        if not self._sweeper.config.enabled:
            logger.info("Expiration sweeper disabled by configuration")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="expiration-sweeper", daemon=True
        )
        self._thread.start()
        self._running = True
        logger.info("Expiration sweeper started (interval: %.1fs)", self._interval)

    def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
        self._running = False
        logger.info("Expiration sweeper stopped")

    def trigger_now(self) -> SweepResult:
        return self._sweeper.run_once()

    def wait(self) -> None:
        """Block until stop() is called (foreground CLI mode)."""
        self._stop_event.wait()

    @property
    def is_running(self) -> bool:
        return self._running

    def _loop(self) -> None:
        while not self._stop_event.wait(timeout=self._interval):
            self._sweeper.run_once()


def create_sweeper(
    repo: ExpiredCodePurgePort,
    *,
    rules: Rules | None = None,
    time_port: TimePort | None = None,
) -> ExpirationSweeper:
    config = SweeperConfig.from_rules(rules) if rules is not None else SweeperConfig()
    return ExpirationSweeper(repo, time_port=time_port, config=config)
