"""Scheduled cleanup of abandoned setup sessions."""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from buytracker.setup.coordinator import SetupCoordinator
from buytracker.utils.logging import get_logger

logger = get_logger(__name__)


class SessionSweeper:
    """Periodically expire setup sessions the operator walked away from."""

    JOB_ID = "expire_setup_sessions"

    def __init__(
        self,
        coordinator: SetupCoordinator,
        scheduler: AsyncIOScheduler,
        interval_minutes: int = 1,
    ) -> None:
        self.coordinator = coordinator
        self.scheduler = scheduler
        self.interval_minutes = interval_minutes

    def start(self) -> None:
        """Register the sweep job with the scheduler."""
        self.scheduler.add_job(
            self._expire_sessions,
            trigger="interval",
            minutes=self.interval_minutes,
            id=self.JOB_ID,
            replace_existing=True,
        )
        logger.info("session_sweeper_started", interval=self.interval_minutes)

    async def _expire_sessions(self) -> None:
        try:
            self.coordinator.expire_idle()
        except Exception as exc:
            logger.error("expire_setup_sessions_failed", error=str(exc))
