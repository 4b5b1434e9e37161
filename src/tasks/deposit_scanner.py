"""
Deposit Scanner

APScheduler interval job that drives DepositMonitor.scan():
- runs once immediately, then every DEPOSIT_SCAN_INTERVAL_SECONDS
- max_instances=1 + coalesce: a slow scan never overlaps the next one
- failures are logged; the next tick simply tries again
"""
from datetime import datetime, UTC
from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config.config import DEPOSIT_SCAN_INTERVAL_SECONDS


class DepositScanner:
    """
    APScheduler wrapper for the recurring deposit scan.

    Jobs:
    - deposit_scan: calls the scan coroutine every interval
    """

    JOB_ID = "deposit_scan"

    def __init__(
        self,
        scan: Callable[[], Awaitable[Any]],
        interval_seconds: int = DEPOSIT_SCAN_INTERVAL_SECONDS,
    ):
        self._scan = scan
        self.interval_seconds = interval_seconds
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the scan job (needs a running event loop)."""
        if self._running:
            logger.warning("Deposit scanner already running")
            return

        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.scheduler.add_job(
            self._job_scan,
            IntervalTrigger(seconds=self.interval_seconds),
            id=self.JOB_ID,
            name="Deposit Scan",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(UTC),
            replace_existing=True,
        )
        self.scheduler.start()
        self._running = True

        logger.info(f"Deposit scanner started: every {self.interval_seconds}s")

    def stop(self):
        """Stop the scan job."""
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
        if self._running:
            self._running = False
            logger.info("Deposit scanner stopped")

    async def _job_scan(self) -> int:
        """Job: one deposit scan."""
        try:
            found = await self._scan()
        except Exception as e:
            logger.warning(f"Deposit scan job failed: {e}")
            return 0

        if found:
            logger.info(f"Deposit scan: {found} new deposit(s)")
        return found or 0
