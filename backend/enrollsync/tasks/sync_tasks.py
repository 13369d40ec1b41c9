"""
Background tasks for synchronization.

``AutoSyncScheduler`` runs a full sync every few minutes while the remote
database is reachable. Shutdown is observed between waits; a sync that
has already started runs to completion.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from enrollsync.core.connectivity import ConnectivityService
from enrollsync.services.sync.coordinator import SyncCoordinator
from enrollsync.services.sync.results import SyncResult, utcnow
from enrollsync.services.sync.status import SyncStatusService

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 5
DEFAULT_ERROR_COOLDOWN_SECONDS = 60


class AutoSyncScheduler:
    """
    Periodic full sync.

    Each cycle waits the interval, then syncs when no sync is running, the
    remote answers, and at least one interval has passed since the last
    successful sync.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        connectivity: ConnectivityService,
        status: SyncStatusService,
        interval_minutes: float = DEFAULT_INTERVAL_MINUTES,
        error_cooldown_seconds: float = DEFAULT_ERROR_COOLDOWN_SECONDS,
        check_interval_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self.coordinator = coordinator
        self.connectivity = connectivity
        self.status = status
        self.interval = timedelta(minutes=interval_minutes)
        self.error_cooldown_seconds = error_cooldown_seconds
        self.check_interval_seconds = (
            check_interval_seconds if check_interval_seconds is not None
            else self.interval.total_seconds()
        )
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        logger.info(f"Starting auto-sync scheduler (every {self.interval.total_seconds() / 60:g} min)")
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._scheduler_loop())

    async def stop(self) -> None:
        """Signal shutdown and wait for the loop; an in-flight sync finishes first."""
        logger.info("Stopping auto-sync scheduler")
        self._shutdown_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Auto-sync scheduler stopped")

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True when shutdown was requested."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _scheduler_loop(self) -> None:
        logger.info("Started auto-sync loop")

        while not self._shutdown_event.is_set():
            try:
                if await self._wait(self.check_interval_seconds):
                    break
                await self.run_once()

            except Exception as e:
                logger.error(f"Error in auto-sync loop: {e}")
                if await self._wait(self.error_cooldown_seconds):
                    break

        logger.info("Auto-sync loop stopped")

    async def should_sync(self) -> bool:
        """Gate: not syncing, remote reachable, interval elapsed since the last sync."""
        if self.coordinator.is_syncing:
            logger.debug("Auto-sync skipped: a sync is already running")
            return False

        online = await self.connectivity.check_connectivity()
        self.status.set_online(online)
        if not online:
            logger.debug("Auto-sync skipped: remote database unreachable")
            return False

        last_sync = self.coordinator.last_sync_time
        if last_sync is not None and self._clock() - last_sync < self.interval:
            logger.debug(f"Auto-sync skipped: last sync at {last_sync.isoformat()}")
            return False

        return True

    async def run_once(self) -> Optional[SyncResult]:
        """One scheduler cycle without the wait."""
        if not await self.should_sync():
            return None
        result = await self.coordinator.run_sync(initiated_by="AutoSync")
        if result is not None:
            logger.info(f"Auto-sync finished: {result.message}")
        return result

    async def force_sync(self) -> Optional[SyncResult]:
        """Run a full sync now, bypassing the interval check."""
        return await self.coordinator.run_sync(initiated_by="Manual")
