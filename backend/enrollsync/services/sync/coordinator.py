"""
Sync Coordinator

Single owner of the "a sync is running" flag. Scheduled and manual runs
both go through ``run_sync`` so two runs never overlap. Each run replays
the offline queue, runs the orchestrator, records history and publishes
the outcome to the status broadcaster.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from enrollsync.models.sync_metadata import SyncRunType
from .history import SyncHistoryRepository
from .offline_queue import OfflineQueueService
from .orchestrator import DatabaseSyncService
from .results import SyncResult
from .status import SyncStatusService

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Reentrancy guard and bookkeeping around sync runs."""

    def __init__(
        self,
        sync_service: DatabaseSyncService,
        status: SyncStatusService,
        history: Optional[SyncHistoryRepository] = None,
        offline_queue: Optional[OfflineQueueService] = None,
        remote_engine: Optional[AsyncEngine] = None
    ):
        self.sync_service = sync_service
        self.status = status
        self.history = history
        self.offline_queue = offline_queue
        self.remote_engine = remote_engine or sync_service.remote_engine
        self._lock = threading.Lock()
        self._is_syncing = False

    @property
    def is_syncing(self) -> bool:
        with self._lock:
            return self._is_syncing

    @property
    def last_sync_time(self) -> Optional[datetime]:
        return self.status.last_sync_time

    def _try_acquire(self) -> bool:
        with self._lock:
            if self._is_syncing:
                return False
            self._is_syncing = True
        self.status.set_syncing(True)
        return True

    def _release(self) -> None:
        with self._lock:
            self._is_syncing = False
        self.status.set_syncing(False)

    async def run_sync(self, initiated_by: str = "System") -> Optional[SyncResult]:
        """Full sync. Returns None when another run is already in progress."""

        async def _full():
            await self._replay_offline_queue()
            return await self.sync_service.full_sync()

        return await self._guarded(SyncRunType.FULL, _full, initiated_by)

    async def run_push(self, initiated_by: str = "System") -> Optional[SyncResult]:
        return await self._guarded(SyncRunType.PUSH, self.sync_service.push_all, initiated_by)

    async def run_pull(self, initiated_by: str = "System") -> Optional[SyncResult]:
        return await self._guarded(SyncRunType.PULL, self.sync_service.pull_all, initiated_by)

    async def run_incremental(
        self,
        since: Optional[datetime] = None,
        initiated_by: str = "System"
    ) -> Optional[SyncResult]:
        return await self._guarded(
            SyncRunType.INCREMENTAL,
            lambda: self.sync_service.incremental_sync(since),
            initiated_by
        )

    async def _guarded(
        self,
        sync_type: SyncRunType,
        run: Callable[[], Awaitable[SyncResult]],
        initiated_by: str
    ) -> Optional[SyncResult]:
        if not self._try_acquire():
            logger.info(f"{sync_type.value} sync requested while another sync is running; skipped")
            return None

        started = time.monotonic()
        try:
            try:
                result = await run()
            except Exception as e:
                logger.error(f"Sync error: {e}")
                result = SyncResult.failure(f"Sync error: {e}")

            if result.success:
                self.status.update_last_sync_time(result.sync_time)
                self.status.clear_errors()
            else:
                self.status.add_error(result.message)

            await self._record(result, sync_type, time.monotonic() - started, initiated_by)
            return result
        finally:
            self._release()

    async def _replay_offline_queue(self) -> None:
        if self.offline_queue is None:
            return
        try:
            outcome = await self.offline_queue.process_pending_operations(self.remote_engine)
            if outcome.processed or outcome.failed or outcome.abandoned:
                logger.info(
                    f"Offline queue: {outcome.processed} replayed, {outcome.failed} failed, "
                    f"{outcome.abandoned} abandoned"
                )
            self.status.update_pending_count(await self.offline_queue.get_pending_count())
        except Exception as e:
            logger.error(f"Offline queue replay failed: {e}")
            self.status.add_error(f"Offline queue replay failed: {e}")

    async def refresh_pending_count(self) -> int:
        if self.offline_queue is None:
            return 0
        count = await self.offline_queue.get_pending_count()
        self.status.update_pending_count(count)
        return count

    async def _record(
        self,
        result: SyncResult,
        sync_type: SyncRunType,
        duration_seconds: float,
        initiated_by: str
    ) -> None:
        if self.history is None:
            return
        try:
            await self.history.record(result, sync_type, round(duration_seconds, 3), initiated_by)
        except Exception as e:
            logger.error(f"Could not record sync history: {e}")
