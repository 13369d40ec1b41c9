"""
Wires the sync engine together from settings.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from enrollsync.core.config import Settings
from enrollsync.core.connectivity import ConnectivityService
from enrollsync.core.database import create_database_engine
from enrollsync.tasks.sync_tasks import AutoSyncScheduler
from enrollsync.utils.conflict_resolution import ConflictResolver, TiePolicy
from .coordinator import SyncCoordinator
from .history import SyncHistoryRepository
from .merge_engine import BatchMergeEngine
from .offline_queue import OfflineQueueService
from .orchestrator import DatabaseSyncService
from .registry import SyncRegistry, build_default_registry
from .status import SyncStatusService

logger = logging.getLogger(__name__)


@dataclass
class SyncRuntime:
    """Every long-lived sync collaborator of the process."""
    settings: Settings
    local_engine: AsyncEngine
    remote_engine: AsyncEngine
    registry: SyncRegistry
    sync_service: DatabaseSyncService
    status: SyncStatusService
    history: SyncHistoryRepository
    offline_queue: OfflineQueueService
    connectivity: ConnectivityService
    coordinator: SyncCoordinator
    scheduler: AutoSyncScheduler
    owns_remote_engine: bool = True

    async def start(self) -> None:
        await self.coordinator.refresh_pending_count()
        if self.settings.SYNC_AUTO_SYNC_ENABLED:
            await self.scheduler.start()
        else:
            logger.info("Auto-sync disabled")

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        if self.owns_remote_engine:
            await self.remote_engine.dispose()


def build_sync_runtime(
    settings: Settings,
    local_engine: AsyncEngine,
    remote_engine: Optional[AsyncEngine] = None,
    registry: Optional[SyncRegistry] = None
) -> Optional[SyncRuntime]:
    """Build the runtime, or return None when no remote database is configured."""
    owns_remote_engine = remote_engine is None
    if remote_engine is None:
        if not settings.REMOTE_DATABASE_URL:
            logger.warning("REMOTE_DATABASE_URL is not set; database sync is disabled")
            return None
        remote_engine = create_database_engine(
            settings.REMOTE_DATABASE_URL,
            echo=settings.DATABASE_ECHO,
            pool_pre_ping=True
        )

    registry = registry or build_default_registry()
    history = SyncHistoryRepository(local_engine)
    status = SyncStatusService(last_sync_loader=history.get_last_successful_sync_time)

    sync_service = DatabaseSyncService(
        local_engine,
        remote_engine,
        registry=registry,
        merge_engine=BatchMergeEngine(small_batch_limit=settings.SYNC_SMALL_BATCH_LIMIT),
        resolver=ConflictResolver(TiePolicy(settings.SYNC_CONFLICT_TIE_POLICY)),
        page_size=settings.SYNC_PAGE_SIZE,
        batch_size_threshold=settings.SYNC_BATCH_SIZE_THRESHOLD,
        connect_timeout_seconds=settings.SYNC_CONNECT_TIMEOUT_SECONDS,
        incremental_default_days=settings.SYNC_INCREMENTAL_DEFAULT_DAYS,
    )
    offline_queue = OfflineQueueService(
        local_engine,
        registry,
        max_retries=settings.OFFLINE_QUEUE_MAX_RETRIES,
        retention_days=settings.OFFLINE_QUEUE_RETENTION_DAYS,
    )
    connectivity = ConnectivityService(remote_engine, settings.SYNC_CONNECT_TIMEOUT_SECONDS)
    connectivity.add_listener(status.set_online)

    coordinator = SyncCoordinator(
        sync_service,
        status,
        history=history,
        offline_queue=offline_queue,
        remote_engine=remote_engine,
    )
    scheduler = AutoSyncScheduler(
        coordinator,
        connectivity,
        status,
        interval_minutes=settings.SYNC_AUTO_SYNC_INTERVAL_MINUTES,
        error_cooldown_seconds=settings.SYNC_ERROR_COOLDOWN_SECONDS,
    )

    return SyncRuntime(
        settings=settings,
        local_engine=local_engine,
        remote_engine=remote_engine,
        registry=registry,
        sync_service=sync_service,
        status=status,
        history=history,
        offline_queue=offline_queue,
        connectivity=connectivity,
        coordinator=coordinator,
        scheduler=scheduler,
        owns_remote_engine=owns_remote_engine,
    )
