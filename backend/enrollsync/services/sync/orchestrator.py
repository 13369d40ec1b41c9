"""
Sync Orchestrator

Walks the registry in dependency order and runs table synchronizers:
``push_all`` copies local changes up, ``pull_all`` copies remote changes
down, ``full_sync`` does both (every push before any pull) and
``incremental_sync`` limits both directions to rows changed since a
checkpoint.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from enrollsync.core.database import probe_database
from enrollsync.utils.conflict_resolution import ConflictResolver
from .errors import RemoteConnectionError
from .merge_engine import DEFAULT_BATCH_SIZE_THRESHOLD, BatchMergeEngine
from .registry import SyncRegistry, build_default_registry
from .results import SyncDirection, SyncResult, TableSyncOutcome, as_naive_utc, utcnow
from .table_spec import TableSyncSpec
from .table_synchronizer import DEFAULT_PAGE_SIZE, TableSynchronizer

logger = logging.getLogger(__name__)


class DatabaseSyncService:
    """Bidirectional sync between the local and the remote database."""

    def __init__(
        self,
        local_engine: AsyncEngine,
        remote_engine: AsyncEngine,
        registry: Optional[SyncRegistry] = None,
        merge_engine: Optional[BatchMergeEngine] = None,
        resolver: Optional[ConflictResolver] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        batch_size_threshold: int = DEFAULT_BATCH_SIZE_THRESHOLD,
        connect_timeout_seconds: float = 15.0,
        incremental_default_days: int = 7
    ):
        self.local_engine = local_engine
        self.remote_engine = remote_engine
        self.registry = registry or build_default_registry()
        self.merge_engine = merge_engine or BatchMergeEngine()
        self.resolver = resolver or ConflictResolver()
        self.page_size = page_size
        self.batch_size_threshold = batch_size_threshold
        self.connect_timeout_seconds = connect_timeout_seconds
        self.incremental_default_days = incremental_default_days

    async def test_remote_connection(self) -> bool:
        try:
            await self._ensure_remote()
            return True
        except RemoteConnectionError as e:
            logger.error(f"Remote connection test failed: {e}")
            return False

    async def _ensure_remote(self) -> None:
        try:
            await probe_database(self.remote_engine, self.connect_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise RemoteConnectionError(
                f"Remote database did not answer within {self.connect_timeout_seconds:g}s"
            ) from e
        except Exception as e:
            raise RemoteConnectionError(f"Cannot connect to remote database: {e}") from e

    async def push_all(self, since: Optional[datetime] = None) -> SyncResult:
        return await self._run("Push", [SyncDirection.PUSH], since)

    async def pull_all(self, since: Optional[datetime] = None) -> SyncResult:
        return await self._run("Pull", [SyncDirection.PULL], since)

    async def full_sync(self) -> SyncResult:
        return await self._run("Full sync", [SyncDirection.PUSH, SyncDirection.PULL], None)

    async def incremental_sync(self, since: Optional[datetime] = None) -> SyncResult:
        if since is None:
            since = utcnow() - timedelta(days=self.incremental_default_days)
        since = as_naive_utc(since)
        logger.info(f"Incremental sync of rows changed since {since.isoformat()}")
        return await self._run("Incremental sync", [SyncDirection.PUSH, SyncDirection.PULL], since)

    async def _run(
        self,
        label: str,
        directions: List[SyncDirection],
        since: Optional[datetime]
    ) -> SyncResult:
        # Change-tracking columns hold naive UTC
        since = as_naive_utc(since)
        started = utcnow()
        logger.info(f"{label} started")

        try:
            await self._ensure_remote()
        except RemoteConnectionError as e:
            logger.error(f"{label} aborted: {e}")
            return SyncResult.failure(f"{label} failed: {e}", [str(e)])

        # Specs are derived once per entity for the whole invocation
        spec_cache: Dict[str, TableSyncSpec] = {}
        outcomes: List[TableSyncOutcome] = []

        for direction in directions:
            for entity in self.registry:
                synchronizer = TableSynchronizer(
                    entity,
                    self.local_engine,
                    self.remote_engine,
                    merge_engine=self.merge_engine,
                    resolver=self.resolver,
                    foreign_key_checks=self.registry.checks_for(entity.table_name),
                    page_size=self.page_size,
                    batch_size_threshold=self.batch_size_threshold,
                    spec_cache=spec_cache,
                )
                if direction == SyncDirection.PUSH:
                    outcomes.append(await synchronizer.push(since))
                else:
                    outcomes.append(await synchronizer.pull(since))

        result = SyncResult.from_tables(label, outcomes, sync_time=started)
        if result.success:
            logger.info(result.message)
        else:
            logger.warning(result.message)
        return result
