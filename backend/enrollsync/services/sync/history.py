"""
Sync history store (``tbl_SyncHistory`` in the local database).
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from enrollsync.models.sync_metadata import SyncHistory, SyncRunStatus, SyncRunType, SyncTableLog
from .results import SyncResult

logger = logging.getLogger(__name__)


class SyncHistoryRepository:
    """Append-only log of sync runs and their per-table outcomes."""

    def __init__(self, local_engine: AsyncEngine):
        self._session_factory = async_sessionmaker(
            local_engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    async def record(
        self,
        result: SyncResult,
        sync_type: SyncRunType = SyncRunType.FULL,
        duration_seconds: Optional[float] = None,
        initiated_by: str = "System"
    ) -> SyncHistory:
        entry = SyncHistory(
            sync_type=SyncRunType(sync_type).value,
            sync_time=result.sync_time,
            status=(SyncRunStatus.SUCCESS if result.success else SyncRunStatus.FAILED).value,
            records_pushed=result.records_pushed,
            records_pulled=result.records_pulled,
            message=result.message,
            error_details="\n".join(result.errors) or None,
            duration_seconds=duration_seconds,
            initiated_by=initiated_by,
            table_logs=[
                SyncTableLog(
                    table_name=outcome.table_name,
                    direction=outcome.direction.value,
                    state=outcome.state.value,
                    records=outcome.records,
                    skipped_rows=outcome.skipped_rows,
                    error_details="\n".join(outcome.errors) or None,
                )
                for outcome in result.tables
            ],
        )
        async with self._session_factory() as session:
            session.add(entry)
            await session.commit()
        logger.debug(f"Recorded {entry.sync_type} sync ({entry.status})")
        return entry

    async def get_last_successful_sync_time(self) -> Optional[datetime]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.max(SyncHistory.sync_time)).where(
                    SyncHistory.status == SyncRunStatus.SUCCESS.value
                )
            )
            return result.scalar_one_or_none()

    async def list_recent(self, limit: int = 20) -> List[SyncHistory]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SyncHistory)
                .order_by(desc(SyncHistory.sync_time), desc(SyncHistory.sync_id))
                .limit(limit)
            )
            return list(result.scalars().all())
