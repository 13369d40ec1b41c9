"""
API endpoints for database sync operations
"""

from fastapi import APIRouter, HTTPException, Depends, Query, status, Request
from typing import List, Optional
import logging

from enrollsync.services.sync.results import SyncResult, utcnow
from enrollsync.services.sync.runtime import SyncRuntime
from enrollsync.schemas.sync import (
    SyncResultResponse,
    IncrementalSyncRequest,
    SyncStatusResponse,
    ConnectionTestResponse,
    SyncHistoryEntry,
    QueuedOperationResponse,
    QueueProcessResponse,
    QueueClearResponse
)

logger = logging.getLogger(__name__)
router = APIRouter()


def get_sync_runtime(request: Request) -> SyncRuntime:
    """The runtime is built at startup; it is absent when no remote database is configured."""
    runtime = getattr(request.app.state, "sync_runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database sync is not configured"
        )
    return runtime


def _sync_response(result: Optional[SyncResult]) -> SyncResultResponse:
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A sync is already in progress"
        )
    return SyncResultResponse(**result.to_dict())


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(runtime: SyncRuntime = Depends(get_sync_runtime)):
    """Current online/syncing state, last sync time, pending queue size and recent errors"""
    snapshot = runtime.status.get_snapshot()
    return SyncStatusResponse(
        is_online=snapshot.is_online,
        is_syncing=snapshot.is_syncing,
        last_sync_time=snapshot.last_sync_time,
        pending_operations_count=snapshot.pending_operations_count,
        errors=list(snapshot.errors),
        auto_sync_enabled=runtime.settings.SYNC_AUTO_SYNC_ENABLED,
        auto_sync_running=runtime.scheduler.is_running
    )


@router.get("/connection", response_model=ConnectionTestResponse)
async def test_connection(runtime: SyncRuntime = Depends(get_sync_runtime)):
    """Probe the remote database"""
    connected = await runtime.connectivity.check_connectivity()
    runtime.status.set_online(connected)
    return ConnectionTestResponse(connected=connected, checked_at=utcnow())


@router.post("/full", response_model=SyncResultResponse)
async def run_full_sync(runtime: SyncRuntime = Depends(get_sync_runtime)):
    """Replay the offline queue, push every table, then pull every table"""
    result = await runtime.coordinator.run_sync(initiated_by="Manual")
    return _sync_response(result)


@router.post("/push", response_model=SyncResultResponse)
async def run_push(runtime: SyncRuntime = Depends(get_sync_runtime)):
    result = await runtime.coordinator.run_push(initiated_by="Manual")
    return _sync_response(result)


@router.post("/pull", response_model=SyncResultResponse)
async def run_pull(runtime: SyncRuntime = Depends(get_sync_runtime)):
    result = await runtime.coordinator.run_pull(initiated_by="Manual")
    return _sync_response(result)


@router.post("/incremental", response_model=SyncResultResponse)
async def run_incremental_sync(
    request_body: Optional[IncrementalSyncRequest] = None,
    runtime: SyncRuntime = Depends(get_sync_runtime)
):
    """Sync rows changed since ``since`` (inclusive)"""
    since = request_body.since if request_body else None
    result = await runtime.coordinator.run_incremental(since=since, initiated_by="Manual")
    return _sync_response(result)


@router.get("/history", response_model=List[SyncHistoryEntry])
async def get_sync_history(
    limit: int = Query(default=20, ge=1, le=200),
    runtime: SyncRuntime = Depends(get_sync_runtime)
):
    entries = await runtime.history.list_recent(limit)
    return [SyncHistoryEntry.model_validate(entry) for entry in entries]


@router.get("/queue", response_model=List[QueuedOperationResponse])
async def get_pending_operations(runtime: SyncRuntime = Depends(get_sync_runtime)):
    operations = await runtime.offline_queue.get_pending_operations()
    return [QueuedOperationResponse.model_validate(op) for op in operations]


@router.post("/queue/process", response_model=QueueProcessResponse)
async def process_queue(runtime: SyncRuntime = Depends(get_sync_runtime)):
    """Replay pending offline operations now"""
    try:
        outcome = await runtime.offline_queue.process_pending_operations(runtime.remote_engine)
    except Exception as e:
        logger.error(f"Queue processing failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Queue processing failed: {str(e)}"
        )
    pending = await runtime.coordinator.refresh_pending_count()
    return QueueProcessResponse(
        processed=outcome.processed,
        failed=outcome.failed,
        abandoned=outcome.abandoned,
        pending=pending
    )


@router.delete("/queue/processed", response_model=QueueClearResponse)
async def clear_processed_operations(
    older_than_days: Optional[int] = Query(default=None, ge=0),
    runtime: SyncRuntime = Depends(get_sync_runtime)
):
    days = runtime.offline_queue.retention_days if older_than_days is None else older_than_days
    removed = await runtime.offline_queue.clear_processed_operations(days)
    return QueueClearResponse(removed=removed, older_than_days=days)
