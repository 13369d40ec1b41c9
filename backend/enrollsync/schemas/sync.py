"""
Pydantic schemas for the sync API
"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Optional


class TableOutcomeResponse(BaseModel):
    """Per-table outcome of a sync run"""
    table_name: str
    direction: str
    state: str
    records: int
    skipped_rows: int
    errors: List[str] = []


class SyncResultResponse(BaseModel):
    """Result of a sync run"""
    success: bool
    message: str
    records_pushed: int
    records_pulled: int
    errors: List[str] = []
    sync_time: datetime
    tables: List[TableOutcomeResponse] = []

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": True,
                "message": "Full sync completed successfully. Pushed: 12, Pulled: 3",
                "records_pushed": 12,
                "records_pulled": 3,
                "errors": [],
                "sync_time": "2024-06-03T08:15:00",
                "tables": [
                    {
                        "table_name": "tbl_Students",
                        "direction": "push",
                        "state": "completed",
                        "records": 12,
                        "skipped_rows": 0,
                        "errors": []
                    }
                ]
            }
        }
    )


class IncrementalSyncRequest(BaseModel):
    """Incremental sync window; defaults to the configured number of days"""
    since: Optional[datetime] = None


class SyncStatusResponse(BaseModel):
    """Current sync status snapshot"""
    is_online: bool
    is_syncing: bool
    last_sync_time: Optional[datetime] = None
    pending_operations_count: int
    errors: List[str] = []
    auto_sync_enabled: bool
    auto_sync_running: bool


class ConnectionTestResponse(BaseModel):
    connected: bool
    checked_at: datetime


class SyncTableLogEntry(BaseModel):
    """Outcome of one table in one direction of a recorded run"""
    table_name: str
    direction: str
    state: str
    records: int
    skipped_rows: int
    error_details: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SyncHistoryEntry(BaseModel):
    """One recorded sync run"""
    sync_id: int
    sync_type: str
    sync_time: datetime
    status: str
    records_pushed: int
    records_pulled: int
    message: Optional[str] = None
    error_details: Optional[str] = None
    duration_seconds: Optional[float] = None
    initiated_by: Optional[str] = None
    table_logs: List[SyncTableLogEntry] = []

    model_config = ConfigDict(from_attributes=True)


class QueuedOperationResponse(BaseModel):
    """Pending offline mutation"""
    id: int
    operation_type: str
    table_name: str
    primary_key_column: str
    primary_key_value: Optional[str] = None
    temp_id: Optional[str] = None
    queued_at: datetime
    retry_count: int
    error_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class QueueProcessResponse(BaseModel):
    processed: int
    failed: int
    abandoned: int
    pending: int


class QueueClearResponse(BaseModel):
    removed: int
    older_than_days: int = Field(ge=0)
