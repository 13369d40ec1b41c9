"""
SQLAlchemy models for sync bookkeeping: run history with per-table logs
and the offline mutation queue. These tables live in the local database only.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, Float, Index, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from enrollsync.core.database import Base


class SyncRunStatus(str, enum.Enum):
    """Outcome of a recorded sync run."""
    SUCCESS = "Success"
    FAILED = "Failed"


class SyncRunType(str, enum.Enum):
    """Kind of sync run."""
    FULL = "Full"
    PUSH = "Push"
    PULL = "Pull"
    INCREMENTAL = "Incremental"


class QueuedOperationType(str, enum.Enum):
    """Local mutation recorded while offline."""
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"


class SyncHistory(Base):
    """Append-only record of sync runs."""

    __tablename__ = "tbl_SyncHistory"

    sync_id = Column(Integer, primary_key=True, index=True)
    sync_type = Column(String(20), nullable=False)
    sync_time = Column(DateTime, nullable=False, server_default=func.now())
    status = Column(String(20), nullable=False)

    # Counts
    records_pushed = Column(Integer, nullable=False, default=0)
    records_pulled = Column(Integer, nullable=False, default=0)

    message = Column(Text, nullable=True)
    error_details = Column(Text, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    initiated_by = Column(String(50), nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    table_logs = relationship(
        "SyncTableLog",
        back_populates="sync_run",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SyncTableLog.log_id"
    )

    __table_args__ = (
        Index('idx_sync_history_status_time', 'status', 'sync_time'),
    )

    def __repr__(self):
        return f"<SyncHistory(id={self.sync_id}, type={self.sync_type}, status={self.status})>"


class SyncTableLog(Base):
    """Per-table detail of a recorded sync run, one row per table and direction."""

    __tablename__ = "tbl_SyncLogs"

    log_id = Column(Integer, primary_key=True, index=True)
    sync_id = Column(Integer, ForeignKey("tbl_SyncHistory.sync_id", ondelete="CASCADE"), nullable=False)
    table_name = Column(String(100), nullable=False)
    direction = Column(String(10), nullable=False)
    state = Column(String(20), nullable=False)
    records = Column(Integer, nullable=False, default=0)
    skipped_rows = Column(Integer, nullable=False, default=0)
    error_details = Column(Text, nullable=True)

    sync_run = relationship("SyncHistory", back_populates="table_logs")

    def __repr__(self):
        return f"<SyncTableLog(sync={self.sync_id}, table={self.table_name}, direction={self.direction})>"


class QueuedOperation(Base):
    """Local create/update/delete waiting to be replayed on the remote."""

    __tablename__ = "sync_offline_queue"

    id = Column(Integer, primary_key=True, index=True)
    operation_type = Column(String(10), nullable=False)
    table_name = Column(String(100), nullable=False)
    primary_key_column = Column(String(100), nullable=False)
    primary_key_value = Column(String(100), nullable=True)
    temp_id = Column(String(50), nullable=True)

    # JSON snapshot of the row
    entity_data = Column(Text, nullable=True)

    queued_at = Column(DateTime, nullable=False, server_default=func.now())
    processed_at = Column(DateTime, nullable=True)
    is_processed = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index('idx_offline_queue_pending', 'is_processed', 'id'),
    )

    def __repr__(self):
        return (
            f"<QueuedOperation(id={self.id}, type={self.operation_type}, "
            f"table={self.table_name}, processed={self.is_processed})>"
        )
