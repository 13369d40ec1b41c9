"""
Sync result types.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple


class SyncDirection(str, Enum):
    PUSH = "push"
    PULL = "pull"


class TableSyncState(str, Enum):
    """Lifecycle of one table in one direction."""
    NOT_STARTED = "not_started"
    INTROSPECTING = "introspecting"
    BATCHING = "batching"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"


def utcnow() -> datetime:
    """Naive UTC now, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC. Naive values are assumed UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class TableSyncOutcome:
    """What one table sync committed."""
    table_name: str
    direction: SyncDirection
    state: TableSyncState
    records: int = 0
    skipped_rows: int = 0
    errors: Tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.state == TableSyncState.COMPLETED and not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_name": self.table_name,
            "direction": self.direction.value,
            "state": self.state.value,
            "records": self.records,
            "skipped_rows": self.skipped_rows,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class SyncResult:
    """
    Outcome of one sync invocation.

    Counts are rows committed and actually changed, summed over tables.
    ``success`` means no error was recorded anywhere in the run.
    """
    success: bool
    message: str
    records_pushed: int = 0
    records_pulled: int = 0
    errors: Tuple[str, ...] = ()
    sync_time: datetime = field(default_factory=utcnow)
    tables: Tuple[TableSyncOutcome, ...] = ()

    @classmethod
    def from_tables(
        cls,
        label: str,
        outcomes: Iterable[TableSyncOutcome],
        sync_time: Optional[datetime] = None
    ) -> "SyncResult":
        outcomes = tuple(outcomes)
        pushed = sum(o.records for o in outcomes if o.direction == SyncDirection.PUSH)
        pulled = sum(o.records for o in outcomes if o.direction == SyncDirection.PULL)
        errors = tuple(error for o in outcomes for error in o.errors)
        return cls(
            success=not errors,
            message=cls._message(label, pushed, pulled, errors),
            records_pushed=pushed,
            records_pulled=pulled,
            errors=errors,
            sync_time=sync_time or utcnow(),
            tables=outcomes,
        )

    @classmethod
    def failure(cls, message: str, errors: Iterable[str] = ()) -> "SyncResult":
        errors = tuple(errors) or (message,)
        return cls(success=False, message=message, errors=errors)

    @staticmethod
    def _message(label: str, pushed: int, pulled: int, errors: Tuple[str, ...]) -> str:
        if errors:
            return f"{label} completed with {len(errors)} error(s). Pushed: {pushed}, Pulled: {pulled}"
        return f"{label} completed successfully. Pushed: {pushed}, Pulled: {pulled}"

    def combine(self, other: "SyncResult", label: Optional[str] = None) -> "SyncResult":
        """Sum counts and concatenate errors; the later sync_time wins."""
        pushed = self.records_pushed + other.records_pushed
        pulled = self.records_pulled + other.records_pulled
        errors = self.errors + other.errors
        message = self._message(label, pushed, pulled, errors) if label else self.message
        return SyncResult(
            success=self.success and other.success,
            message=message,
            records_pushed=pushed,
            records_pulled=pulled,
            errors=errors,
            sync_time=max(self.sync_time, other.sync_time),
            tables=self.tables + other.tables,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "records_pushed": self.records_pushed,
            "records_pulled": self.records_pulled,
            "errors": list(self.errors),
            "sync_time": self.sync_time.isoformat(),
            "tables": [table.to_dict() for table in self.tables],
        }
