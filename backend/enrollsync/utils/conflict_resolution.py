"""
Conflict resolution for pulled rows.

When a remote row arrives for a key that already exists locally, the
change-tracking column decides the winner: last writer wins, and a tie
goes to the remote side unless the tie policy says otherwise.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:
    from enrollsync.services.sync.table_spec import TableSyncSpec

logger = logging.getLogger(__name__)


class TiePolicy(str, Enum):
    """Winner when both sides carry the same change timestamp."""
    REMOTE_WINS = "remote_wins"
    LOCAL_WINS = "local_wins"


class ConflictAction(str, Enum):
    """What the pull should do with a remote row."""
    INSERT = "insert"
    OVERWRITE = "overwrite"
    KEEP_LOCAL = "keep_local"


@dataclass
class ConflictResolution:
    """Result of a conflict resolution."""
    action: ConflictAction
    explanation: str
    remote_timestamp: Optional[datetime] = None
    local_timestamp: Optional[datetime] = None

    @property
    def should_write(self) -> bool:
        return self.action != ConflictAction.KEEP_LOCAL


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Coerce a change-tracking value to a datetime, or None if it is not one."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return None
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(candidate)
        except ValueError:
            return None
    return None


def _comparable(remote: datetime, local: datetime):
    # Naive values are taken as UTC when the other side is aware
    if (remote.tzinfo is None) != (local.tzinfo is None):
        if remote.tzinfo is None:
            remote = remote.replace(tzinfo=timezone.utc)
        else:
            local = local.replace(tzinfo=timezone.utc)
    return remote, local


class ConflictResolver:
    """
    Decides whether a pulled remote row overwrites the local one.

    - no local row: insert
    - no change-tracking column, or an unreadable value on either side:
      the remote row overwrites
    - otherwise overwrite when remote >= local (remote > local under
      ``TiePolicy.LOCAL_WINS``)
    """

    def __init__(self, tie_policy: TiePolicy = TiePolicy.REMOTE_WINS):
        self.tie_policy = TiePolicy(tie_policy)

    def resolve(
        self,
        remote_row: Mapping[str, Any],
        local_row: Optional[Mapping[str, Any]],
        spec: "TableSyncSpec"
    ) -> ConflictResolution:
        if local_row is None:
            return ConflictResolution(ConflictAction.INSERT, "No local row")

        column = spec.change_tracking_column
        if column is None:
            return ConflictResolution(
                ConflictAction.OVERWRITE,
                f"{spec.table_name} has no change-tracking column; remote is authoritative"
            )

        remote_ts = parse_timestamp(remote_row.get(column))
        local_ts = parse_timestamp(local_row.get(column))
        if remote_ts is None or local_ts is None:
            return ConflictResolution(
                ConflictAction.OVERWRITE,
                f"{column} missing on one side; remote is authoritative",
                remote_ts,
                local_ts,
            )

        remote_cmp, local_cmp = _comparable(remote_ts, local_ts)
        if remote_cmp > local_cmp:
            return ConflictResolution(ConflictAction.OVERWRITE, "Remote is newer", remote_ts, local_ts)
        if remote_cmp < local_cmp:
            return ConflictResolution(ConflictAction.KEEP_LOCAL, "Local is newer", remote_ts, local_ts)

        if self.tie_policy == TiePolicy.REMOTE_WINS:
            return ConflictResolution(ConflictAction.OVERWRITE, "Equal timestamps, remote wins", remote_ts, local_ts)
        return ConflictResolution(ConflictAction.KEEP_LOCAL, "Equal timestamps, local wins", remote_ts, local_ts)
