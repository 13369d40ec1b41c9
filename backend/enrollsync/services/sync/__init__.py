"""
Database Synchronization Engine

Keeps the local (offline-capable) database and the central remote database
consistent for every registered entity.

Components:
- Entity schema introspection and the entity registry
- Batch merge engine (per-row upsert or staged merge)
- Table synchronizer (paged push, materialized pull with conflict resolution)
- Orchestrator (push / pull / full / incremental sync)
- Coordinator, status broadcaster, history store and offline queue
"""

from .errors import (
    SyncError,
    RemoteConnectionError,
    SchemaIntrospectionError,
    BatchMergeError
)
from .table_spec import SyncEntity, ColumnSpec, TableSyncSpec, introspect_entity
from .registry import ForeignKeyCheck, SyncRegistry, build_default_registry
from .merge_engine import BatchMergeEngine, SMALL_BATCH_LIMIT
from .results import SyncDirection, SyncResult, TableSyncOutcome, TableSyncState
from .table_synchronizer import TableSynchronizer
from .orchestrator import DatabaseSyncService
from .status import SyncStatusService, SyncStatusSnapshot
from .history import SyncHistoryRepository
from .offline_queue import OfflineQueueService, QueueProcessingResult
from .coordinator import SyncCoordinator

__all__ = [
    'SyncError',
    'RemoteConnectionError',
    'SchemaIntrospectionError',
    'BatchMergeError',
    'SyncEntity',
    'ColumnSpec',
    'TableSyncSpec',
    'introspect_entity',
    'ForeignKeyCheck',
    'SyncRegistry',
    'build_default_registry',
    'BatchMergeEngine',
    'SMALL_BATCH_LIMIT',
    'SyncDirection',
    'SyncResult',
    'TableSyncOutcome',
    'TableSyncState',
    'TableSynchronizer',
    'DatabaseSyncService',
    'SyncStatusService',
    'SyncStatusSnapshot',
    'SyncHistoryRepository',
    'OfflineQueueService',
    'QueueProcessingResult',
    'SyncCoordinator'
]
