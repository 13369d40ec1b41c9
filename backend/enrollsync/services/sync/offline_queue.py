"""
Offline Mutation Queue

Local creates, updates and deletes made while the remote database is out
of reach are stored in ``sync_offline_queue`` and replayed on the remote,
in queue order, before the next full sync. Processed entries are kept for
a grace period and then purged.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from sqlalchemy import delete, func, insert, inspect, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from enrollsync.models.sync_metadata import QueuedOperation, QueuedOperationType
from .merge_dialects import get_merge_dialect
from .registry import SyncRegistry
from .results import utcnow
from .table_spec import TableSyncSpec, introspect_entity

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "TEMP_"
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETENTION_DAYS = 7

EntityLike = Union[Mapping[str, Any], Any]


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _coerce(column, value: Any) -> Any:
    """Turn a JSON value back into the column's Python type."""
    if value is None or not isinstance(value, str):
        return value
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if python_type is datetime:
        return datetime.fromisoformat(value)
    if python_type is date:
        return date.fromisoformat(value)
    if python_type is time:
        return time.fromisoformat(value)
    if python_type is Decimal:
        return Decimal(value)
    if python_type is int:
        return int(value)
    return value


@dataclass
class QueueProcessingResult:
    processed: int = 0
    failed: int = 0
    abandoned: int = 0


class OfflineQueueService:
    """Durable queue of local mutations awaiting replay on the remote."""

    def __init__(
        self,
        local_engine: AsyncEngine,
        registry: SyncRegistry,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retention_days: int = DEFAULT_RETENTION_DAYS
    ):
        self.local_engine = local_engine
        self.registry = registry
        self.max_retries = max_retries
        self.retention_days = retention_days
        self._session_factory = async_sessionmaker(
            local_engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        self._specs: Dict[str, TableSyncSpec] = {}

    # Queueing

    async def queue_create(
        self,
        entity: EntityLike,
        table_name: Optional[str] = None,
        primary_key_column: Optional[str] = None
    ) -> QueuedOperation:
        spec, data = self._snapshot(entity, table_name)
        pk_column = primary_key_column or spec.primary_key_column
        key = data.get(pk_column)

        temp_id = None
        if key is None:
            if not spec.is_identity:
                raise ValueError(
                    f"{spec.table_name} rows need a {pk_column} value before they can be queued"
                )
            # The remote assigns the identity value on replay
            temp_id = f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"
            data.pop(pk_column, None)

        return await self._enqueue(
            QueuedOperationType.CREATE, spec.table_name, pk_column, key, data, temp_id
        )

    async def queue_update(
        self,
        entity: EntityLike,
        table_name: Optional[str] = None,
        primary_key_column: Optional[str] = None
    ) -> QueuedOperation:
        spec, data = self._snapshot(entity, table_name)
        pk_column = primary_key_column or spec.primary_key_column
        key = data.get(pk_column)
        if key is None:
            raise ValueError(f"Cannot queue an update of {spec.table_name} without {pk_column}")
        return await self._enqueue(QueuedOperationType.UPDATE, spec.table_name, pk_column, key, data)

    async def queue_delete(
        self,
        primary_key: Any,
        table_name: str,
        primary_key_column: Optional[str] = None
    ) -> QueuedOperation:
        spec = self._spec_for(table_name)
        pk_column = primary_key_column or spec.primary_key_column
        return await self._enqueue(QueuedOperationType.DELETE, spec.table_name, pk_column, primary_key, None)

    async def _enqueue(
        self,
        operation_type: QueuedOperationType,
        table_name: str,
        primary_key_column: str,
        primary_key_value: Any,
        data: Optional[Dict[str, Any]],
        temp_id: Optional[str] = None
    ) -> QueuedOperation:
        operation = QueuedOperation(
            operation_type=operation_type.value,
            table_name=table_name,
            primary_key_column=primary_key_column,
            primary_key_value=None if primary_key_value is None else str(primary_key_value),
            temp_id=temp_id,
            entity_data=None if data is None else json.dumps(data, default=_json_default),
            queued_at=utcnow(),
            is_processed=False,
            retry_count=0,
        )
        async with self._session_factory() as session:
            session.add(operation)
            await session.commit()
        logger.info(f"Queued {operation_type.value} of {table_name} ({primary_key_value or temp_id})")
        return operation

    # Reads

    async def get_pending_operations(self) -> List[QueuedOperation]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(QueuedOperation)
                .where(QueuedOperation.is_processed == False)  # noqa: E712
                .order_by(QueuedOperation.id)
            )
            return list(result.scalars().all())

    async def get_pending_count(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(QueuedOperation.id)).where(QueuedOperation.is_processed == False)  # noqa: E712
            )
            return result.scalar_one()

    # Replay

    async def process_pending_operations(self, remote_engine: AsyncEngine) -> QueueProcessingResult:
        """Replay pending operations on the remote, oldest first."""
        outcome = QueueProcessingResult()
        pending = await self.get_pending_operations()
        if not pending:
            return outcome

        logger.info(f"Replaying {len(pending)} queued operations")
        for operation in pending:
            try:
                async with remote_engine.begin() as conn:
                    await self._replay(conn, operation)
            except Exception as e:
                retries = operation.retry_count + 1
                abandoned = retries >= self.max_retries
                await self._mark(operation.id, processed=abandoned, retry_count=retries, error=str(e))
                if abandoned:
                    outcome.abandoned += 1
                    logger.warning(
                        f"Giving up on queued {operation.operation_type} of {operation.table_name} "
                        f"after {retries} attempts: {e}"
                    )
                else:
                    outcome.failed += 1
                    logger.warning(f"Queued operation {operation.id} failed (attempt {retries}): {e}")
                continue

            await self._mark(operation.id, processed=True, retry_count=operation.retry_count, error=None)
            outcome.processed += 1

        return outcome

    async def _replay(self, conn, operation: QueuedOperation) -> None:
        spec = self._spec_for(operation.table_name)
        table = spec.table
        pk = table.c[spec.primary_key_column]

        if operation.operation_type == QueuedOperationType.DELETE.value:
            await conn.execute(delete(table).where(pk == _coerce(pk, operation.primary_key_value)))
            return

        raw = json.loads(operation.entity_data or "{}")
        data = {
            name: _coerce(table.c[name], value)
            for name, value in raw.items()
            if name in table.c
        }

        if data.get(spec.primary_key_column) is None:
            # Identity row created offline; the remote picks the key
            data.pop(spec.primary_key_column, None)
            allowed = set(spec.column_names)
            await conn.execute(insert(table).values(**{k: v for k, v in data.items() if k in allowed}))
            return

        row_spec = spec.restricted_to(set(data))
        dialect = get_merge_dialect(conn)
        await dialect.enable_identity_insert(conn, row_spec)
        try:
            await dialect.upsert_row(conn, row_spec, {name: data[name] for name in row_spec.write_columns})
        finally:
            await dialect.disable_identity_insert(conn, row_spec)
        if row_spec.is_identity:
            await dialect.after_identity_write(conn, row_spec)

    async def _mark(self, operation_id: int, processed: bool, retry_count: int, error: Optional[str]) -> None:
        async with self._session_factory() as session:
            operation = await session.get(QueuedOperation, operation_id)
            if operation is None:
                return
            operation.retry_count = retry_count
            operation.error_message = error
            if processed:
                operation.is_processed = True
                operation.processed_at = utcnow()
            await session.commit()

    # Housekeeping

    async def clear_processed_operations(self, older_than_days: Optional[int] = None) -> int:
        """Purge processed entries older than the grace period. Returns the number removed."""
        days = self.retention_days if older_than_days is None else older_than_days
        cutoff = utcnow() - timedelta(days=days)
        async with self._session_factory() as session:
            result = await session.execute(
                delete(QueuedOperation).where(
                    QueuedOperation.is_processed == True,  # noqa: E712
                    QueuedOperation.processed_at < cutoff
                )
            )
            await session.commit()
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} processed queue entries older than {days} days")
        return result.rowcount

    # Helpers

    def _spec_for(self, table_name: str) -> TableSyncSpec:
        spec = self._specs.get(table_name)
        if spec is None:
            entity = self.registry.get(table_name)
            if entity is None:
                raise ValueError(f"{table_name} is not a synced table")
            spec = introspect_entity(entity)
            self._specs[table_name] = spec
        return spec

    def _snapshot(self, entity: EntityLike, table_name: Optional[str]) -> Tuple[TableSyncSpec, Dict[str, Any]]:
        if isinstance(entity, Mapping):
            if table_name is None:
                raise ValueError("table_name is required when queueing a plain mapping")
            return self._spec_for(table_name), dict(entity)

        state = inspect(entity)
        table_name = table_name or state.mapper.local_table.name
        data = {
            attr.columns[0].name: getattr(entity, attr.key)
            for attr in state.mapper.column_attrs
        }
        return self._spec_for(table_name), data
