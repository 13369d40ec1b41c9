"""
Table Synchronizer

Runs one table's push (local -> remote) or pull (remote -> local). Push
reads local rows in primary-key pages and merges each page on the remote
inside the table's transaction. Pull reads the remote rows up front, closes
the remote connection, then applies conflict resolution row by row in one
local transaction.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import column as sql_column, inspect, insert, select, table as sql_table, update
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from enrollsync.utils.conflict_resolution import ConflictAction, ConflictResolver
from .errors import BatchMergeError, SchemaIntrospectionError
from .merge_dialects import get_merge_dialect
from .merge_engine import DEFAULT_BATCH_SIZE_THRESHOLD, BatchMergeEngine
from .registry import ForeignKeyCheck
from .results import SyncDirection, TableSyncOutcome, TableSyncState, as_naive_utc
from .table_spec import SyncEntity, TableSyncSpec, introspect_entity

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000

# Keeps IN (...) lists under every backend's bind parameter limit
KEY_LOOKUP_CHUNK = 500

Row = Dict[str, Any]


def _chunks(values: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class TableSynchronizer:
    """Push or pull a single table."""

    def __init__(
        self,
        entity: SyncEntity,
        local_engine: AsyncEngine,
        remote_engine: AsyncEngine,
        merge_engine: Optional[BatchMergeEngine] = None,
        resolver: Optional[ConflictResolver] = None,
        foreign_key_checks: Sequence[ForeignKeyCheck] = (),
        page_size: int = DEFAULT_PAGE_SIZE,
        batch_size_threshold: int = DEFAULT_BATCH_SIZE_THRESHOLD,
        spec_cache: Optional[Dict[str, TableSyncSpec]] = None
    ):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.entity = entity
        self.local_engine = local_engine
        self.remote_engine = remote_engine
        self.merge_engine = merge_engine or BatchMergeEngine()
        self.resolver = resolver or ConflictResolver()
        self.foreign_key_checks = list(foreign_key_checks)
        self.page_size = page_size
        self.batch_size_threshold = batch_size_threshold
        self._spec_cache = spec_cache if spec_cache is not None else {}
        self.state = TableSyncState.NOT_STARTED

    @property
    def table_name(self) -> str:
        return self.entity.table_name

    # Push

    async def push(self, since: Optional[datetime] = None) -> TableSyncOutcome:
        """Copy local rows to the remote. ``since`` limits to rows changed at or after it."""
        since = as_naive_utc(since)
        try:
            spec = await self._prepare_spec()
        except SchemaIntrospectionError as e:
            return self._failed(SyncDirection.PUSH, e, warn=True)
        except Exception as e:
            return self._failed(SyncDirection.PUSH, e)

        if since is not None and spec.change_tracking_column is None:
            logger.info(f"{self.table_name} has no change-tracking column; pushing all rows")

        merged_pages: List[int] = []
        skipped = 0
        errors: List[str] = []

        try:
            async with self.local_engine.connect() as local, self.remote_engine.connect() as remote:
                async with remote.begin():
                    self.state = TableSyncState.BATCHING
                    last_key = None
                    while True:
                        page = await self._read_page(local, spec, last_key, since)
                        if not page:
                            break
                        last_key = page[-1][spec.primary_key_column]

                        rows, fk_skipped = await self._apply_foreign_key_checks(remote, spec, page)
                        skipped += fk_skipped

                        self.state = TableSyncState.MERGING
                        try:
                            async with remote.begin_nested():
                                merged = await self.merge_engine.merge_batch(
                                    remote, spec, rows, self.batch_size_threshold
                                )
                            merged_pages.append(merged)
                        except BatchMergeError as e:
                            errors.append(f"Push {self.table_name}: {e}")

                        if len(page) < self.page_size:
                            break
        except Exception as e:
            return self._failed(SyncDirection.PUSH, e)

        # Committed; only now do the page counts stand
        return self._completed(SyncDirection.PUSH, sum(merged_pages), skipped, errors)

    async def _read_page(
        self,
        local: AsyncConnection,
        spec: TableSyncSpec,
        after_key: Any,
        since: Optional[datetime]
    ) -> List[Row]:
        table = spec.table
        pk = table.c[spec.primary_key_column]
        stmt = select(*[table.c[name].label(name) for name in spec.write_columns]).order_by(pk)
        if after_key is not None:
            stmt = stmt.where(pk > after_key)
        if since is not None and spec.change_tracking_column is not None:
            stmt = stmt.where(table.c[spec.change_tracking_column] >= since)
        stmt = stmt.limit(self.page_size)

        result = await local.execute(stmt)
        return [dict(row._mapping) for row in result.all()]

    # Pull

    async def pull(self, since: Optional[datetime] = None) -> TableSyncOutcome:
        """Copy remote rows to the local database, resolving conflicts per row."""
        since = as_naive_utc(since)
        try:
            spec = await self._prepare_spec()
        except SchemaIntrospectionError as e:
            return self._failed(SyncDirection.PULL, e, warn=True)
        except Exception as e:
            return self._failed(SyncDirection.PULL, e)

        try:
            self.state = TableSyncState.BATCHING
            async with self.remote_engine.connect() as remote:
                remote_rows = await self._read_remote(remote, spec, since)

            self.state = TableSyncState.MERGING
            async with self.local_engine.begin() as local:
                pulled, skipped = await self._apply_remote_rows(local, spec, remote_rows)
        except Exception as e:
            return self._failed(SyncDirection.PULL, e)

        return self._completed(SyncDirection.PULL, pulled, skipped, [])

    async def _read_remote(
        self,
        remote: AsyncConnection,
        spec: TableSyncSpec,
        since: Optional[datetime]
    ) -> List[Row]:
        table = spec.table
        stmt = select(*[table.c[name].label(name) for name in spec.write_columns]).order_by(
            table.c[spec.primary_key_column]
        )
        if since is not None and spec.change_tracking_column is not None:
            stmt = stmt.where(table.c[spec.change_tracking_column] >= since)
        result = await remote.execute(stmt)
        return [dict(row._mapping) for row in result.all()]

    async def _apply_remote_rows(
        self,
        local: AsyncConnection,
        spec: TableSyncSpec,
        remote_rows: List[Row]
    ) -> Tuple[int, int]:
        if not remote_rows:
            return 0, 0

        rows, skipped = await self._apply_foreign_key_checks(local, spec, remote_rows)
        local_rows = await self._load_rows_by_key(
            local, spec, [row[spec.primary_key_column] for row in rows]
        )

        table = spec.table
        pk = table.c[spec.primary_key_column]
        dialect = get_merge_dialect(local)
        pulled = 0
        inserted_identity = False

        await dialect.enable_identity_insert(local, spec)
        try:
            for row in rows:
                key = row[spec.primary_key_column]
                local_row = local_rows.get(key)
                resolution = self.resolver.resolve(row, local_row, spec)
                if not resolution.should_write:
                    logger.debug(f"{self.table_name} {key}: kept local ({resolution.explanation})")
                    continue

                if resolution.action == ConflictAction.OVERWRITE:
                    changed = [
                        name for name in spec.column_names if row[name] != local_row.get(name)
                    ]
                    if not changed:
                        continue

                try:
                    async with local.begin_nested():
                        if resolution.action == ConflictAction.INSERT:
                            await local.execute(insert(table).values(**row))
                            inserted_identity = inserted_identity or spec.is_identity
                        else:
                            # Every syncable column is written so onupdate defaults stay out
                            await local.execute(
                                update(table)
                                .where(pk == key)
                                .values(**{name: row[name] for name in spec.column_names})
                            )
                    pulled += 1
                except (IntegrityError, DataError) as e:
                    skipped += 1
                    logger.warning(
                        f"Skipped pulled {self.table_name} row {spec.primary_key_column}={key}: {e.orig}"
                    )
        finally:
            await dialect.disable_identity_insert(local, spec)

        if inserted_identity:
            await dialect.after_identity_write(local, spec)

        return pulled, skipped

    async def _load_rows_by_key(
        self,
        conn: AsyncConnection,
        spec: TableSyncSpec,
        keys: List[Any]
    ) -> Dict[Any, Row]:
        table = spec.table
        pk = table.c[spec.primary_key_column]
        found: Dict[Any, Row] = {}
        for chunk in _chunks(keys, KEY_LOOKUP_CHUNK):
            result = await conn.execute(
                select(*[table.c[name].label(name) for name in spec.write_columns]).where(pk.in_(chunk))
            )
            for row in result.all():
                mapping = dict(row._mapping)
                found[mapping[spec.primary_key_column]] = mapping
        return found

    # Shared

    async def _prepare_spec(self) -> TableSyncSpec:
        """Introspect once, then keep only columns present on both sides."""
        self.state = TableSyncState.INTROSPECTING
        spec = self._spec_cache.get(self.table_name)
        if spec is None:
            spec = introspect_entity(self.entity)
            self._spec_cache[self.table_name] = spec

        local_columns = await self._reflect_columns(self.local_engine)
        remote_columns = await self._reflect_columns(self.remote_engine)
        shared = local_columns & remote_columns

        for name in spec.write_columns:
            if name not in local_columns:
                logger.warning(f"{self.table_name}.{name} missing in local database; column skipped")
            elif name not in remote_columns:
                logger.warning(f"{self.table_name}.{name} missing in remote database; column skipped")

        return spec.restricted_to(shared)

    async def _reflect_columns(self, engine: AsyncEngine) -> Set[str]:
        table_name = self.table_name
        async with engine.connect() as conn:
            columns = await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_columns(table_name)
            )
        return {col["name"] for col in columns}

    async def _apply_foreign_key_checks(
        self,
        target: AsyncConnection,
        spec: TableSyncSpec,
        rows: List[Row]
    ) -> Tuple[List[Row], int]:
        """Drop rows whose referenced parent is missing on the target side."""
        checks = [
            check for check in self.foreign_key_checks
            if check.child_table == spec.table_name and check.child_column in spec.write_columns
        ]
        kept = rows
        for check in checks:
            values = list({row[check.child_column] for row in kept if row[check.child_column] is not None})
            existing = await self._existing_parent_keys(target, check, values)

            passed = []
            for row in kept:
                value = row[check.child_column]
                if value is None or value in existing:
                    passed.append(row)
                else:
                    logger.warning(
                        f"Skipped {spec.table_name} row {spec.primary_key_column}="
                        f"{row[spec.primary_key_column]}: {check.parent_table}.{check.parent_column}="
                        f"{value} does not exist on the target"
                    )
            kept = passed

        return kept, len(rows) - len(kept)

    async def _existing_parent_keys(
        self,
        conn: AsyncConnection,
        check: ForeignKeyCheck,
        values: List[Any]
    ) -> Set[Any]:
        parent_key = sql_column(check.parent_column)
        parent = sql_table(check.parent_table, parent_key)
        existing: Set[Any] = set()
        for chunk in _chunks(values, KEY_LOOKUP_CHUNK):
            result = await conn.execute(select(parent_key).select_from(parent).where(parent_key.in_(chunk)))
            existing.update(result.scalars().all())
        return existing

    def _completed(
        self,
        direction: SyncDirection,
        records: int,
        skipped: int,
        errors: List[str]
    ) -> TableSyncOutcome:
        self.state = TableSyncState.COMPLETED
        verb = "Pushed" if direction == SyncDirection.PUSH else "Pulled"
        logger.info(f"{verb} {records} rows for {self.table_name} ({skipped} skipped)")
        return TableSyncOutcome(
            table_name=self.table_name,
            direction=direction,
            state=TableSyncState.COMPLETED,
            records=records,
            skipped_rows=skipped,
            errors=tuple(errors),
        )

    def _failed(self, direction: SyncDirection, error: Exception, warn: bool = False) -> TableSyncOutcome:
        self.state = TableSyncState.FAILED
        message = f"{direction.value.capitalize()} {self.table_name} failed: {error}"
        if warn:
            logger.warning(message)
        else:
            logger.error(message)
        return TableSyncOutcome(
            table_name=self.table_name,
            direction=direction,
            state=TableSyncState.FAILED,
            errors=(message,),
        )
