"""
Batch Merge Engine

Writes a batch of rows into one table by primary key: update on match,
insert on no match, never delete. Small chunks go through one upsert per
row; large chunks are bulk-loaded into a staging table and merged with a
single statement.
"""

import logging
from typing import Any, Dict, List, Sequence

from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection

from .errors import BatchMergeError
from .merge_dialects import MergeDialect, get_merge_dialect
from .table_spec import TableSyncSpec

logger = logging.getLogger(__name__)

SMALL_BATCH_LIMIT = 100
DEFAULT_BATCH_SIZE_THRESHOLD = 1000

Row = Dict[str, Any]


class BatchMergeEngine:
    """
    Merges rows into the table described by a ``TableSyncSpec``.

    The return value of ``merge_batch`` counts rows that were inserted or
    actually changed. Rows already identical on the target, rows rejected by
    a constraint and rows of rolled back chunks are not counted.
    """

    def __init__(self, small_batch_limit: int = SMALL_BATCH_LIMIT):
        if small_batch_limit < 1:
            raise ValueError("small_batch_limit must be at least 1")
        self.small_batch_limit = small_batch_limit

    async def merge_batch(
        self,
        connection: AsyncConnection,
        spec: TableSyncSpec,
        rows: Sequence[Row],
        batch_size_threshold: int = DEFAULT_BATCH_SIZE_THRESHOLD
    ) -> int:
        if batch_size_threshold < 1:
            raise ValueError("batch_size_threshold must be at least 1")
        if not rows:
            return 0

        prepared = self._prepare_rows(spec, rows)
        dialect = get_merge_dialect(connection)

        merged = 0
        for start in range(0, len(prepared), batch_size_threshold):
            chunk = prepared[start:start + batch_size_threshold]
            try:
                if len(chunk) <= self.small_batch_limit:
                    merged += await self._merge_rows(connection, dialect, spec, chunk)
                else:
                    merged += await self._merge_staged(connection, dialect, spec, chunk)
            except BatchMergeError:
                raise
            except Exception as e:
                logger.error(f"Merge of {len(chunk)} rows into {spec.table_name} failed: {e}")
                raise BatchMergeError(spec.table_name, len(chunk), e) from e

        return merged

    def _prepare_rows(self, spec: TableSyncSpec, rows: Sequence[Row]) -> List[Row]:
        """Project rows onto the write columns; a repeated key keeps its last row."""
        by_key: Dict[Any, Row] = {}
        for row in rows:
            projected = {name: row[name] for name in spec.write_columns}
            by_key[projected[spec.primary_key_column]] = projected
        return list(by_key.values())

    async def _merge_rows(
        self,
        connection: AsyncConnection,
        dialect: MergeDialect,
        spec: TableSyncSpec,
        chunk: List[Row]
    ) -> int:
        merged = 0
        async with connection.begin_nested():
            await dialect.enable_identity_insert(connection, spec)
            try:
                for row in chunk:
                    key = row[spec.primary_key_column]
                    try:
                        async with connection.begin_nested():
                            merged += await dialect.upsert_row(connection, spec, row)
                    except (IntegrityError, DataError) as e:
                        logger.warning(
                            f"Skipped {spec.table_name} row {spec.primary_key_column}={key}: {e.orig}"
                        )
            finally:
                await dialect.disable_identity_insert(connection, spec)

            if spec.is_identity and merged:
                await dialect.after_identity_write(connection, spec)

        return merged

    async def _merge_staged(
        self,
        connection: AsyncConnection,
        dialect: MergeDialect,
        spec: TableSyncSpec,
        chunk: List[Row]
    ) -> int:
        merged = 0
        fall_back = False

        # Rolling back this savepoint also discards the staging table
        async with connection.begin_nested():
            stage = await dialect.create_stage(connection, spec)
            await dialect.load_stage(connection, stage, chunk)

            try:
                async with connection.begin_nested():
                    await dialect.enable_identity_insert(connection, spec)
                    try:
                        merged = await dialect.merge_stage(connection, spec, stage)
                    finally:
                        await dialect.disable_identity_insert(connection, spec)
                    if spec.is_identity and merged:
                        await dialect.after_identity_write(connection, spec)
            except (IntegrityError, DataError) as e:
                logger.warning(
                    f"Staged merge into {spec.table_name} hit a constraint ({e.orig}); "
                    f"retrying {len(chunk)} rows one by one"
                )
                fall_back = True

            await dialect.drop_stage(connection, stage)

        if fall_back:
            return await self._merge_rows(connection, dialect, spec, chunk)

        logger.debug(f"Staged merge into {spec.table_name}: {merged} of {len(chunk)} rows changed")
        return merged
