"""
Dialect-specific merge statements.

SQLite and PostgreSQL merge with ``INSERT .. ON CONFLICT DO UPDATE`` guarded
by an "any column differs" predicate, so rows that already match are not
touched and not counted. SQL Server uses ``MERGE`` with an
``EXISTS (.. EXCEPT ..)`` change predicate and needs ``IDENTITY_INSERT``
switched on to write explicit identity values.
"""

import logging
import uuid
from typing import Any, Dict, List, Sequence

from sqlalchemy import Column, MetaData, Table, or_, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncConnection

from .errors import SyncError
from .table_spec import TableSyncSpec

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class MergeDialect:
    """Per-backend statements used by the batch merge engine."""

    name = "generic"

    async def enable_identity_insert(self, conn: AsyncConnection, spec: TableSyncSpec) -> None:
        """Allow explicit values for an identity key. No-op where not needed."""

    async def disable_identity_insert(self, conn: AsyncConnection, spec: TableSyncSpec) -> None:
        """Undo enable_identity_insert."""

    async def after_identity_write(self, conn: AsyncConnection, spec: TableSyncSpec) -> None:
        """Hook run after explicit identity values were written."""

    async def upsert_row(self, conn: AsyncConnection, spec: TableSyncSpec, row: Row) -> int:
        raise NotImplementedError

    async def create_stage(self, conn: AsyncConnection, spec: TableSyncSpec) -> Table:
        stage = Table(
            self._stage_name(spec),
            MetaData(),
            *[
                Column(
                    name,
                    spec.table.c[name].type,
                    primary_key=(name == spec.primary_key_column),
                    autoincrement=False,
                )
                for name in spec.write_columns
            ],
            prefixes=self._stage_prefixes(),
        )
        await conn.run_sync(stage.create)
        return stage

    async def load_stage(self, conn: AsyncConnection, stage: Table, rows: Sequence[Row]) -> None:
        # executemany; drivers batch it (insertmanyvalues / fast_executemany)
        await conn.execute(stage.insert(), list(rows))

    async def merge_stage(self, conn: AsyncConnection, spec: TableSyncSpec, stage: Table) -> int:
        raise NotImplementedError

    async def drop_stage(self, conn: AsyncConnection, stage: Table) -> None:
        await conn.run_sync(stage.drop)

    def _stage_name(self, spec: TableSyncSpec) -> str:
        return f"stage_{spec.table_name.lower()}_{uuid.uuid4().hex[:8]}"

    def _stage_prefixes(self) -> List[str]:
        return ["TEMPORARY"]


class OnConflictMergeDialect(MergeDialect):
    """INSERT .. ON CONFLICT DO UPDATE (SQLite, PostgreSQL)."""

    def __init__(self, name: str, insert_factory):
        self.name = name
        self._insert = insert_factory

    def _on_conflict(self, stmt, spec: TableSyncSpec):
        target = spec.table
        update_columns = spec.column_names
        if not update_columns:
            return stmt.on_conflict_do_nothing(index_elements=[spec.primary_key_column])

        return stmt.on_conflict_do_update(
            index_elements=[spec.primary_key_column],
            set_={name: stmt.excluded[name] for name in update_columns},
            where=or_(*[
                target.c[name].is_distinct_from(stmt.excluded[name])
                for name in update_columns
            ]),
        )

    async def upsert_row(self, conn: AsyncConnection, spec: TableSyncSpec, row: Row) -> int:
        stmt = self._on_conflict(self._insert(spec.table).values(**row), spec)
        result = await conn.execute(stmt)
        return max(result.rowcount, 0)

    async def merge_stage(self, conn: AsyncConnection, spec: TableSyncSpec, stage: Table) -> int:
        columns = spec.write_columns
        # The WHERE keeps SQLite from reading ON CONFLICT as a join constraint
        source = select(*[stage.c[name] for name in columns]).where(text("1 = 1"))
        stmt = self._insert(spec.table).from_select(list(columns), source)
        result = await conn.execute(self._on_conflict(stmt, spec))
        return max(result.rowcount, 0)


class PostgresMergeDialect(OnConflictMergeDialect):

    def __init__(self):
        super().__init__("postgresql", postgresql.insert)

    async def after_identity_write(self, conn: AsyncConnection, spec: TableSyncSpec) -> None:
        # Explicit keys do not advance the sequence; re-seed it past the max
        table = conn.dialect.identifier_preparer.format_table(spec.table)
        pk = conn.dialect.identifier_preparer.quote(spec.primary_key_column)
        await conn.execute(
            text(
                f"SELECT setval(pg_get_serial_sequence(:table_name, :pk_name), "
                f"COALESCE((SELECT MAX({pk}) FROM {table}), 0) + 1, false)"
            ),
            {"table_name": table, "pk_name": spec.primary_key_column},
        )


class SqlServerMergeDialect(MergeDialect):
    """T-SQL MERGE with an EXCEPT-based change predicate."""

    name = "mssql"

    def _quote(self, conn: AsyncConnection, name: str) -> str:
        return conn.dialect.identifier_preparer.quote(name)

    def _stage_name(self, spec: TableSyncSpec) -> str:
        return f"#stage_{uuid.uuid4().hex[:12]}"

    def _stage_prefixes(self) -> List[str]:
        return []

    async def enable_identity_insert(self, conn: AsyncConnection, spec: TableSyncSpec) -> None:
        if spec.is_identity:
            table = conn.dialect.identifier_preparer.format_table(spec.table)
            await conn.execute(text(f"SET IDENTITY_INSERT {table} ON"))

    async def disable_identity_insert(self, conn: AsyncConnection, spec: TableSyncSpec) -> None:
        if spec.is_identity:
            table = conn.dialect.identifier_preparer.format_table(spec.table)
            await conn.execute(text(f"SET IDENTITY_INSERT {table} OFF"))

    def _merge_sql(self, conn: AsyncConnection, spec: TableSyncSpec, source_sql: str) -> str:
        q = lambda name: self._quote(conn, name)
        table = conn.dialect.identifier_preparer.format_table(spec.table)
        pk = q(spec.primary_key_column)
        all_columns = ", ".join(q(name) for name in spec.write_columns)
        source_values = ", ".join(f"source.{q(name)}" for name in spec.write_columns)

        sql = f"MERGE INTO {table} WITH (HOLDLOCK) AS target USING {source_sql} AS source " \
              f"ON target.{pk} = source.{pk} "
        if spec.column_names:
            source_cols = ", ".join(f"source.{q(name)}" for name in spec.column_names)
            target_cols = ", ".join(f"target.{q(name)}" for name in spec.column_names)
            assignments = ", ".join(f"target.{q(name)} = source.{q(name)}" for name in spec.column_names)
            sql += f"WHEN MATCHED AND EXISTS (SELECT {source_cols} EXCEPT SELECT {target_cols}) " \
                   f"THEN UPDATE SET {assignments} "
        sql += f"WHEN NOT MATCHED BY TARGET THEN INSERT ({all_columns}) VALUES ({source_values});"
        return sql

    async def upsert_row(self, conn: AsyncConnection, spec: TableSyncSpec, row: Row) -> int:
        params = {f"p{i}": row[name] for i, name in enumerate(spec.write_columns)}
        source = "(SELECT " + ", ".join(
            f":p{i} AS {self._quote(conn, name)}" for i, name in enumerate(spec.write_columns)
        ) + ")"
        result = await conn.execute(text(self._merge_sql(conn, spec, source)), params)
        return max(result.rowcount, 0)

    async def merge_stage(self, conn: AsyncConnection, spec: TableSyncSpec, stage: Table) -> int:
        source = self._quote(conn, stage.name)
        result = await conn.execute(text(self._merge_sql(conn, spec, source)))
        return max(result.rowcount, 0)


_DIALECTS = {
    "sqlite": lambda: OnConflictMergeDialect("sqlite", sqlite.insert),
    "postgresql": PostgresMergeDialect,
    "mssql": SqlServerMergeDialect,
}


def get_merge_dialect(conn: AsyncConnection) -> MergeDialect:
    name = conn.dialect.name
    factory = _DIALECTS.get(name)
    if factory is None:
        raise SyncError(f"Unsupported database dialect for sync: {name}")
    return factory()
