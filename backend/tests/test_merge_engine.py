"""
Tests for the batch merge engine
"""

from unittest.mock import Mock

import pytest
from sqlalchemy.dialects import mssql, mysql, postgresql

from enrollsync.models import Guardian, Student, StudentRequirement
from enrollsync.services.sync import (
    BatchMergeEngine,
    BatchMergeError,
    SyncEntity,
    SyncError,
    introspect_entity,
)
from enrollsync.services.sync.merge_dialects import (
    PostgresMergeDialect,
    SqlServerMergeDialect,
    get_merge_dialect,
)
from sync_helpers import BASE_TIME, create_tables, fetch_rows, guardian_row, insert_rows, student_row


class RecordingMergeEngine(BatchMergeEngine):
    """Remembers which path each chunk took."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.paths = []

    async def _merge_rows(self, connection, dialect, spec, chunk):
        self.paths.append(("rows", len(chunk)))
        return await super()._merge_rows(connection, dialect, spec, chunk)

    async def _merge_staged(self, connection, dialect, spec, chunk):
        self.paths.append(("staged", len(chunk)))
        return await super()._merge_staged(connection, dialect, spec, chunk)


def requirement_row(requirement_id, student_id="S00001", **overrides):
    row = {
        "requirement_id": requirement_id,
        "student_id": student_id,
        "requirement_name": f"Requirement {requirement_id}",
        "status": "submitted",
        "is_verified": False,
        "requirement_type": "document",
        "updated_at": BASE_TIME,
    }
    row.update(overrides)
    return row


@pytest.fixture
def guardian_spec():
    return introspect_entity(SyncEntity(Guardian, "guardian_id"))


@pytest.fixture
def requirement_spec():
    return introspect_entity(SyncEntity(StudentRequirement, "requirement_id"))


async def merge(engine, merge_engine, spec, rows, threshold=1000):
    async with engine.begin() as conn:
        return await merge_engine.merge_batch(conn, spec, rows, threshold)


class TestBatchMergeEngine:
    """Test cases for BatchMergeEngine"""

    @pytest.mark.asyncio
    async def test_small_batch_inserts_rows(self, remote_engine, guardian_spec):
        merge_engine = RecordingMergeEngine()
        rows = [guardian_row(i) for i in range(1, 4)]

        merged = await merge(remote_engine, merge_engine, guardian_spec, rows)

        assert merged == 3
        assert merge_engine.paths == [("rows", 3)]
        assert await fetch_rows(remote_engine, Guardian) == rows

    @pytest.mark.asyncio
    async def test_identical_rows_not_counted(self, remote_engine, guardian_spec):
        merge_engine = BatchMergeEngine()
        rows = [guardian_row(i) for i in range(1, 4)]
        await merge(remote_engine, merge_engine, guardian_spec, rows)

        assert await merge(remote_engine, merge_engine, guardian_spec, rows) == 0

    @pytest.mark.asyncio
    async def test_changed_row_updated(self, remote_engine, guardian_spec):
        merge_engine = BatchMergeEngine()
        rows = [guardian_row(i) for i in range(1, 4)]
        await merge(remote_engine, merge_engine, guardian_spec, rows)

        rows[1] = guardian_row(2, contact_num="09998887777")
        merged = await merge(remote_engine, merge_engine, guardian_spec, rows)

        assert merged == 1
        stored = await fetch_rows(remote_engine, Guardian)
        assert stored[1]["contact_num"] == "09998887777"

    @pytest.mark.asyncio
    async def test_large_chunk_uses_staged_merge(self, remote_engine, guardian_spec):
        merge_engine = RecordingMergeEngine()
        rows = [guardian_row(i) for i in range(1, 151)]

        assert await merge(remote_engine, merge_engine, guardian_spec, rows) == 150
        assert merge_engine.paths == [("staged", 150)]
        assert len(await fetch_rows(remote_engine, Guardian)) == 150

        changed = [guardian_row(i, relationship="Father") if i <= 5 else guardian_row(i) for i in range(1, 151)]
        assert await merge(remote_engine, merge_engine, guardian_spec, changed) == 5
        assert await merge(remote_engine, merge_engine, guardian_spec, changed) == 0

    @pytest.mark.asyncio
    async def test_rows_split_by_threshold(self, remote_engine, guardian_spec):
        merge_engine = RecordingMergeEngine()
        rows = [guardian_row(i) for i in range(1, 251)]

        merged = await merge(remote_engine, merge_engine, guardian_spec, rows, threshold=100)

        assert merged == 250
        assert merge_engine.paths == [("rows", 100), ("rows", 100), ("rows", 50)]

    @pytest.mark.asyncio
    async def test_threshold_does_not_change_final_state(
        self, remote_engine, empty_remote_engine, guardian_spec
    ):
        await create_tables(empty_remote_engine, Guardian)
        rows = [guardian_row(i) for i in range(1, 251)]

        one_by_one = await merge(remote_engine, BatchMergeEngine(), guardian_spec, rows, threshold=1)
        single_chunk = await merge(empty_remote_engine, BatchMergeEngine(), guardian_spec, rows, threshold=1000)

        assert one_by_one == single_chunk == 250
        assert await fetch_rows(remote_engine, Guardian) == await fetch_rows(empty_remote_engine, Guardian)

    @pytest.mark.asyncio
    async def test_repeated_key_last_row_wins(self, remote_engine, guardian_spec):
        rows = [guardian_row(1, first_name="Rosa"), guardian_row(1, first_name="Rosalinda")]

        merged = await merge(remote_engine, BatchMergeEngine(), guardian_spec, rows)

        assert merged == 1
        stored = await fetch_rows(remote_engine, Guardian)
        assert [row["first_name"] for row in stored] == ["Rosalinda"]

    @pytest.mark.asyncio
    async def test_constraint_violation_skips_row(self, remote_engine, requirement_spec):
        await insert_rows(remote_engine, Student, [student_row("S00001")])
        rows = [
            requirement_row(1),
            requirement_row(2, student_id="S99999"),
            requirement_row(3),
        ]

        merged = await merge(remote_engine, BatchMergeEngine(), requirement_spec, rows)

        assert merged == 2
        stored = await fetch_rows(remote_engine, StudentRequirement)
        assert [row["requirement_id"] for row in stored] == [1, 3]

    @pytest.mark.asyncio
    async def test_staged_merge_falls_back_to_row_by_row(self, remote_engine, requirement_spec):
        await insert_rows(remote_engine, Student, [student_row("S00001")])
        merge_engine = RecordingMergeEngine()
        rows = [requirement_row(i) for i in range(1, 121)]
        rows[59] = requirement_row(60, student_id="S99999")

        merged = await merge(remote_engine, merge_engine, requirement_spec, rows)

        assert merged == 119
        assert merge_engine.paths == [("staged", 120), ("rows", 120)]
        stored = await fetch_rows(remote_engine, StudentRequirement)
        assert len(stored) == 119
        assert 60 not in {row["requirement_id"] for row in stored}

    @pytest.mark.asyncio
    async def test_empty_batch(self, remote_engine, guardian_spec):
        assert await merge(remote_engine, BatchMergeEngine(), guardian_spec, []) == 0

    @pytest.mark.asyncio
    async def test_invalid_threshold(self, remote_engine, guardian_spec):
        with pytest.raises(ValueError):
            await merge(remote_engine, BatchMergeEngine(), guardian_spec, [guardian_row(1)], threshold=0)

    def test_invalid_small_batch_limit(self):
        with pytest.raises(ValueError):
            BatchMergeEngine(small_batch_limit=0)

    @pytest.mark.asyncio
    async def test_unexpected_failure_raises_batch_merge_error(self, empty_remote_engine, guardian_spec):
        with pytest.raises(BatchMergeError) as exc_info:
            await merge(empty_remote_engine, BatchMergeEngine(), guardian_spec, [guardian_row(1)])

        assert exc_info.value.table_name == "tbl_Guardians"


class _Savepoint:

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class RecordingConnection:
    """Stands in for an AsyncConnection; compiles and records each statement."""

    def __init__(self, dialect, fail_on=None):
        self.dialect = dialect
        self.fail_on = fail_on
        self.statements = []
        self.parameters = []

    async def execute(self, statement, parameters=None):
        sql = str(statement.compile(dialect=self.dialect))
        self.statements.append(sql)
        self.parameters.append(parameters)
        if self.fail_on and self.fail_on in sql:
            raise RuntimeError("connection reset")
        return Mock(rowcount=1)

    async def run_sync(self, fn, *args, **kwargs):
        self.statements.append(f"run_sync:{fn.__name__}")
        self.parameters.append(None)

    def begin_nested(self):
        return _Savepoint()


def full_student_row(student_id):
    return student_row(
        student_id, suffix=None, birthdate=None, sex=None, lrn=None, grade_level=None, student_type=None
    )


def identity_insert(conn, table, state):
    return f"SET IDENTITY_INSERT {conn.dialect.identifier_preparer.format_table(table)} {state}"


class TestSqlServerMerge:
    """Test cases for the SQL Server merge statements"""

    @pytest.mark.asyncio
    async def test_identity_insert_brackets_row_merges(self, guardian_spec):
        conn = RecordingConnection(mssql.dialect())

        merged = await BatchMergeEngine().merge_batch(conn, guardian_spec, [guardian_row(1), guardian_row(2)])

        assert merged == 2
        table = Guardian.__table__
        assert conn.statements[0] == identity_insert(conn, table, "ON")
        assert conn.statements[-1] == identity_insert(conn, table, "OFF")
        merges = conn.statements[1:-1]
        assert len(merges) == 2
        assert all(sql.startswith("MERGE INTO") for sql in merges)
        assert conn.parameters[1]["p0"] == 1

    @pytest.mark.asyncio
    async def test_identity_insert_switched_off_after_failure(self, guardian_spec):
        conn = RecordingConnection(mssql.dialect(), fail_on="MERGE INTO")

        with pytest.raises(BatchMergeError):
            await BatchMergeEngine().merge_batch(conn, guardian_spec, [guardian_row(1)])

        table = Guardian.__table__
        assert conn.statements[0] == identity_insert(conn, table, "ON")
        assert conn.statements[-1] == identity_insert(conn, table, "OFF")

    @pytest.mark.asyncio
    async def test_natural_key_table_skips_identity_insert(self):
        spec = introspect_entity(SyncEntity(Student, "student_id"))
        conn = RecordingConnection(mssql.dialect())

        await BatchMergeEngine().merge_batch(conn, spec, [full_student_row("S00001")])

        assert len(conn.statements) == 1
        assert "IDENTITY_INSERT" not in conn.statements[0]

    @pytest.mark.asyncio
    async def test_merge_statement_updates_only_changed_rows(self, guardian_spec):
        conn = RecordingConnection(mssql.dialect())

        await SqlServerMergeDialect().upsert_row(conn, guardian_spec, guardian_row(1))

        sql = conn.statements[0]
        assert "WITH (HOLDLOCK) AS target" in sql
        assert "ON target.guardian_id = source.guardian_id" in sql
        assert "WHEN MATCHED AND EXISTS (SELECT source.first_name" in sql
        assert "EXCEPT SELECT target.first_name" in sql
        assert "THEN UPDATE SET target.first_name = source.first_name" in sql
        assert "WHEN NOT MATCHED BY TARGET THEN INSERT (guardian_id, first_name" in sql
        assert "DELETE" not in sql

    @pytest.mark.asyncio
    async def test_staged_merge_uses_session_temp_table(self, guardian_spec):
        conn = RecordingConnection(mssql.dialect())
        rows = [guardian_row(i) for i in range(1, 151)]

        merged = await BatchMergeEngine().merge_batch(conn, guardian_spec, rows)

        assert merged == 1
        table = Guardian.__table__
        assert conn.statements[0] == "run_sync:create"
        assert conn.statements[1].startswith("INSERT INTO [#stage_")
        assert conn.statements[2] == identity_insert(conn, table, "ON")
        assert conn.statements[3].startswith("MERGE INTO")
        assert "USING [#stage_" in conn.statements[3]
        assert conn.statements[4] == identity_insert(conn, table, "OFF")
        assert conn.statements[5] == "run_sync:drop"
        assert len(conn.parameters[1]) == 150

    def test_dialect_lookup(self):
        assert isinstance(get_merge_dialect(RecordingConnection(mssql.dialect())), SqlServerMergeDialect)
        assert isinstance(get_merge_dialect(RecordingConnection(postgresql.dialect())), PostgresMergeDialect)

        with pytest.raises(SyncError):
            get_merge_dialect(RecordingConnection(mysql.dialect()))


class TestPostgresMerge:
    """Test cases for the PostgreSQL merge statements"""

    @pytest.mark.asyncio
    async def test_upsert_guarded_by_distinct_check(self, guardian_spec):
        conn = RecordingConnection(postgresql.dialect())

        await PostgresMergeDialect().upsert_row(conn, guardian_spec, guardian_row(1))

        sql = conn.statements[0]
        assert "ON CONFLICT (guardian_id) DO UPDATE SET" in sql
        assert "first_name = excluded.first_name" in sql
        assert "IS DISTINCT FROM excluded.first_name" in sql

    @pytest.mark.asyncio
    async def test_identity_sequence_reseeded_after_write(self, guardian_spec):
        conn = RecordingConnection(postgresql.dialect())

        await BatchMergeEngine().merge_batch(conn, guardian_spec, [guardian_row(1), guardian_row(2)])

        assert len(conn.statements) == 3
        table_name = conn.dialect.identifier_preparer.format_table(Guardian.__table__)
        setval = conn.statements[-1]
        assert "setval(pg_get_serial_sequence(" in setval
        assert f"SELECT MAX(guardian_id) FROM {table_name}" in setval
        assert conn.parameters[-1] == {"table_name": table_name, "pk_name": "guardian_id"}

    @pytest.mark.asyncio
    async def test_natural_key_table_not_reseeded(self):
        spec = introspect_entity(SyncEntity(Student, "student_id"))
        conn = RecordingConnection(postgresql.dialect())

        await BatchMergeEngine().merge_batch(conn, spec, [full_student_row("S00001")])

        assert len(conn.statements) == 1
        assert "setval" not in conn.statements[0]
