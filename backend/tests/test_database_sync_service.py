"""
Tests for the sync orchestrator (push_all, pull_all, full_sync, incremental_sync)
"""

from datetime import timedelta

import pytest

from enrollsync.models import GradeLevel, Guardian, SchoolYear, Section, Student
from enrollsync.services.sync import (
    DatabaseSyncService,
    SyncDirection,
    SyncEntity,
    SyncRegistry,
    TableSyncState,
)
from enrollsync.services.sync.results import utcnow
from sync_helpers import (
    BASE_TIME, create_tables, fetch_rows, guardian_row, insert_rows, make_engine, student_row,
)


def school_year_row(school_year_id, label):
    return {
        "school_year_id": school_year_id,
        "school_year": label,
        "is_active": school_year_id == 1,
        "is_open": False,
        "created_at": BASE_TIME,
        "updated_at": BASE_TIME,
    }


def service_for(local_engine, remote_engine, *entities, **kwargs):
    registry = SyncRegistry(list(entities)) if entities else None
    return DatabaseSyncService(local_engine, remote_engine, registry=registry, **kwargs)


class TestDatabaseSyncService:
    """Test cases for DatabaseSyncService"""

    @pytest.mark.asyncio
    async def test_pull_then_push_student_example(self, local_engine, remote_engine):
        later = BASE_TIME + timedelta(days=1)
        await insert_rows(local_engine, Student, [student_row("S00001", first_name="Ana")])
        await insert_rows(remote_engine, Student, [
            student_row("S00001", first_name="Ana B.", updated_at=later)
        ])
        service = service_for(local_engine, remote_engine, SyncEntity(Student, "student_id"))

        pulled = await service.pull_all()
        assert pulled.success
        assert pulled.records_pulled == 1
        assert (await fetch_rows(local_engine, Student))[0]["first_name"] == "Ana B."

        remote_before = await fetch_rows(remote_engine, Student)
        pushed = await service.push_all()

        assert pushed.success
        assert pushed.records_pushed == 0
        assert await fetch_rows(remote_engine, Student) == remote_before

    @pytest.mark.asyncio
    async def test_full_sync_is_idempotent(self, local_engine, remote_engine):
        await insert_rows(local_engine, GradeLevel, [
            {"gradelevel_id": 1, "grade_level_name": "Grade 1", "is_active": True}
        ])
        await insert_rows(local_engine, Section, [{
            "section_id": 1, "section_name": "Sampaguita", "gradelevel_id": 1,
            "capacity": 40, "created_at": BASE_TIME, "updated_at": BASE_TIME,
        }])
        await insert_rows(local_engine, Guardian, [guardian_row(1), guardian_row(2)])
        await insert_rows(local_engine, Student, [student_row("S00001", guardian_id=1)])
        await insert_rows(remote_engine, SchoolYear, [school_year_row(1, "2024-2025")])
        service = service_for(local_engine, remote_engine)

        first = await service.full_sync()
        second = await service.full_sync()

        assert first.success
        assert first.records_pushed == 5
        assert first.records_pulled == 1
        assert second.success
        assert second.records_pushed == 0
        assert second.records_pulled == 0
        assert second.message == "Full sync completed successfully. Pushed: 0, Pulled: 0"

    @pytest.mark.asyncio
    async def test_full_sync_pushes_every_table_before_pulling(self, local_engine, remote_engine):
        service = service_for(
            local_engine, remote_engine,
            SyncEntity(Guardian, "guardian_id"), SyncEntity(Student, "student_id"),
        )

        result = await service.full_sync()

        assert [(t.table_name, t.direction) for t in result.tables] == [
            ("tbl_Guardians", SyncDirection.PUSH),
            ("tbl_Students", SyncDirection.PUSH),
            ("tbl_Guardians", SyncDirection.PULL),
            ("tbl_Students", SyncDirection.PULL),
        ]

    @pytest.mark.asyncio
    async def test_failed_table_does_not_stop_later_tables(self, local_engine, empty_remote_engine):
        # The remote has no tbl_GradeLevel at all
        await create_tables(empty_remote_engine, Guardian, SchoolYear)
        await insert_rows(local_engine, Guardian, [guardian_row(1)])
        await insert_rows(local_engine, GradeLevel, [
            {"gradelevel_id": 1, "grade_level_name": "Grade 1", "is_active": True}
        ])
        await insert_rows(local_engine, SchoolYear, [school_year_row(1, "2024-2025")])
        service = service_for(
            local_engine, empty_remote_engine,
            SyncEntity(Guardian, "guardian_id"),
            SyncEntity(GradeLevel, "gradelevel_ID"),
            SyncEntity(SchoolYear, "school_year_id"),
        )

        result = await service.push_all()

        assert not result.success
        assert result.records_pushed == 2
        assert len(result.errors) == 1
        assert "tbl_GradeLevel" in result.errors[0]
        assert [t.state for t in result.tables] == [
            TableSyncState.COMPLETED, TableSyncState.FAILED, TableSyncState.COMPLETED,
        ]
        assert result.message.startswith("Push completed with 1 error(s)")
        assert len(await fetch_rows(empty_remote_engine, Guardian)) == 1
        assert len(await fetch_rows(empty_remote_engine, SchoolYear)) == 1

    @pytest.mark.asyncio
    async def test_unintrospectable_entity_skipped(self, local_engine, remote_engine):
        await insert_rows(local_engine, SchoolYear, [school_year_row(1, "2024-2025")])
        service = service_for(
            local_engine, remote_engine,
            SyncEntity(Guardian, "guardian_code"),
            SyncEntity(SchoolYear, "school_year_id"),
        )

        result = await service.push_all()

        assert not result.success
        assert result.records_pushed == 1
        assert "guardian_code" in result.errors[0]

    @pytest.mark.asyncio
    async def test_unreachable_remote_fails_whole_run(self, local_engine, tmp_path):
        remote = make_engine(tmp_path / "missing" / "remote.db")
        try:
            service = service_for(local_engine, remote, connect_timeout_seconds=2)

            assert await service.test_remote_connection() is False

            result = await service.full_sync()
        finally:
            await remote.dispose()

        assert not result.success
        assert result.message.startswith("Full sync failed")
        assert result.records_pushed == 0
        assert result.records_pulled == 0
        assert result.tables == ()
        assert result.errors

    @pytest.mark.asyncio
    async def test_remote_connection_ok(self, local_engine, remote_engine):
        service = service_for(local_engine, remote_engine)
        assert await service.test_remote_connection() is True

    @pytest.mark.asyncio
    async def test_incremental_sync_boundary(self, local_engine, remote_engine):
        since = BASE_TIME
        stamps = [since - timedelta(seconds=1), since, since + timedelta(seconds=1)]
        await insert_rows(local_engine, Guardian, [
            guardian_row(i + 1, updated_at=stamp) for i, stamp in enumerate(stamps)
        ])
        await insert_rows(remote_engine, Guardian, [
            guardian_row(i + 11, updated_at=stamp) for i, stamp in enumerate(stamps)
        ])
        service = service_for(local_engine, remote_engine, SyncEntity(Guardian, "guardian_id"))

        result = await service.incremental_sync(since)

        assert result.success
        assert result.records_pushed == 2
        assert result.records_pulled == 2
        local_ids = [row["guardian_id"] for row in await fetch_rows(local_engine, Guardian)]
        remote_ids = [row["guardian_id"] for row in await fetch_rows(remote_engine, Guardian)]
        assert local_ids == [1, 2, 3, 12, 13]
        assert remote_ids == [2, 3, 11, 12, 13]

    @pytest.mark.asyncio
    async def test_incremental_sync_default_window(self, local_engine, remote_engine):
        await insert_rows(local_engine, Guardian, [
            guardian_row(1, updated_at=utcnow() - timedelta(days=1)),
            guardian_row(2, updated_at=utcnow() - timedelta(days=30)),
        ])
        service = service_for(
            local_engine, remote_engine, SyncEntity(Guardian, "guardian_id"),
            incremental_default_days=7,
        )

        result = await service.incremental_sync()

        assert result.records_pushed == 1
        assert [row["guardian_id"] for row in await fetch_rows(remote_engine, Guardian)] == [1]
