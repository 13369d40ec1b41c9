"""
Tests for the sync status broadcaster
"""

from datetime import datetime
from unittest.mock import AsyncMock, Mock

import pytest

from enrollsync.services.sync import SyncStatusService


@pytest.fixture
def status():
    return SyncStatusService()


class TestSyncStatusService:
    """Test cases for SyncStatusService"""

    def test_initial_snapshot(self, status):
        snapshot = status.get_snapshot()

        assert snapshot.is_online is True
        assert snapshot.is_syncing is False
        assert snapshot.last_sync_time is None
        assert snapshot.pending_operations_count == 0
        assert snapshot.errors == ()

    def test_set_online_notifies_only_on_change(self, status):
        listener = Mock()
        status.subscribe(listener)

        status.set_online(True)
        status.set_online(False)
        status.set_online(False)
        status.set_online(True)

        assert listener.call_count == 2
        assert listener.call_args_list[0].args[0].is_online is False
        assert listener.call_args_list[1].args[0].is_online is True

    def test_pending_count_notifies_only_on_change(self, status):
        listener = Mock()
        status.subscribe(listener)

        status.update_pending_count(3)
        status.update_pending_count(3)

        assert listener.call_count == 1
        assert listener.call_args.args[0].pending_operations_count == 3

    def test_errors_keep_ten_most_recent(self, status):
        for i in range(12):
            status.add_error(f"error {i}")

        assert status.errors == [f"error {i}" for i in range(2, 12)]

    def test_clear_errors(self, status):
        listener = Mock()
        status.add_error("remote timed out")
        status.subscribe(listener)

        status.clear_errors()

        assert status.errors == []
        listener.assert_called_once()

    def test_update_last_sync_time(self, status):
        listener = Mock()
        status.subscribe(listener)
        when = datetime(2024, 6, 3, 8, 15)

        status.update_last_sync_time(when)

        assert status.last_sync_time == when
        assert listener.call_args.args[0].last_sync_time == when

    def test_unsubscribe(self, status):
        listener = Mock()
        unsubscribe = status.subscribe(listener)

        unsubscribe()
        status.set_syncing(True)

        listener.assert_not_called()
        assert status.is_syncing is True

    def test_failing_listener_does_not_block_others(self, status):
        broken = Mock(side_effect=RuntimeError("listener crashed"))
        healthy = Mock()
        status.subscribe(broken)
        status.subscribe(healthy)

        status.set_online(False)

        healthy.assert_called_once()

    def test_snapshot_to_dict(self, status):
        status.update_last_sync_time(datetime(2024, 6, 3, 8, 15))
        status.add_error("boom")

        assert status.get_snapshot().to_dict() == {
            "is_online": True,
            "is_syncing": False,
            "last_sync_time": "2024-06-03T08:15:00",
            "pending_operations_count": 0,
            "errors": ["boom"],
        }


class TestLastSyncHydration:
    """Test cases for loading last_sync_time from history"""

    @pytest.mark.asyncio
    async def test_hydrates_once_on_first_read(self):
        loaded = datetime(2024, 6, 1, 7, 0)
        loader = AsyncMock(return_value=loaded)
        status = SyncStatusService(last_sync_loader=loader)
        listener = Mock()
        status.subscribe(listener)

        # The first read does not wait for the history lookup
        assert status.last_sync_time is None
        await status.wait_hydrated()

        assert status.last_sync_time == loaded
        status.get_snapshot()
        loader.assert_awaited_once()
        listener.assert_called_once()

    @pytest.mark.asyncio
    async def test_newer_sync_not_overwritten_by_history(self):
        loader = AsyncMock(return_value=datetime(2024, 6, 1, 7, 0))
        status = SyncStatusService(last_sync_loader=loader)
        finished = datetime(2024, 6, 3, 9, 0)

        status.get_snapshot()
        status.update_last_sync_time(finished)
        await status.wait_hydrated()

        assert status.last_sync_time == finished

    @pytest.mark.asyncio
    async def test_loader_failure_is_tolerated(self):
        loader = AsyncMock(side_effect=RuntimeError("history table missing"))
        status = SyncStatusService(last_sync_loader=loader)

        assert status.last_sync_time is None
        await status.wait_hydrated()

        assert status.last_sync_time is None

    def test_no_running_loop_defers_hydration(self):
        loader = AsyncMock(return_value=datetime(2024, 6, 1, 7, 0))
        status = SyncStatusService(last_sync_loader=loader)

        assert status.last_sync_time is None
        loader.assert_not_called()
