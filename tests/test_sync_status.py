"""Tests for the sync-status tracker and stuck-sync recovery."""

import asyncio
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from jellyfin_stats_sync.database import Database
from jellyfin_stats_sync.models import SyncProgress, SyncStatus
from jellyfin_stats_sync.sync import RecoverySweeper, SyncStatusTracker, force_reset_server, reset_stuck_servers
from jellyfin_stats_sync.sync.recovery import stuck_message


@pytest.fixture
async def db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    database = Database(db_path)
    await database.connect()
    yield database
    await database.close()
    db_path.unlink(missing_ok=True)


@pytest.fixture
async def server(db: Database):
    return await db.upsert_server("home", "http://jellyfin:8096", "key")


class TestSyncStatusTracker:
    """Test the state transitions of a sync run."""

    @pytest.mark.asyncio
    async def test_initial_status(self, db, server):
        status = await SyncStatusTracker(db).get_status(server.id)

        assert status["syncStatus"] == "pending"
        assert status["syncProgress"] == "not_started"
        assert status["progressPercentage"] == 0
        assert status["isReady"] is False
        assert status["canRedirect"] is False

    @pytest.mark.asyncio
    async def test_run_through_phases(self, db, server):
        tracker = SyncStatusTracker(db)

        await tracker.start(server.id)
        status = await tracker.get_status(server.id)
        assert status["syncStatus"] == "syncing"
        assert status["syncProgress"] == "users"
        assert status["progressPercentage"] == 20
        assert status["lastSyncStarted"] is not None

        await tracker.advance(server.id, SyncProgress.ITEMS)
        assert (await tracker.get_status(server.id))["progressPercentage"] == 60

        await tracker.complete(server.id)
        status = await tracker.get_status(server.id)
        assert status["syncStatus"] == "completed"
        assert status["syncProgress"] == "completed"
        assert status["progressPercentage"] == 100
        assert status["isReady"] is True
        assert status["canRedirect"] is True
        assert status["syncError"] is None
        assert status["lastSyncCompleted"] is not None

    @pytest.mark.asyncio
    async def test_complete_with_errors(self, db, server):
        """Partial failures are kept as an informational error."""
        tracker = SyncStatusTracker(db)
        await tracker.start(server.id)
        await tracker.complete(server.id, "Items: broken item")

        status = await tracker.get_status(server.id)
        assert status["isReady"] is True
        assert status["syncError"] == "Items: broken item"

    @pytest.mark.asyncio
    async def test_fail_keeps_phase(self, db, server):
        tracker = SyncStatusTracker(db)
        await tracker.start(server.id)
        await tracker.advance(server.id, SyncProgress.LIBRARIES)
        await tracker.fail(server.id, "Failed to sync libraries: API Error: 500 - boom")

        status = await tracker.get_status(server.id)
        assert status["syncStatus"] == "failed"
        assert status["syncProgress"] == "libraries"
        assert status["syncError"] == "Failed to sync libraries: API Error: 500 - boom"
        assert status["isReady"] is False

    @pytest.mark.asyncio
    async def test_start_clears_error(self, db, server):
        tracker = SyncStatusTracker(db)
        await tracker.fail(server.id, "old failure")
        await tracker.start(server.id)

        assert (await tracker.get_status(server.id))["syncError"] is None

    @pytest.mark.asyncio
    async def test_unknown_server(self, db):
        assert await SyncStatusTracker(db).get_status(999) is None


class TestStuckRecovery:
    """Test the stuck-sync sweep and force reset."""

    @pytest.mark.asyncio
    async def test_sweep_resets_only_old_syncs(self, db):
        now = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)
        old = await db.upsert_server("old", "http://old:8096", "key")
        recent = await db.upsert_server("recent", "http://recent:8096", "key")
        idle = await db.upsert_server("idle", "http://idle:8096", "key")
        await db.update_server_sync(
            old.id, sync_status=SyncStatus.SYNCING, sync_progress=SyncProgress.ITEMS, last_sync_started=now - timedelta(hours=2)
        )
        await db.update_server_sync(
            recent.id,
            sync_status=SyncStatus.SYNCING,
            sync_progress=SyncProgress.USERS,
            last_sync_started=now - timedelta(minutes=10),
        )

        reset_ids = await reset_stuck_servers(db, now=now)

        assert reset_ids == [old.id]
        stored_old = await db.get_server(old.id)
        assert stored_old.sync_status == SyncStatus.COMPLETED
        assert stored_old.sync_progress == SyncProgress.COMPLETED
        assert "stuck" in stored_old.sync_error
        assert stored_old.sync_error == "Reset due to stuck sync (>1 hour)"

        stored_recent = await db.get_server(recent.id)
        assert stored_recent.sync_status == SyncStatus.SYNCING
        assert stored_recent.sync_progress == SyncProgress.USERS
        assert (await db.get_server(idle.id)).sync_status == SyncStatus.PENDING

    def test_stuck_message(self):
        assert stuck_message(timedelta(hours=1)) == "Reset due to stuck sync (>1 hour)"
        assert stuck_message(timedelta(hours=3)) == "Reset due to stuck sync (>3 hours)"
        assert stuck_message(timedelta(minutes=30)) == "Reset due to stuck sync (>30 minutes)"

    @pytest.mark.asyncio
    async def test_force_reset(self, db, server):
        await db.update_server_sync(
            server.id, sync_status=SyncStatus.SYNCING, sync_progress=SyncProgress.ITEMS, last_sync_started=datetime.now(UTC)
        )

        assert await force_reset_server(db, server.id) is True

        stored = await db.get_server(server.id)
        assert stored.sync_status == SyncStatus.COMPLETED
        assert stored.sync_progress == SyncProgress.COMPLETED
        assert stored.sync_error == "Force reset via utility"

    @pytest.mark.asyncio
    async def test_force_reset_unknown_server(self, db):
        assert await force_reset_server(db, 999) is False


class TestRecoverySweeper:
    """Test the background sweep loop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, db):
        sweeper = RecoverySweeper(db, interval_seconds=0.01)

        with patch.object(sweeper, "sweep", new_callable=AsyncMock) as mock_sweep:
            await sweeper.start()
            assert sweeper.running is True
            await asyncio.sleep(0.05)
            await sweeper.stop()

        assert sweeper.running is False
        assert mock_sweep.await_count >= 1

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self, db):
        sweeper = RecoverySweeper(db, interval_seconds=0.01)

        with patch.object(sweeper, "sweep", new_callable=AsyncMock) as mock_sweep:
            mock_sweep.side_effect = RuntimeError("boom")
            await sweeper.start()
            await asyncio.sleep(0.05)
            await sweeper.stop()

        assert mock_sweep.await_count >= 2
