"""Tests for the live session poller."""

import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from jellyfin_stats_sync.database import Database
from jellyfin_stats_sync.jellyfin import JellyfinConnectivityError
from jellyfin_stats_sync.sync import SessionPoller

T0 = datetime(2024, 6, 1, 20, 0, tzinfo=UTC)


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


def live_session(item_type: str = "Movie", last_activity: datetime = T0, **item_fields) -> dict:
    return {
        "Id": "session-1",
        "UserId": "user-1",
        "UserName": "alice",
        "DeviceId": "device-1",
        "DeviceName": "TV",
        "Client": "Jellyfin Web",
        "LastActivityDate": last_activity.isoformat(),
        "NowPlayingItem": {
            "Id": "item-1",
            "Name": "Movie",
            "Type": item_type,
            "RunTimeTicks": 72_000_000_000,
            **item_fields,
        },
        "PlayState": {"PositionTicks": 36_000_000_000, "IsPaused": False, "PlayMethod": "DirectPlay"},
    }


def make_client(*polls) -> MagicMock:
    client = MagicMock()
    client.server.name = "home"
    client.get_sessions = AsyncMock(side_effect=list(polls))
    return client


class TestPollServer:
    """Test tracking playbacks across polls."""

    @pytest.mark.asyncio
    async def test_finished_playback_is_saved(self, db, server):
        client = make_client([live_session()], [])
        poller = SessionPoller(db, {server.id: client})

        assert await poller.poll_server(server.id, client, now=T0) == 0
        assert len(poller.get_active_sessions(server.id)) == 1

        assert await poller.poll_server(server.id, client, now=T0 + timedelta(seconds=30)) == 1
        assert poller.get_active_sessions(server.id) == []
        assert await db.count_sessions(server.id) == 1

    @pytest.mark.asyncio
    async def test_saved_session_fields(self, db, server):
        await db.upsert_mirror("users", {"id": "user-1", "server_id": server.id, "name": "alice"})
        client = make_client([live_session()], [])
        poller = SessionPoller(db, {server.id: client})

        await poller.poll_server(server.id, client, now=T0)
        await poller.poll_server(server.id, client, now=T0 + timedelta(seconds=30))

        saved = [session async for session in db.iter_sessions(server.id)]
        assert len(saved) == 1
        session = saved[0]
        assert session.play_duration == 30
        assert session.user_id == "user-1"
        # Item not synced yet
        assert session.item_id is None
        assert session.item_name == "Movie"
        assert session.percent_complete == 50.0
        assert session.completed is False
        assert session.raw_data["missingReferences"] == ["itemId 'item-1' not found in items table - setting to null"]

    @pytest.mark.asyncio
    async def test_short_playback_is_dropped(self, db, server):
        client = make_client([live_session()], [])
        poller = SessionPoller(db, {server.id: client})

        await poller.poll_server(server.id, client, now=T0)
        assert await poller.poll_server(server.id, client, now=T0 + timedelta(seconds=1)) == 0
        assert await db.count_sessions(server.id) == 0

    @pytest.mark.asyncio
    async def test_trailers_are_ignored(self, db, server):
        client = make_client([live_session(item_type="Trailer")])
        poller = SessionPoller(db, {server.id: client})

        await poller.poll_server(server.id, client, now=T0)
        assert poller.get_active_sessions(server.id) == []

    @pytest.mark.asyncio
    async def test_prerolls_are_ignored(self, db, server):
        client = make_client([live_session(ProviderIds={"prerolls.video": "x"})])
        poller = SessionPoller(db, {server.id: client})

        await poller.poll_server(server.id, client, now=T0)
        assert poller.get_active_sessions(server.id) == []

    @pytest.mark.asyncio
    async def test_ongoing_playback_accumulates(self, db, server):
        later = T0 + timedelta(seconds=10)
        client = make_client([live_session()], [live_session(last_activity=later)])
        poller = SessionPoller(db, {server.id: client})

        await poller.poll_server(server.id, client, now=T0)
        assert await poller.poll_server(server.id, client, now=later) == 0

        active = poller.get_active_sessions(server.id)
        assert len(active) == 1
        assert active[0].play_duration == 10
        assert active[0].start_time == T0

    @pytest.mark.asyncio
    async def test_failed_save_does_not_lose_other_playbacks(self, db, server):
        """A save that fails is retried on the next poll; the rest are saved right away."""
        second = {**live_session(), "DeviceId": "device-2"}
        client = make_client([live_session(), second], [], [])
        poller = SessionPoller(db, {server.id: client})
        real_insert = db.insert_session
        calls = []

        async def flaky_insert(session, commit=True):
            calls.append(session.device_id)
            if len(calls) == 1:
                raise RuntimeError("disk I/O error")
            return await real_insert(session, commit=commit)

        await poller.poll_server(server.id, client, now=T0)
        with patch.object(db, "insert_session", side_effect=flaky_insert):
            assert await poller.poll_server(server.id, client, now=T0 + timedelta(seconds=30)) == 1
            assert await poller.poll_server(server.id, client, now=T0 + timedelta(seconds=60)) == 1

        assert calls == ["device-1", "device-2", "device-1"]
        assert await db.count_sessions(server.id) == 2
        # The retried playback keeps the time it actually ended
        durations = sorted([session.play_duration async for session in db.iter_sessions(server.id)])
        assert durations == [30, 30]


class TestPollAll:
    """Test polling every server."""

    @pytest.mark.asyncio
    async def test_errors_do_not_stop_other_servers(self, db, server):
        other = await db.upsert_server("other", "http://other:8096", "key")
        broken = make_client()
        broken.get_sessions = AsyncMock(side_effect=JellyfinConnectivityError("unreachable"))
        working = make_client([live_session()])
        poller = SessionPoller(db, {server.id: broken, other.id: working})

        assert await poller.poll_all() == 0
        assert len(poller.get_active_sessions(other.id)) == 1

    @pytest.mark.asyncio
    async def test_status(self, db, server):
        client = make_client([live_session()])
        poller = SessionPoller(db, {server.id: client}, interval_seconds=5.0)
        await poller.poll_all()

        assert poller.get_status() == {
            "running": False,
            "interval_seconds": 5.0,
            "tracked_sessions": {server.id: 1},
        }

    @pytest.mark.asyncio
    async def test_unexpected_errors_do_not_stop_other_servers(self, db, server):
        other = await db.upsert_server("other", "http://other:8096", "key")
        broken = make_client()
        broken.get_sessions = AsyncMock(side_effect=RuntimeError("unexpected payload"))
        working = make_client([live_session()])
        poller = SessionPoller(db, {server.id: broken, other.id: working})

        assert await poller.poll_all() == 0
        assert len(poller.get_active_sessions(other.id)) == 1
