"""Tests for the streaming import pipeline."""

import json
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from jellyfin_stats_sync.database import Database
from jellyfin_stats_sync.importing import ActivityLatch, ImportFailedError, ImportPipeline, iter_bytes, stream
from jellyfin_stats_sync.importing.errors import NO_SESSIONS_MESSAGE
from jellyfin_stats_sync.mapping import SessionMapper
from jellyfin_stats_sync.models import ImportState

TSV_EPISODE = "2024-05-01T10:00:00Z\tu1\ti1\tEpisode\tShow - s01e02 - Title\tDirectPlay\tWeb\tChrome\t600"


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


def chunks(payload, chunk_size: int = 16):
    data = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return iter_bytes(data, chunk_size)


def jellystats_record(record_id: str, **fields):
    return {
        "Id": record_id,
        "UserName": "x",
        "PlaybackDuration": 120,
        "ActivityDateInserted": "2024-01-01T00:00:00Z",
        "PlayMethod": "DirectPlay",
        **fields,
    }


class TestActivityLatch:
    """Test Jellystats layout detection."""

    def test_bare_array(self):
        latch = ActivityLatch()
        assert latch.records_for({"Id": "a"}) == [{"Id": "a"}]
        assert latch.state == ImportState.BARE_ARRAY

    def test_wrapper_then_bare(self):
        """Once a wrapper is seen, bare objects are ignored."""
        latch = ActivityLatch()
        assert latch.records_for({"jf_playback_activity": [{"Id": "a"}]}) == [{"Id": "a"}]
        assert latch.state == ImportState.WRAPPER_DETECTED
        assert latch.records_for({"Id": "b"}) == []
        assert latch.ignored == 1


class TestJellystatsImport:
    """Test Jellystats uploads."""

    @pytest.mark.asyncio
    async def test_wrapped_export(self, db, server):
        payload = [{"jf_playback_activity": [jellystats_record("a")]}]
        result = await ImportPipeline(db, server.id).import_jellystats(chunks(payload))

        assert result.imported_count == 1
        assert result.total_count == 1
        assert result.error_count == 0
        assert result.message == "Successfully imported 1 of 1 sessions from Jellystats"

        stored = await db.get_session("a")
        assert stored.server_id == server.id
        assert stored.play_duration == 120

    @pytest.mark.asyncio
    async def test_wrapper_object(self, db, server):
        payload = {"jf_playback_activity": [jellystats_record("a"), jellystats_record("b")]}
        result = await ImportPipeline(db, server.id).import_jellystats(chunks(payload))

        assert result.imported_count == 2
        assert result.total_count == 2

    @pytest.mark.asyncio
    async def test_bare_array(self, db, server):
        payload = [jellystats_record("a"), {"UserName": "no id"}, jellystats_record("b")]
        result = await ImportPipeline(db, server.id).import_jellystats(chunks(payload))

        assert result.imported_count == 2
        assert result.total_count == 3
        assert result.skipped_count == 1
        assert result.error_count == 0

    @pytest.mark.asyncio
    async def test_rows_imported_by_jellystats_are_skipped(self, db, server):
        payload = [{"jf_playback_activity": [jellystats_record("a"), jellystats_record("b", imported=True)]}]
        result = await ImportPipeline(db, server.id).import_jellystats(chunks(payload))

        assert result.imported_count == 1
        assert result.skipped_count == 1
        assert await db.get_session("b") is None

    @pytest.mark.asyncio
    async def test_bare_objects_after_wrapper_ignored(self, db, server):
        payload = [{"jf_playback_activity": [jellystats_record("a")]}, jellystats_record("b")]
        result = await ImportPipeline(db, server.id).import_jellystats(chunks(payload))

        assert result.imported_count == 1
        assert result.total_count == 1
        assert await db.get_session("b") is None

    @pytest.mark.asyncio
    async def test_wrapped_export_is_decoded_record_by_record(self, db, server):
        """A large wrapper array is never decoded in one piece."""
        payload = [{"jf_playback_activity": [jellystats_record(f"r-{i}", Notes="x" * 200) for i in range(500)]}]
        data = json.dumps(payload).encode()
        decoded_sizes = []
        real_loads = json.loads

        def recording_loads(text, *args, **kwargs):
            decoded_sizes.append(len(text))
            return real_loads(text, *args, **kwargs)

        with patch.object(stream.json, "loads", side_effect=recording_loads):
            result = await ImportPipeline(db, server.id).import_jellystats(iter_bytes(data, 4096))

        assert result.imported_count == 500
        assert result.total_count == 500
        assert max(decoded_sizes) < len(data) // 100

    @pytest.mark.asyncio
    async def test_empty_wrapper_then_bare(self, db, server):
        payload = [{"jf_playback_activity": []}, jellystats_record("b")]

        with pytest.raises(ImportFailedError):
            await ImportPipeline(db, server.id).import_jellystats(chunks(payload))

        assert await db.get_session("b") is None

    @pytest.mark.asyncio
    async def test_import_twice_is_idempotent(self, db, server):
        payload = [jellystats_record("a"), jellystats_record("b")]

        first = await ImportPipeline(db, server.id).import_jellystats(chunks(payload))
        second = await ImportPipeline(db, server.id).import_jellystats(chunks(payload))

        assert first.total_count == second.total_count == 2
        assert first.imported_count == 2
        assert second.imported_count == 0
        assert await db.count_sessions(server.id) == 2

    @pytest.mark.asyncio
    async def test_missing_item_reference_is_nulled(self, db, server):
        await db.upsert_mirror("users", {"id": "user-1", "server_id": server.id, "name": "alice"})
        payload = [jellystats_record("a", UserId="user-1", NowPlayingItemId="missing-item")]

        result = await ImportPipeline(db, server.id).import_jellystats(chunks(payload))

        assert result.imported_count == 1
        stored = await db.get_session("a")
        assert stored.user_id == "user-1"
        assert stored.item_id is None
        assert stored.raw_data["missingReferences"] == [
            "itemId 'missing-item' not found in items table - setting to null"
        ]

    @pytest.mark.asyncio
    async def test_empty_upload(self, db, server):
        with pytest.raises(ImportFailedError) as exc_info:
            await ImportPipeline(db, server.id).import_jellystats(chunks([]))

        assert exc_info.value.error == NO_SESSIONS_MESSAGE
        assert exc_info.value.message == "Import failed - no sessions found"

    @pytest.mark.asyncio
    async def test_mapper_failure_is_counted(self, db, server):
        """A record that blows up is counted and the rest still import."""
        mapper = SessionMapper()
        real_map = mapper.map_record
        calls = 0

        async def flaky(source_format, record, server_id):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")
            return await real_map(source_format, record, server_id)

        mapper.map_record = AsyncMock(side_effect=flaky)
        payload = [jellystats_record("a"), jellystats_record("b")]
        result = await ImportPipeline(db, server.id, mapper=mapper).import_jellystats(chunks(payload))

        assert result.error_count == 1
        assert result.imported_count == 1
        assert result.total_count == 2


class TestLegacyImport:
    """Test legacy uploads."""

    @pytest.mark.asyncio
    async def test_record_missing_item(self, db, server):
        payload = [{"id": "l-1", "user_jellyfin_id": "user-1", "play_duration": "30"}]
        result = await ImportPipeline(db, server.id).import_legacy(chunks(payload))

        assert result.error_count == 1
        assert result.imported_count == 0
        assert result.total_count == 1

    @pytest.mark.asyncio
    async def test_valid_records(self, db, server):
        payload = [
            {"id": "l-1", "user_jellyfin_id": "user-1", "item_jellyfin_id": "item-1", "play_duration": "30"},
            {"id": "l-2", "user_jellyfin_id": "user-1", "item_jellyfin_id": "item-2", "play_duration": "45"},
        ]
        result = await ImportPipeline(db, server.id).import_legacy(chunks(payload))

        assert result.imported_count == 2
        assert result.message == "Successfully imported 2 of 2 sessions from legacy database"
        stored = await db.get_session("l-2")
        assert stored.play_duration == 45
        # Neither user nor item exists locally
        assert stored.user_id is None
        assert stored.item_id is None
        assert len(stored.raw_data["missingReferences"]) == 2


class TestPlaybackReportingImport:
    """Test Playback Reporting uploads."""

    @pytest.mark.asyncio
    async def test_tsv(self, db, server):
        data = "\n".join([TSV_EPISODE, "too\tfew\tcolumns", ""]).encode()
        result = await ImportPipeline(db, server.id).import_playback_reporting(iter_bytes(data, 10), is_json=False)

        assert result.imported_count == 1
        assert result.total_count == 2
        assert result.skipped_count == 1
        assert result.error_count == 0
        assert result.message == "Successfully imported 1 of 2 sessions from Playback Reporting"

    @pytest.mark.asyncio
    async def test_tsv_import_twice(self, db, server):
        data = TSV_EPISODE.encode()
        first = await ImportPipeline(db, server.id).import_playback_reporting(iter_bytes(data), is_json=False)
        second = await ImportPipeline(db, server.id).import_playback_reporting(iter_bytes(data), is_json=False)

        assert first.imported_count == 1
        assert second.imported_count == 0
        assert second.total_count == 1

    @pytest.mark.asyncio
    async def test_tsv_user_ids_follow_reconciliation(self, db, server):
        await db.upsert_mirror("users", {"id": "u1", "server_id": server.id, "name": "alice"})
        unknown_user = TSV_EPISODE.replace("\tu1\t", "\tu2\t").replace("2024-05-01T10", "2024-05-02T10")
        data = "\n".join([TSV_EPISODE, unknown_user]).encode()
        result = await ImportPipeline(db, server.id).import_playback_reporting(iter_bytes(data), is_json=False)

        assert result.imported_count == 2
        stored = {session.start_time.day: session async for session in db.iter_sessions(server.id)}
        assert stored[1].user_id == "u1"
        assert stored[1].user_server_id == "u1"
        assert stored[2].user_id is None
        assert stored[2].user_server_id is None

    @pytest.mark.asyncio
    async def test_json_wrapped(self, db, server):
        payload = {
            "data": [
                {"date": "2024-05-01T10:00:00Z", "user_id": "u1", "item_id": "i1", "Duration": 90},
                {"date": "not a date", "user_id": "u1"},
            ]
        }
        result = await ImportPipeline(db, server.id).import_playback_reporting(chunks(payload), is_json=True)

        assert result.imported_count == 1
        assert result.total_count == 2
        assert result.skipped_count == 1

    @pytest.mark.asyncio
    async def test_only_bad_lines(self, db, server):
        """Lines that cannot be parsed still count as processed."""
        data = b"garbage line\nmore garbage\n"
        result = await ImportPipeline(db, server.id).import_playback_reporting(iter_bytes(data), is_json=False)

        assert result.total_count == 2
        assert result.imported_count == 0

    @pytest.mark.asyncio
    async def test_empty_tsv(self, db, server):
        with pytest.raises(ImportFailedError):
            await ImportPipeline(db, server.id).import_playback_reporting(iter_bytes(b"\n\n"), is_json=False)
