"""Playback Reporting plugin rows (TSV or JSON) -> canonical sessions."""

import re
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from ..models import Session
from .fields import TICKS_PER_SECOND, first_present, parse_datetime, parse_int

TSV_COLUMNS = (
    "timestamp",
    "userId",
    "itemId",
    "itemType",
    "itemName",
    "playMethod",
    "clientName",
    "deviceName",
    "durationSeconds",
)

# Key spellings seen in JSON exports, most specific first
JSON_ACCESSORS: dict[str, tuple[str, ...]] = {
    "timestamp": ("timestamp", "date", "time"),
    "userId": ("userId", "user_id", "UserId"),
    "itemId": ("itemId", "item_id", "ItemId"),
    "itemType": ("itemType", "item_type", "Type"),
    "itemName": ("itemName", "item_name", "Name"),
    "playMethod": ("playMethod", "play_method", "PlayMethod"),
    "clientName": ("clientName", "client_name", "Client"),
    "deviceName": ("deviceName", "device_name", "Device"),
    "durationSeconds": ("durationSeconds", "duration_seconds", "Duration"),
}

SERIES_PATTERN = re.compile(r"^(.+?)\s*-\s*s\d+e\d+", re.IGNORECASE)
SEASON_PATTERN = re.compile(r"s(\d+)e\d+", re.IGNORECASE)

# Namespace for ids derived from row contents
SESSION_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "jellyfin-stats-sync/playback-reporting")


def parse_tsv_line(line: str) -> dict[str, Any] | None:
    """Split one TSV line into a row; None if it is short or has a bad duration."""
    columns = line.strip().split("\t")
    if len(columns) < len(TSV_COLUMNS):
        return None

    duration = parse_int(columns[8], None)
    if duration is None:
        return None

    row: dict[str, Any] = {}
    for name, value in zip(TSV_COLUMNS[:8], columns[:8]):
        row[name] = value.strip() or None
    row["durationSeconds"] = duration
    return row


def normalize_json_row(record: dict[str, Any]) -> dict[str, Any]:
    """Pick canonical fields out of a JSON object using the accessor lists."""
    row = {name: first_present(record, keys) for name, keys in JSON_ACCESSORS.items()}
    row["durationSeconds"] = parse_int(row["durationSeconds"] if row["durationSeconds"] is not None else "0", None)
    return row


def extract_series(item_type: str | None, item_name: str | None) -> tuple[str | None, str | None]:
    """Series and season labels from names like "Show - s01e02 - Title" (episodes only)."""
    if not item_name or (item_type or "").lower() != "episode":
        return None, None

    series_name = None
    season = None
    series_match = SERIES_PATTERN.match(item_name)
    if series_match:
        series_name = series_match.group(1).strip()
    season_match = SEASON_PATTERN.search(item_name)
    if season_match:
        season = f"Season {int(season_match.group(1))}"
    return series_name, season


def session_id_for(server_id: int, row: dict[str, Any]) -> str:
    """Stable id so importing the same export twice does not duplicate sessions."""
    key = "|".join(
        str(part or "")
        for part in (server_id, row.get("timestamp"), row.get("userId"), row.get("itemId"), row.get("durationSeconds"))
    )
    return str(uuid.uuid5(SESSION_NAMESPACE, key))


def map_playback_reporting(row: dict[str, Any], server_id: int) -> Session | None:
    """Map a normalized row. Returns None when the timestamp is missing or invalid."""
    start_time = parse_datetime(row.get("timestamp"))
    if start_time is None:
        return None

    duration = row.get("durationSeconds") or 0
    end_time = start_time + timedelta(seconds=duration)
    play_method = row.get("playMethod")
    series_name, season = extract_series(row.get("itemType"), row.get("itemName"))
    runtime_ticks = duration * TICKS_PER_SECOND

    return Session(
        id=session_id_for(server_id, row),
        server_id=server_id,
        user_id=row.get("userId"),
        user_server_id=row.get("userId"),
        item_id=row.get("itemId"),
        user_name="Unknown User",
        item_name=row.get("itemName") or "Unknown Item",
        series_name=series_name,
        client_name=row.get("clientName") or "Unknown Client",
        device_name=row.get("deviceName") or "Unknown Device",
        play_method=play_method or "Unknown",
        play_duration=duration,
        start_time=start_time,
        end_time=end_time,
        last_activity_date=end_time,
        runtime_ticks=runtime_ticks,
        # Rows only exist for finished playback
        position_ticks=runtime_ticks,
        percent_complete=100.0 if duration else 0.0,
        completed=True,
        is_paused=False,
        is_muted=False,
        is_active=False,
        is_transcoded="transcode" in (play_method or "").lower(),
        raw_data={
            "source": "playback_reporting",
            "originalData": dict(row),
            "importedAt": datetime.now(UTC).isoformat(),
            "season": season,
        },
        created_at=start_time,
    )
