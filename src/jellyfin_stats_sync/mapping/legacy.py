"""Legacy (pre-v2) export records -> canonical sessions.

Every value in these exports is a string, including numbers and booleans,
so all parsing is lenient and falls back to a default instead of raising.
"""

from datetime import UTC, datetime
from typing import Any

from ..models import Session
from .fields import optional_str, parse_bool_string, parse_datetime, parse_float, parse_int

TRANSCODE_HINT_FIELDS = ("transcoding_video_codec", "transcoding_audio_codec", "transcoding_container")


def _optional_int(value: Any) -> int | None:
    # Empty strings mean "not set" in these exports
    if not value:
        return None
    return parse_int(value, None)


def _optional_bool(value: Any) -> bool | None:
    if value is None or value == "":
        return None
    return parse_bool_string(value)


def map_legacy(record: dict[str, Any], server_id: int) -> Session | None:
    """Map one legacy session row.

    Returns None when the row has no ``id``. Raises ValueError when the row
    has an id but no user or item reference.
    """
    session_id = optional_str(record.get("id"))
    if not session_id:
        return None
    if not record.get("user_jellyfin_id") or not record.get("item_jellyfin_id"):
        raise ValueError("Missing required session fields")

    play_method = optional_str(record.get("play_method"))
    is_transcoded = any(record.get(field) for field in TRANSCODE_HINT_FIELDS) or play_method != "DirectPlay"
    reasons = record.get("transcoding_reasons")

    session = Session(
        id=session_id,
        server_id=server_id,
        user_id=str(record["user_jellyfin_id"]),
        user_server_id=str(record["user_jellyfin_id"]),
        item_id=str(record["item_jellyfin_id"]),
        user_name=record.get("user_name") or "Unknown User",
        item_name=optional_str(record.get("item_name")),
        client_name=optional_str(record.get("client_name")),
        device_name=optional_str(record.get("device_name")),
        device_id=optional_str(record.get("device_id")),
        application_version=optional_str(record.get("application_version")),
        play_method=play_method,
        play_duration=parse_int(record.get("play_duration")) or 0,
        remote_end_point=optional_str(record.get("remote_end_point")),
        series_id=optional_str(record.get("series_jellyfin_id")),
        series_name=optional_str(record.get("series_name")),
        season_id=optional_str(record.get("season_jellyfin_id")),
        start_time=parse_datetime(record.get("start_time")),
        end_time=parse_datetime(record.get("end_time")),
        last_activity_date=parse_datetime(record.get("last_activity_date")),
        last_playback_check_in=parse_datetime(record.get("last_playback_check_in")),
        position_ticks=parse_int(record.get("position_ticks")) or 0,
        runtime_ticks=_optional_int(record.get("runtime_ticks")),
        percent_complete=parse_float(record.get("percent_complete")),
        completed=parse_bool_string(record.get("completed")),
        is_paused=parse_bool_string(record.get("is_paused")),
        is_muted=parse_bool_string(record.get("is_muted")),
        # Active unless explicitly switched off
        is_active=record.get("is_active") != "false",
        volume_level=_optional_int(record.get("volume_level")),
        audio_stream_index=_optional_int(record.get("audio_stream_index")),
        subtitle_stream_index=_optional_int(record.get("subtitle_stream_index")),
        media_source_id=optional_str(record.get("media_source_id")),
        repeat_mode=optional_str(record.get("repeat_mode")),
        playback_order=optional_str(record.get("playback_order")),
        is_transcoded=is_transcoded,
        transcoding_width=_optional_int(record.get("transcoding_width")),
        transcoding_height=_optional_int(record.get("transcoding_height")),
        transcoding_video_codec=optional_str(record.get("transcoding_video_codec")),
        transcoding_audio_codec=optional_str(record.get("transcoding_audio_codec")),
        transcoding_container=optional_str(record.get("transcoding_container")),
        transcoding_is_video_direct=_optional_bool(record.get("transcoding_is_video_direct")),
        transcoding_is_audio_direct=_optional_bool(record.get("transcoding_is_audio_direct")),
        transcoding_bitrate=_optional_int(record.get("transcoding_bitrate")),
        transcoding_audio_channels=_optional_int(record.get("transcoding_audio_channels")),
        transcoding_hardware_acceleration_type=optional_str(record.get("transcoding_hardware_acceleration_type")),
        transcode_reasons=[str(reasons)] if reasons else None,
        raw_data=dict(record),
        created_at=parse_datetime(record.get("inserted_at")) or datetime.now(UTC),
        updated_at=parse_datetime(record.get("updated_at")) or datetime.now(UTC),
    )
    return session
