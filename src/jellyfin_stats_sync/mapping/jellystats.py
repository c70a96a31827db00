"""Jellystats export records -> canonical sessions."""

from typing import Any

from ..models import Session
from .fields import first_stream, nested, optional_str, parse_datetime, parse_int, parse_number

ACTIVITY_WRAPPER_KEY = "jf_playback_activity"


def map_jellystats(record: dict[str, Any], server_id: int) -> Session | None:
    """Map one ``jf_playback_activity`` row.

    Returns None without a session Id, or for rows Jellystats itself imported.
    """
    session_id = optional_str(record.get("Id"))
    if not session_id or record.get("imported") is True:
        return None

    play_state = record.get("PlayState") or {}
    video = first_stream(record.get("MediaStreams"), "Video")
    audio = first_stream(record.get("MediaStreams"), "Audio")

    episode_id = optional_str(record.get("EpisodeId"))
    now_playing_id = optional_str(record.get("NowPlayingItemId"))
    is_transcoded = record.get("TranscodingInfo") is not None or record.get("PlayMethod") != "DirectPlay"
    inserted_at = parse_datetime(record.get("ActivityDateInserted"))

    session = Session(
        id=session_id,
        server_id=server_id,
        user_id=optional_str(record.get("UserId")),
        user_server_id=optional_str(record.get("UserId")),
        item_id=episode_id or now_playing_id,
        user_name=record.get("UserName") or "Unknown User",
        item_name=optional_str(record.get("NowPlayingItemName")),
        client_name=optional_str(record.get("Client")),
        device_name=optional_str(record.get("DeviceName")),
        device_id=optional_str(record.get("DeviceId")),
        application_version=optional_str(record.get("ApplicationVersion")),
        play_method=optional_str(record.get("PlayMethod")),
        play_duration=parse_number(record.get("PlaybackDuration")),
        remote_end_point=optional_str(record.get("RemoteEndPoint")),
        # Episodes carry the series in NowPlayingItemId
        series_id=now_playing_id if episode_id else None,
        series_name=optional_str(record.get("SeriesName")),
        season_id=optional_str(record.get("SeasonId")),
        position_ticks=parse_int(play_state.get("PositionTicks"), None) or None,
        last_activity_date=inserted_at,
        audio_stream_index=parse_int(play_state.get("AudioStreamIndex"), None),
        subtitle_stream_index=parse_int(play_state.get("SubtitleStreamIndex"), None),
        media_source_id=optional_str(play_state.get("MediaSourceId")),
        repeat_mode=optional_str(play_state.get("RepeatMode")),
        playback_order=optional_str(play_state.get("PlaybackOrder")),
        completed=False,
        is_paused=bool(record.get("IsPaused") or nested(record, "PlayState", "IsPaused")),
        is_muted=bool(play_state.get("IsMuted")),
        is_active=True,
        is_transcoded=is_transcoded,
        video_codec=optional_str(video.get("Codec")),
        audio_codec=optional_str(audio.get("Codec")),
        resolution_width=video.get("Width") or None,
        resolution_height=video.get("Height") or None,
        video_bit_rate=video.get("BitRate") or None,
        audio_bit_rate=audio.get("BitRate") or None,
        audio_channels=audio.get("Channels") or None,
        audio_sample_rate=audio.get("SampleRate") or None,
        video_range_type=optional_str(video.get("VideoRange")),
        raw_data=dict(record),
    )
    if inserted_at is not None:
        session.created_at = inserted_at

    if is_transcoded:
        session.transcoding_width = video.get("Width") or None
        session.transcoding_height = video.get("Height") or None
        session.transcoding_video_codec = optional_str(video.get("Codec"))
        session.transcoding_audio_codec = optional_str(audio.get("Codec"))
        session.transcoding_container = optional_str(record.get("OriginalContainer"))
        session.transcode_reasons = ["Unknown"]

    return session


def activity_entries(element: Any) -> list[dict[str, Any]] | None:
    """Entries of a ``{"jf_playback_activity": [...]}`` wrapper, or None for a bare record."""
    if isinstance(element, dict):
        entries = element.get(ACTIVITY_WRAPPER_KEY)
        if isinstance(entries, list):
            return entries
    return None
