"""Live Jellyfin ``/Sessions`` payloads.

Two views are produced from the same payload: the dashboard view of what is
playing right now, and the canonical session saved once playback ends.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from ..models import Session
from .fields import format_ticks, nested, parse_datetime, progress_percent, ticks_to_seconds

PREROLL_PROVIDER = "prerolls.video"


class ActiveSessionUser(BaseModel):
    name: str | None = None
    jellyfin_id: str | None = None


class ActiveSessionItem(BaseModel):
    jellyfin_id: str | None = None
    name: str | None = None
    type: str | None = None
    overview: str | None = None
    series_name: str | None = None
    season_name: str | None = None
    index_number: int | None = None
    parent_index_number: int | None = None
    primary_image_tag: str | None = None


class TranscodingView(BaseModel):
    video_codec: str | None = None
    audio_codec: str | None = None
    container: str | None = None
    is_video_direct: bool | None = None
    is_audio_direct: bool | None = None
    bitrate: int | None = None
    width: int | None = None
    height: int | None = None
    audio_channels: int | None = None
    hardware_acceleration_type: str | None = None
    transcode_reasons: list[str] | None = None


class ActiveSession(BaseModel):
    """What the dashboard shows for a session that is playing right now."""

    session_key: str | None
    user: ActiveSessionUser
    item: ActiveSessionItem
    client: str | None = None
    device_name: str | None = None
    device_id: str | None = None
    position_ticks: int
    formatted_position: str
    runtime_ticks: int
    formatted_runtime: str
    progress_percent: int
    playback_duration: int
    last_activity_date: str | None = None
    is_paused: bool = False
    play_method: str | None = None
    transcoding_info: TranscodingView | None = None
    ip_address: str | None = None


def to_active_session(raw: dict[str, Any]) -> ActiveSession | None:
    """Dashboard view of a live session; None when nothing is playing."""
    item = raw.get("NowPlayingItem")
    if not item:
        return None

    play_state = raw.get("PlayState") or {}
    position = play_state.get("PositionTicks") or 0
    runtime = item.get("RunTimeTicks") or 0
    transcoding = raw.get("TranscodingInfo")

    return ActiveSession(
        session_key=raw.get("Id"),
        user=ActiveSessionUser(name=raw.get("UserName"), jellyfin_id=raw.get("UserId")),
        item=ActiveSessionItem(
            jellyfin_id=item.get("Id"),
            name=item.get("Name"),
            type=item.get("Type"),
            overview=item.get("Overview") or None,
            series_name=item.get("SeriesName") or None,
            season_name=item.get("SeasonName") or None,
            index_number=item.get("IndexNumber") or None,
            parent_index_number=item.get("ParentIndexNumber") or None,
            primary_image_tag=nested(item, "ImageTags", "Primary") or None,
        ),
        client=raw.get("Client"),
        device_name=raw.get("DeviceName"),
        device_id=raw.get("DeviceId"),
        position_ticks=position,
        formatted_position=format_ticks(position),
        runtime_ticks=runtime,
        formatted_runtime=format_ticks(runtime),
        progress_percent=progress_percent(position, runtime),
        playback_duration=ticks_to_seconds(position),
        last_activity_date=raw.get("LastActivityDate"),
        is_paused=bool(play_state.get("IsPaused")),
        play_method=play_state.get("PlayMethod") or None,
        transcoding_info=(
            TranscodingView(
                video_codec=transcoding.get("VideoCodec"),
                audio_codec=transcoding.get("AudioCodec"),
                container=transcoding.get("Container"),
                is_video_direct=transcoding.get("IsVideoDirect"),
                is_audio_direct=transcoding.get("IsAudioDirect"),
                bitrate=transcoding.get("Bitrate"),
                width=transcoding.get("Width"),
                height=transcoding.get("Height"),
                audio_channels=transcoding.get("AudioChannels"),
                hardware_acceleration_type=transcoding.get("HardwareAccelerationType"),
                transcode_reasons=transcoding.get("TranscodeReasons"),
            )
            if transcoding
            else None
        ),
        ip_address=raw.get("RemoteEndPoint") or None,
    )


def is_trackable(raw: dict[str, Any]) -> bool:
    """Playing something that counts as watching (no trailers or prerolls)."""
    item = raw.get("NowPlayingItem")
    if not item:
        return False
    if item.get("Type") == "Trailer":
        return False
    return PREROLL_PROVIDER not in (item.get("ProviderIds") or {})


def session_key(raw: dict[str, Any]) -> str:
    """Identity of one playback: user, device, and what is playing."""
    item = raw.get("NowPlayingItem") or {}
    parts = [raw.get("UserId") or "", raw.get("DeviceId") or ""]
    if item.get("SeriesId"):
        parts.append(item["SeriesId"])
    parts.append(item.get("Id") or "")
    return "|".join(parts)


class TrackedSession(BaseModel):
    """Playback followed across polls until it disappears from ``/Sessions``."""

    session_key: str
    session_id: str | None = None
    user_jellyfin_id: str | None = None
    user_name: str | None = None
    client_name: str | None = None
    device_id: str | None = None
    device_name: str | None = None
    application_version: str | None = None
    remote_end_point: str | None = None
    item_id: str | None = None
    item_name: str | None = None
    series_id: str | None = None
    series_name: str | None = None
    season_id: str | None = None
    position_ticks: int = 0
    runtime_ticks: int = 0
    play_duration: int = 0
    start_time: datetime
    last_update_time: datetime
    last_activity_date: datetime | None = None
    last_playback_check_in: datetime | None = None
    is_paused: bool = False
    is_muted: bool = False
    is_active: bool = True
    play_method: str | None = None
    volume_level: int | None = None
    audio_stream_index: int | None = None
    subtitle_stream_index: int | None = None
    media_source_id: str | None = None
    repeat_mode: str | None = None
    playback_order: str | None = None
    transcoding: dict[str, Any] | None = None


def _playback_fields(raw: dict[str, Any]) -> dict[str, Any]:
    """Fields refreshed on every poll; keys with no value are left out."""
    play_state = raw.get("PlayState") or {}
    fields = {
        "application_version": raw.get("ApplicationVersion"),
        "remote_end_point": raw.get("RemoteEndPoint"),
        "is_active": raw.get("IsActive"),
        "last_playback_check_in": parse_datetime(raw.get("LastPlaybackCheckIn")),
        "is_muted": play_state.get("IsMuted"),
        "volume_level": play_state.get("VolumeLevel"),
        "audio_stream_index": play_state.get("AudioStreamIndex"),
        "subtitle_stream_index": play_state.get("SubtitleStreamIndex"),
        "media_source_id": play_state.get("MediaSourceId"),
        "repeat_mode": play_state.get("RepeatMode"),
        "playback_order": play_state.get("PlaybackOrder"),
        "transcoding": raw.get("TranscodingInfo"),
    }
    return {key: value for key, value in fields.items() if value is not None and value != ""}


def track_session(raw: dict[str, Any], now: datetime | None = None) -> TrackedSession:
    """Start following a newly seen playback."""
    now = now or datetime.now(UTC)
    item = raw.get("NowPlayingItem") or {}
    play_state = raw.get("PlayState") or {}
    return TrackedSession(
        session_key=session_key(raw),
        session_id=raw.get("Id"),
        user_jellyfin_id=raw.get("UserId"),
        user_name=raw.get("UserName"),
        client_name=raw.get("Client"),
        device_id=raw.get("DeviceId"),
        device_name=raw.get("DeviceName"),
        item_id=item.get("Id"),
        item_name=item.get("Name"),
        series_id=item.get("SeriesId"),
        series_name=item.get("SeriesName"),
        season_id=item.get("SeasonId"),
        position_ticks=play_state.get("PositionTicks") or 0,
        runtime_ticks=item.get("RunTimeTicks") or 0,
        start_time=now,
        last_update_time=now,
        last_activity_date=parse_datetime(raw.get("LastActivityDate")),
        is_paused=bool(play_state.get("IsPaused")),
        play_method=play_state.get("PlayMethod"),
        **_playback_fields(raw),
    )


def _seconds_between(later: datetime, earlier: datetime) -> int:
    return int((later - earlier).total_seconds())


def update_tracked(tracked: TrackedSession, raw: dict[str, Any], now: datetime | None = None) -> TrackedSession:
    """Fold a fresh poll into a tracked playback, accumulating watch time."""
    now = now or datetime.now(UTC)
    play_state = raw.get("PlayState") or {}
    currently_paused = bool(play_state.get("IsPaused"))
    last_activity = parse_datetime(raw.get("LastActivityDate"))
    last_paused = parse_datetime(raw.get("LastPausedDate"))

    duration = tracked.play_duration
    if not tracked.is_paused and currently_paused and last_paused:
        duration += _seconds_between(last_paused, tracked.last_update_time)
    elif not tracked.is_paused and not currently_paused and last_activity:
        duration += _seconds_between(last_activity, tracked.last_update_time)

    return tracked.model_copy(
        update={
            "position_ticks": play_state.get("PositionTicks") or 0,
            "is_paused": currently_paused,
            "last_activity_date": last_activity,
            "last_update_time": now,
            "play_duration": max(duration, 0),
            **_playback_fields(raw),
        }
    )


def final_duration(tracked: TrackedSession, now: datetime | None = None) -> int:
    """Watch time once playback has ended; unpaused time since the last poll counts."""
    now = now or datetime.now(UTC)
    duration = tracked.play_duration
    if not tracked.is_paused:
        duration += max(_seconds_between(now, tracked.last_update_time), 0)
    return duration


def map_live_session(tracked: TrackedSession, server_id: int, now: datetime | None = None) -> Session:
    """Canonical session for a playback that just ended."""
    now = now or datetime.now(UTC)
    duration = final_duration(tracked, now)
    percent = tracked.position_ticks / tracked.runtime_ticks * 100 if tracked.runtime_ticks > 0 else 0.0
    transcoding = tracked.transcoding or {}

    return Session(
        id=str(uuid.uuid4()),
        server_id=server_id,
        user_id=tracked.user_jellyfin_id,
        user_server_id=tracked.user_jellyfin_id,
        item_id=tracked.item_id,
        user_name=tracked.user_name,
        item_name=tracked.item_name,
        series_id=tracked.series_id,
        series_name=tracked.series_name,
        season_id=tracked.season_id,
        client_name=tracked.client_name,
        device_name=tracked.device_name,
        device_id=tracked.device_id,
        application_version=tracked.application_version,
        remote_end_point=tracked.remote_end_point,
        start_time=tracked.start_time,
        end_time=now,
        last_activity_date=tracked.last_activity_date,
        last_playback_check_in=tracked.last_playback_check_in,
        play_duration=duration,
        position_ticks=tracked.position_ticks,
        runtime_ticks=tracked.runtime_ticks,
        percent_complete=percent,
        completed=percent > 90.0,
        is_paused=tracked.is_paused,
        is_muted=tracked.is_muted,
        is_active=tracked.is_active,
        play_method=tracked.play_method,
        volume_level=tracked.volume_level,
        audio_stream_index=tracked.audio_stream_index,
        subtitle_stream_index=tracked.subtitle_stream_index,
        media_source_id=tracked.media_source_id,
        repeat_mode=tracked.repeat_mode,
        playback_order=tracked.playback_order,
        is_transcoded=bool(transcoding) or (tracked.play_method or "DirectPlay") != "DirectPlay",
        transcoding_width=transcoding.get("Width"),
        transcoding_height=transcoding.get("Height"),
        transcoding_video_codec=transcoding.get("VideoCodec"),
        transcoding_audio_codec=transcoding.get("AudioCodec"),
        transcoding_container=transcoding.get("Container"),
        transcoding_is_video_direct=transcoding.get("IsVideoDirect"),
        transcoding_is_audio_direct=transcoding.get("IsAudioDirect"),
        transcoding_bitrate=transcoding.get("Bitrate"),
        transcoding_completion_percentage=transcoding.get("CompletionPercentage"),
        transcoding_audio_channels=transcoding.get("AudioChannels"),
        transcoding_hardware_acceleration_type=transcoding.get("HardwareAccelerationType"),
        transcode_reasons=transcoding.get("TranscodeReasons"),
        raw_data={"sessionKey": tracked.session_key, "transcodeReasons": transcoding.get("TranscodeReasons")},
        created_at=now,
        updated_at=now,
    )


def map_live_record(raw: dict[str, Any], server_id: int) -> Session | None:
    """Canonical session straight from a ``/Sessions`` entry; None when nothing is playing."""
    if not raw.get("NowPlayingItem"):
        return None
    tracked = track_session(raw)
    return map_live_session(tracked, server_id, now=tracked.start_time)
