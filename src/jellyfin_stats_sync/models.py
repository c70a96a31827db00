"""Data models for jellyfin-stats-sync."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SyncStatus(str, Enum):
    """Outer sync state of a server."""

    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncProgress(str, Enum):
    """Phase reached by the current (or last) sync run."""

    NOT_STARTED = "not_started"
    USERS = "users"
    LIBRARIES = "libraries"
    ITEMS = "items"
    ACTIVITIES = "activities"
    COMPLETED = "completed"


# Phase order used for progress percentages
SYNC_PHASES: list[SyncProgress] = list(SyncProgress)


class SourceFormat(str, Enum):
    """Shapes a session record can arrive in."""

    LIVE = "live"
    JELLYSTATS = "jellystats"
    LEGACY = "legacy"
    PLAYBACK_REPORTING = "playback_reporting"
    BACKUP = "backup"


class ImportState(str, Enum):
    """Layout detected while streaming a Jellystats export."""

    UNKNOWN = "unknown"
    WRAPPER_DETECTED = "wrapper_detected"
    BARE_ARRAY = "bare_array"


class SyncResultStatus(str, Enum):
    """Outcome of a full sync run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class Session(BaseModel):
    """Canonical playback session."""

    id: str
    server_id: int
    user_id: str | None = None
    item_id: str | None = None

    # Snapshot of names at the time of playback
    user_name: str | None = None
    user_server_id: str | None = None
    item_name: str | None = None
    series_id: str | None = None
    series_name: str | None = None
    season_id: str | None = None
    client_name: str | None = None
    device_name: str | None = None
    device_id: str | None = None
    application_version: str | None = None
    remote_end_point: str | None = None

    # Timing
    start_time: datetime | None = None
    end_time: datetime | None = None
    last_activity_date: datetime | None = None
    last_playback_check_in: datetime | None = None
    play_duration: int = 0
    position_ticks: int | None = None
    runtime_ticks: int | None = None
    percent_complete: float = 0.0

    # Playback state
    completed: bool = False
    is_paused: bool = False
    is_muted: bool = False
    is_active: bool = False
    play_method: str | None = None
    volume_level: int | None = None
    audio_stream_index: int | None = None
    subtitle_stream_index: int | None = None
    media_source_id: str | None = None
    repeat_mode: str | None = None
    playback_order: str | None = None

    # Source media
    video_codec: str | None = None
    audio_codec: str | None = None
    resolution_width: int | None = None
    resolution_height: int | None = None
    video_bit_rate: int | None = None
    audio_bit_rate: int | None = None
    audio_channels: int | None = None
    audio_sample_rate: int | None = None
    video_range_type: str | None = None

    # Transcoding
    is_transcoded: bool = False
    transcoding_width: int | None = None
    transcoding_height: int | None = None
    transcoding_video_codec: str | None = None
    transcoding_audio_codec: str | None = None
    transcoding_container: str | None = None
    transcoding_is_video_direct: bool | None = None
    transcoding_is_audio_direct: bool | None = None
    transcoding_bitrate: int | None = None
    transcoding_completion_percentage: float | None = None
    transcoding_audio_channels: int | None = None
    transcoding_hardware_acceleration_type: str | None = None
    transcode_reasons: list[str] | None = None

    raw_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Server(BaseModel):
    """A Jellyfin server and its sync bookkeeping."""

    id: int
    name: str
    url: str
    api_key: str
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_progress: SyncProgress = SyncProgress.NOT_STARTED
    sync_error: str | None = None
    last_sync_started: datetime | None = None
    last_sync_completed: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ImportResult(BaseModel):
    """Counters reported by an import run."""

    imported_count: int = 0
    total_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    message: str = ""
    extra: dict[str, Any] = Field(default_factory=dict)


class SyncResult(BaseModel):
    """Result of a full sync run."""

    status: SyncResultStatus
    server_id: int
    counts: dict[str, int] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
