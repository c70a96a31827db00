"""Field accessors and lenient value parsers shared by the session mappers."""

import math
import re
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

TICKS_PER_SECOND = 10_000_000

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def first_present(record: Mapping[str, Any], keys: Sequence[str]) -> Any:
    """Return the value of the first key that holds something.

    Keys are tried in order; ``None`` and empty strings fall through to the
    next key, while ``0`` and ``False`` are real values.
    """
    for key in keys:
        value = record.get(key)
        if value is None or value == "":
            continue
        return value
    return None


def nested(record: Mapping[str, Any] | None, *path: str) -> Any:
    """Walk nested dicts, returning None as soon as a level is missing."""
    current: Any = record
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def parse_int(value: Any, default: int | None = 0) -> int | None:
    """Parse a leading integer from numbers or strings; never raises."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else default
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        if match:
            return int(match.group(1))
    return default


def parse_number(value: Any, default: int = 0) -> int:
    """Numeric conversion of a whole value ("120" or 120.0), truncated to int."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return int(number) or default


def parse_float(value: Any, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def parse_bool_string(value: Any) -> bool:
    """Legacy exports spell booleans as "true"/"false"."""
    if isinstance(value, bool):
        return value
    return value == "true"


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        # Jellyfin emits 7 fractional digits
        text = re.sub(r"(\.\d{6})\d+", r"\1", text)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def ticks_to_seconds(ticks: int | None) -> int:
    if not ticks:
        return 0
    return ticks // TICKS_PER_SECOND


def format_ticks(ticks: int | None) -> str:
    """Format 100ns ticks as HH:MM:SS."""
    total_seconds = ticks_to_seconds(ticks)
    if total_seconds <= 0:
        return "00:00:00"
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def progress_percent(position_ticks: int | None, runtime_ticks: int | None) -> int:
    """Rounded playback progress; 0 when the runtime is unknown or zero."""
    if not runtime_ticks or runtime_ticks <= 0:
        return 0
    return round((position_ticks or 0) / runtime_ticks * 100)


def first_stream(streams: Any, stream_type: str) -> dict[str, Any]:
    """First media stream of the given Type, or an empty dict."""
    if not isinstance(streams, list):
        return {}
    for stream in streams:
        if isinstance(stream, dict) and stream.get("Type") == stream_type:
            return stream
    return {}
