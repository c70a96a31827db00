"""Import and export of historical session data."""

from .backup import backup_filename, export_sessions
from .errors import NO_SESSIONS_MESSAGE, ImportFailedError, JsonStreamError
from .pipeline import ActivityLatch, ImportPipeline
from .stream import JsonStreamReader, iter_bytes

__all__ = [
    "ActivityLatch",
    "ImportFailedError",
    "ImportPipeline",
    "JsonStreamError",
    "JsonStreamReader",
    "NO_SESSIONS_MESSAGE",
    "backup_filename",
    "export_sessions",
    "iter_bytes",
]
