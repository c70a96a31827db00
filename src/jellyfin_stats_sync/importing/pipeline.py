"""Streaming import of session exports.

Each upload is read element by element; every element is mapped, its
references reconciled, and inserted with conflict-ignore semantics. A bad
record is counted and logged, never allowed to abort the rest of the file.
Re-running an import is safe: already imported sessions are skipped.
"""

import logging
from collections.abc import AsyncIterator
from typing import Any

from ..database import Database
from ..mapping import SessionMapper
from ..mapping.jellystats import ACTIVITY_WRAPPER_KEY, activity_entries
from ..mapping.playback_reporting import normalize_json_row, parse_tsv_line
from ..models import ImportResult, ImportState, Session, SourceFormat
from ..references import DatabaseResolver
from .errors import ImportFailedError
from .stream import JsonStreamReader
from .tsv import iter_lines

logger = logging.getLogger(__name__)

PROGRESS_LOG_EVERY = 100

BACKUP_VERSION = "streamystats-v2"
BACKUP_EXPORT_TYPE = "sessions-only"


class ActivityLatch:
    """Tracks which layout a Jellystats upload turned out to have.

    Once a ``jf_playback_activity`` wrapper has been seen, later bare
    top-level objects are not sessions and are ignored.
    """

    def __init__(self) -> None:
        self.state = ImportState.UNKNOWN
        self.ignored = 0

    def enter_wrapper(self) -> None:
        self.state = ImportState.WRAPPER_DETECTED

    def records_for(self, element: Any) -> list[Any]:
        """Session records contained in one top-level element."""
        entries = activity_entries(element)
        if entries is not None:
            self.enter_wrapper()
            return entries
        if self.state is ImportState.WRAPPER_DETECTED:
            self.ignored += 1
            return []
        self.state = ImportState.BARE_ARRAY
        return [element]


class ImportPipeline:
    """Imports one upload into one server's sessions.

    Args:
        db: open database
        server_id: target server; sessions are always attributed to it
        mapper: record mapper; defaults to one that reconciles against ``db``
        commit_every: number of records between commits
    """

    def __init__(
        self,
        db: Database,
        server_id: int,
        mapper: SessionMapper | None = None,
        commit_every: int = 100,
    ):
        self.db = db
        self.server_id = server_id
        self.mapper = mapper or SessionMapper(DatabaseResolver(db))
        self.commit_every = commit_every
        self._uncommitted = 0

    async def _import_record(self, source_format: SourceFormat, record: Any, result: ImportResult) -> Session | None:
        """Map and insert one record, updating the counters. Never raises."""
        result.total_count += 1
        try:
            session = await self.mapper.map_record(source_format, record, self.server_id)
            if session is None:
                result.skipped_count += 1
                logger.debug("[server %d] Skipping unmappable %s record", self.server_id, source_format.value)
                return None
            inserted = await self.db.insert_session(session, commit=False)
        except Exception as e:
            result.error_count += 1
            logger.warning(
                "[server %d] Failed to import %s record %d: %s",
                self.server_id,
                source_format.value,
                result.total_count,
                e,
            )
            return None

        if inserted:
            result.imported_count += 1
            if result.imported_count % PROGRESS_LOG_EVERY == 0:
                logger.info(
                    "[server %d] Import progress: %d sessions imported (%d processed)",
                    self.server_id,
                    result.imported_count,
                    result.total_count,
                )
        else:
            logger.debug("[server %d] Session %s already exists", self.server_id, session.id)

        self._uncommitted += 1
        if self._uncommitted >= self.commit_every:
            await self.db.commit()
            self._uncommitted = 0
        return session

    async def _finish(self, result: ImportResult, source_label: str) -> ImportResult:
        await self.db.commit()
        self._uncommitted = 0
        if result.total_count == 0:
            logger.warning("[server %d] No sessions found in %s upload", self.server_id, source_label)
            raise ImportFailedError()

        result.message = (
            f"Successfully imported {result.imported_count} of {result.total_count} sessions from {source_label}"
        )
        logger.info(
            "[server %d] %s (errors=%d, skipped=%d)",
            self.server_id,
            result.message,
            result.error_count,
            result.skipped_count,
        )
        return result

    async def import_jellystats(self, chunks: AsyncIterator[bytes]) -> ImportResult:
        """Import a Jellystats export (wrapped or bare array)."""
        result = ImportResult()
        latch = ActivityLatch()
        reader = JsonStreamReader(
            chunks,
            array_keys=(ACTIVITY_WRAPPER_KEY,),
            element_array_keys=(ACTIVITY_WRAPPER_KEY,),
        )
        try:
            async for key, element in reader.items():
                # [{"jf_playback_activity": [...]}] or {"jf_playback_activity": [...]}
                if ACTIVITY_WRAPPER_KEY in reader.streamed_keys:
                    latch.enter_wrapper()
                records = [element] if key == ACTIVITY_WRAPPER_KEY else latch.records_for(element)
                for record in records:
                    await self._import_record(SourceFormat.JELLYSTATS, record, result)
        finally:
            await self.db.commit()

        if latch.ignored:
            logger.info(
                "[server %d] Ignored %d top-level objects after the activity wrapper",
                self.server_id,
                latch.ignored,
            )
        return await self._finish(result, "Jellystats")

    async def import_legacy(self, chunks: AsyncIterator[bytes]) -> ImportResult:
        """Import a legacy JSON array of string-typed session rows."""
        result = ImportResult()
        reader = JsonStreamReader(chunks)
        try:
            async for _, element in reader.items():
                await self._import_record(SourceFormat.LEGACY, element, result)
        finally:
            await self.db.commit()
        return await self._finish(result, "legacy database")

    async def import_playback_reporting(self, chunks: AsyncIterator[bytes], is_json: bool) -> ImportResult:
        """Import a Playback Reporting export, TSV or JSON."""
        result = ImportResult()
        try:
            if is_json:
                reader = JsonStreamReader(chunks, array_keys=("sessions", "data"))
                async for _, element in reader.items():
                    record = normalize_json_row(element) if isinstance(element, dict) else element
                    await self._import_record(SourceFormat.PLAYBACK_REPORTING, record, result)
            else:
                line_number = 0
                async for line in iter_lines(chunks):
                    line_number += 1
                    row = parse_tsv_line(line)
                    if row is None:
                        result.total_count += 1
                        result.skipped_count += 1
                        logger.warning(
                            "[server %d] Skipping line %d: expected 9 columns with a numeric duration",
                            self.server_id,
                            line_number,
                        )
                        continue
                    await self._import_record(SourceFormat.PLAYBACK_REPORTING, row, result)
        finally:
            await self.db.commit()
        return await self._finish(result, "Playback Reporting")

    async def import_backup(self, chunks: AsyncIterator[bytes]) -> ImportResult:
        """Import a sessions-only backup produced by the export endpoint."""
        result = ImportResult()
        reader = JsonStreamReader(chunks, array_keys=("sessions",))
        validated = False
        users_nullified = 0
        items_nullified = 0
        try:
            async for _, element in reader.items():
                if not validated:
                    validate_export_info(reader.header.get("exportInfo"))
                    validated = True
                session = await self._import_record(SourceFormat.BACKUP, element, result)
                if session is None or not isinstance(element, dict):
                    continue
                if (element.get("userId") or element.get("user_id")) and session.user_id is None:
                    users_nullified += 1
                if (element.get("itemId") or element.get("item_id")) and session.item_id is None:
                    items_nullified += 1
        finally:
            await self.db.commit()

        if not validated:
            validate_export_info(reader.header.get("exportInfo"))

        export_info = reader.header.get("exportInfo") or {}
        source_server = reader.header.get("server") or {}
        result.extra = {
            "user_references_nullified": users_nullified,
            "item_references_nullified": items_nullified,
            "source_server": source_server.get("name") if isinstance(source_server, dict) else None,
            "export_timestamp": export_info.get("timestamp"),
        }
        return await self._finish(result, "backup")


def validate_export_info(export_info: Any) -> None:
    """Reject uploads that are not a sessions-only streamystats-v2 export."""
    if not isinstance(export_info, dict):
        raise ImportFailedError(
            "Invalid import file format - missing required fields",
            "exportInfo must be present before the sessions array",
        )
    if export_info.get("version") != BACKUP_VERSION:
        raise ImportFailedError(
            f"Unsupported export version: {export_info.get('version')}. Expected: {BACKUP_VERSION}",
            "Import failed - unsupported backup",
        )
    if export_info.get("exportType") != BACKUP_EXPORT_TYPE:
        raise ImportFailedError(
            f"Unsupported export type: {export_info.get('exportType')}. Expected: {BACKUP_EXPORT_TYPE}",
            "Import failed - unsupported backup",
        )
