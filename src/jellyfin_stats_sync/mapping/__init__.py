"""Mapping of heterogeneous session records onto the canonical Session."""

from collections.abc import Callable
from typing import Any

from ..models import Session, SourceFormat
from ..references import ReferenceCheck, Resolver
from .backup import map_backup
from .jellystats import map_jellystats
from .legacy import map_legacy
from .live import map_live_record
from .playback_reporting import map_playback_reporting

FormatMapper = Callable[[dict[str, Any], int], Session | None]

MAPPERS: dict[SourceFormat, FormatMapper] = {
    SourceFormat.LIVE: map_live_record,
    SourceFormat.JELLYSTATS: map_jellystats,
    SourceFormat.LEGACY: map_legacy,
    SourceFormat.PLAYBACK_REPORTING: map_playback_reporting,
    SourceFormat.BACKUP: map_backup,
}


class SessionMapper:
    """Maps a record of a given format, then reconciles its user/item references.

    Args:
        resolver: existence check for referenced users and items; None skips
            reconciliation entirely
    """

    def __init__(self, resolver: Resolver | None = None):
        self.resolver = resolver

    async def map_record(self, source_format: SourceFormat, record: dict[str, Any], server_id: int) -> Session | None:
        """Returns None when the format mapper skips the record.

        Raises whatever the format mapper raises for malformed records.
        """
        if not isinstance(record, dict):
            raise ValueError(f"Expected an object, got {type(record).__name__}")

        session = MAPPERS[source_format](record, server_id)
        if session is None or self.resolver is None:
            return session

        check = ReferenceCheck(self.resolver)
        session.user_id = await check.check("userId", "users", session.user_id)
        if source_format == SourceFormat.PLAYBACK_REPORTING:
            # The report has a single user column, so both ids follow the reconciled one
            session.user_server_id = session.user_id
        session.item_id = await check.check("itemId", "items", session.item_id)
        if check.missing_references:
            session.raw_data = {**session.raw_data, "missingReferences": check.missing_references}
        return session


__all__ = ["SessionMapper", "MAPPERS"]
