"""Sessions-only backup export."""

import json
import re
from collections.abc import AsyncIterator
from datetime import UTC, date, datetime
from typing import Any

from pydantic.alias_generators import to_camel

from ..database import Database
from ..models import Server, Session
from .pipeline import BACKUP_EXPORT_TYPE, BACKUP_VERSION

_UNSAFE_FILENAME = re.compile(r"[^a-zA-Z0-9]")


def backup_filename(server_name: str, on: date) -> str:
    """Download filename for a server's backup taken on ``on``."""
    safe_name = _UNSAFE_FILENAME.sub("-", server_name)
    return f"streamystats-backup-{safe_name}-{on.isoformat()}.json"


def session_to_export(session: Session) -> dict[str, Any]:
    """camelCase JSON view of a session, as other streamystats-v2 tools expect."""
    return {to_camel(key): value for key, value in session.model_dump(mode="json").items()}


def server_to_export(server: Server) -> dict[str, Any]:
    # No api_key
    return {
        "id": server.id,
        "name": server.name,
        "url": server.url,
    }


async def export_sessions(db: Database, server: Server, now: datetime | None = None) -> AsyncIterator[str]:
    """Yield the backup document for ``server`` as JSON text chunks.

    ``exportInfo`` is written first so that an import can validate the file
    before reading any session.
    """
    now = now or datetime.now(UTC)
    export_info = {
        "timestamp": now.isoformat(),
        "serverName": server.name,
        "serverId": server.id,
        "version": BACKUP_VERSION,
        "exportType": BACKUP_EXPORT_TYPE,
    }
    yield '{"exportInfo": ' + json.dumps(export_info) + ', "sessions": ['

    first = True
    async for session in db.iter_sessions(server.id):
        prefix = "" if first else ","
        first = False
        yield prefix + json.dumps(session_to_export(session))

    yield '], "server": ' + json.dumps(server_to_export(server)) + "}"
