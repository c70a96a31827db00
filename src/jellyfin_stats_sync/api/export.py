"""Backup download endpoint."""

import logging
from datetime import UTC, datetime
from urllib.parse import quote

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from ..importing import backup_filename, export_sessions
from .state import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/export", tags=["export"])


@router.get("/{server_id}", response_model=None)
async def export_server_sessions(server_id: int, request: Request) -> StreamingResponse | JSONResponse:
    """Stream every session of a server as a sessions-only backup."""
    db = get_db(request)
    server = await db.get_server(server_id)
    if server is None:
        return JSONResponse(status_code=404, content={"success": False, "error": "Server not found"})

    count = await db.count_sessions(server.id)
    filename = backup_filename(server.name, datetime.now(UTC).date())
    logger.info("[%s] Exporting %d sessions as %s", server.name, count, filename)

    return StreamingResponse(
        export_sessions(db, server),
        media_type="application/json",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Export-Count": str(count),
            # Header values must be latin-1
            "X-Export-Server": quote(server.name),
        },
    )
