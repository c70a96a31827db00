"""Live sessions, fetched straight from Jellyfin."""

import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..jellyfin import JellyfinConnectivityError, JellyfinError, describe_status
from ..mapping.live import to_active_session
from .state import get_db, get_engine, parse_server_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sessions"])


def _jellyfin_error(error: JellyfinError) -> JSONResponse:
    status = error.status_code
    connectivity = status is not None and status >= 500
    return JSONResponse(
        status_code=503 if connectivity or status is None else status,
        content={
            "error": describe_status(status) if status is not None else error.message,
            "jellyfin_status": status,
            "server_connectivity_issue": connectivity,
        },
        headers={"x-server-connectivity-error": "true" if connectivity else "false"},
    )


@router.get("/sessions", response_model=None)
async def get_sessions(request: Request, serverId: str | None = None) -> list[dict[str, Any]] | JSONResponse:
    """Currently playing sessions of one server."""
    if not serverId:
        return JSONResponse(status_code=400, content={"error": "Server ID is required"})
    server_id = parse_server_id(serverId)
    if server_id is None:
        return JSONResponse(status_code=400, content={"error": "Invalid server ID"})

    server = await get_db(request).get_server(server_id)
    if server is None:
        return JSONResponse(status_code=404, content={"error": "Server not found"})

    client = get_engine(request).get_client(server)
    try:
        raw_sessions = await client.get_sessions()
    except JellyfinConnectivityError as e:
        if e.status_code is None:
            logger.warning("[%s] Failed to fetch sessions: %s", server.name, e)
            return JSONResponse(
                status_code=503,
                content={
                    "error": "Failed to fetch sessions from Jellyfin server",
                    "message": e.message,
                    "server_connectivity_issue": True,
                },
                headers={"x-server-connectivity-error": "true"},
            )
        return _jellyfin_error(e)
    except JellyfinError as e:
        logger.warning("[%s] Jellyfin rejected session request: %s", server.name, e)
        return _jellyfin_error(e)

    sessions = [to_active_session(raw) for raw in raw_sessions]
    return [session.model_dump(mode="json") for session in sessions if session is not None]
