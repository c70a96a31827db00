"""Server listing, sync control and maintenance endpoints."""

import logging
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import __version__
from ..sync import force_reset_server, reset_stuck_servers
from .state import get_db, get_engine, get_poller, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["servers"])


class ServerStatus(BaseModel):
    """Status of a single registered Jellyfin server."""

    id: int
    name: str
    url: str
    healthy: bool
    sync_status: str
    sync_progress: str
    session_count: int


class OverallStatus(BaseModel):
    """Overall service status."""

    status: str  # healthy, degraded, unhealthy
    version: str
    servers: list[ServerStatus]
    poller: dict[str, Any] | None = None


def not_found() -> JSONResponse:
    return JSONResponse(status_code=404, content={"success": False, "error": "Server not found"})


async def _server_statuses(request: Request) -> list[ServerStatus]:
    db = get_db(request)
    engine = get_engine(request)
    server_health = await engine.health_check_all()
    return [
        ServerStatus(
            id=s.id,
            name=s.name,
            url=s.url,
            healthy=server_health.get(s.name, False),
            sync_status=s.sync_status.value,
            sync_progress=s.sync_progress.value,
            session_count=await db.count_sessions(s.id),
        )
        for s in await db.list_servers()
    ]


@router.get("/status", response_model=OverallStatus)
async def get_status(request: Request) -> OverallStatus:
    """Get service status: server health, sync state and poller state."""
    servers = await _server_statuses(request)
    poller = get_poller(request)

    if servers and all(s.healthy for s in servers):
        status = "healthy"
    elif any(s.healthy for s in servers):
        status = "degraded"
    else:
        status = "unhealthy"

    return OverallStatus(
        status=status,
        version=__version__,
        servers=servers,
        poller=poller.get_status() if poller else None,
    )


@router.get("/servers")
async def get_servers(request: Request) -> list[ServerStatus]:
    """Get status of all registered servers."""
    return await _server_statuses(request)


@router.get("/servers/{server_id}/sync-status", response_model=None)
async def get_sync_status(server_id: int, request: Request) -> dict[str, Any] | JSONResponse:
    """Get the sync state of one server."""
    engine = get_engine(request)
    status = await engine.tracker.get_status(server_id)
    if status is None:
        return not_found()
    return {"success": True, "server": status}


@router.post("/servers/{server_id}/sync", response_model=None)
async def trigger_sync(server_id: int, request: Request) -> JSONResponse:
    """Start a full sync in the background."""
    db = get_db(request)
    engine = get_engine(request)
    server = await db.get_server(server_id)
    if server is None:
        return not_found()

    if not engine.trigger_sync(server_id):
        return JSONResponse(
            status_code=409,
            content={"success": False, "error": f"A sync for {server.name} is already running"},
        )
    return JSONResponse(
        status_code=202,
        content={"success": True, "message": f"Full sync started for {server.name}"},
    )


@router.post("/servers/{server_id}/reset", response_model=None)
async def reset_server(server_id: int, request: Request) -> dict[str, Any] | JSONResponse:
    """Force a server out of a stuck sync state."""
    db = get_db(request)
    if not await force_reset_server(db, server_id):
        return not_found()
    status = await get_engine(request).tracker.get_status(server_id)
    return {"success": True, "message": "Sync status reset", "server": status}


@router.post("/maintenance/reset-stuck")
async def reset_stuck(request: Request) -> dict[str, Any]:
    """Reset every server whose sync has been running too long."""
    threshold = timedelta(seconds=get_settings(request).recovery.stuck_threshold_seconds)
    reset_ids = await reset_stuck_servers(get_db(request), threshold)
    return {"success": True, "reset_count": len(reset_ids), "server_ids": reset_ids}
