"""Health check endpoints for Kubernetes/Docker."""

from fastapi import APIRouter, Request, Response

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> Response:
    """Liveness probe. Returns 200 while the process is running."""
    return Response(content="ok", media_type="text/plain")


@router.get("/readyz")
async def readyz(request: Request) -> Response:
    """
    Readiness probe.

    Checks:
    - Database is connected
    - Sync engine is initialized
    """
    db = getattr(request.app.state, "db", None)
    if db is None or not db.connected:
        return Response(
            content="database not connected",
            status_code=503,
            media_type="text/plain",
        )

    if getattr(request.app.state, "engine", None) is None:
        return Response(
            content="engine not initialized",
            status_code=503,
            media_type="text/plain",
        )

    return Response(content="ok", media_type="text/plain")
