"""API module."""

from .export import router as export_router
from .health import router as health_router
from .imports import router as import_router
from .servers import router as servers_router
from .sessions import router as sessions_router

__all__ = ["export_router", "health_router", "import_router", "servers_router", "sessions_router"]
