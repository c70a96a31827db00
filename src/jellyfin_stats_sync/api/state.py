"""Access to the collaborators the lifespan stores on ``app.state``."""

from fastapi import Request

from ..config import Config, get_config
from ..database import Database
from ..sync import SessionPoller, SyncEngine


def get_db(request: Request) -> Database:
    """Get the database from app state."""
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise RuntimeError("Database not initialized in app state")
    return db


def get_engine(request: Request) -> SyncEngine:
    """Get the sync engine from app state."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise RuntimeError("SyncEngine not initialized in app state")
    return engine


def get_poller(request: Request) -> SessionPoller | None:
    return getattr(request.app.state, "poller", None)


def parse_server_id(value: str | None) -> int | None:
    """Positive integer server id from a query/path string, else None."""
    if value is None or not value.strip().isdigit():
        return None
    server_id = int(value)
    return server_id if server_id > 0 else None


def get_settings(request: Request) -> Config:
    """Configuration the app was created with, falling back to the global one."""
    config = getattr(request.app.state, "config", None)
    return config if config is not None else get_config()
