"""Main entry point for jellyfin-stats-sync."""

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from . import __version__
from .api import export_router, health_router, import_router, servers_router, sessions_router
from .config import Config, get_config, load_config
from .database import Database
from .sync import RecoverySweeper, SessionPoller, SyncEngine


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # Silence noisy third-party loggers
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("python_multipart").setLevel(logging.WARNING)


def init_config() -> Config:
    """Initialize configuration from file.

    Loads config from CONFIG_PATH env var, /config/config.yaml, or ./config.yaml.
    Sets up logging based on config.
    """
    config_path = os.environ.get("CONFIG_PATH", "/config/config.yaml")

    # Allow local development with config.yaml in current directory
    if not Path(config_path).exists():
        local_config = Path("config.yaml")
        if local_config.exists():
            config_path = str(local_config)
        else:
            print(f"Error: Configuration file not found: {config_path}")
            print("Create a config.yaml file or set CONFIG_PATH environment variable")
            sys.exit(1)

    config = load_config(config_path)
    setup_logging(config.logging.level)

    logger = logging.getLogger(__name__)
    logger.info("Loaded configuration from %s", config_path)
    logger.info("Configured servers: %s", [s.name for s in config.servers])
    return config


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    logger = logging.getLogger(__name__)
    config: Config = getattr(app.state, "config", None) or get_config()

    # Startup
    logger.info("Starting jellyfin-stats-sync...")

    db = Database(config.database.path, journal_mode=config.database.journal_mode)
    await db.connect()

    engine = SyncEngine(db, config)
    servers = await engine.register_servers()

    health = await engine.health_check_all()
    for server_name, is_healthy in health.items():
        status = "healthy" if is_healthy else "unhealthy"
        logger.info("Server %s: %s", server_name, status)

    poller = SessionPoller(db, engine.clients, interval_seconds=config.poller.interval_seconds)
    if config.poller.enabled:
        await poller.start()

    sweeper = RecoverySweeper(
        db,
        threshold=timedelta(seconds=config.recovery.stuck_threshold_seconds),
        interval_seconds=config.recovery.sweep_interval_seconds,
    )
    if config.recovery.enabled:
        await sweeper.start()

    if config.sync.sync_on_startup:
        for server in servers:
            engine.trigger_sync(server.id)

    # Store collaborators in app state for access by routers
    app.state.config = config
    app.state.db = db
    app.state.engine = engine
    app.state.poller = poller
    app.state.sweeper = sweeper

    yield

    # Shutdown
    logger.info("Shutting down jellyfin-stats-sync...")
    await sweeper.stop()
    await poller.stop()
    await engine.stop()
    await db.close()


def create_app(config: Config | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if config is None:
        config = init_config()

    app = FastAPI(
        title="jellyfin-stats-sync",
        description="Playback statistics collector and importer for Jellyfin servers",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config

    app.include_router(health_router)  # /healthz, /readyz
    app.include_router(servers_router)  # /api/status, /api/servers/...
    app.include_router(import_router)  # /api/import/...
    app.include_router(export_router)  # /api/export/{server_id}
    app.include_router(sessions_router)  # /api/sessions

    return app


def main() -> None:
    """Main entry point."""
    app = create_app()
    config = get_config()

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
