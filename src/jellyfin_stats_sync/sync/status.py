"""Server sync-status transitions."""

import logging
from datetime import UTC, datetime
from typing import Any

from ..database import Database
from ..models import SYNC_PHASES, SyncProgress, SyncStatus

logger = logging.getLogger(__name__)


class SyncStatusTracker:
    """Drives the servers table through a sync run.

    syncing/users -> syncing/<phase> ... -> completed/completed, or failed
    with the phase left where the run stopped.
    """

    def __init__(self, db: Database):
        self.db = db

    async def start(self, server_id: int) -> bool:
        logger.info("[server %d] Sync started", server_id)
        return await self.db.update_server_sync(
            server_id,
            sync_status=SyncStatus.SYNCING,
            sync_progress=SyncProgress.USERS,
            sync_error=None,
            last_sync_started=datetime.now(UTC),
        )

    async def advance(self, server_id: int, progress: SyncProgress) -> bool:
        logger.debug("[server %d] Sync phase: %s", server_id, progress.value)
        return await self.db.update_server_sync(server_id, sync_progress=progress)

    async def complete(self, server_id: int, error_summary: str | None = None) -> bool:
        """Mark the run finished; ``error_summary`` keeps partial failures visible."""
        if error_summary:
            logger.warning("[server %d] Sync completed with errors: %s", server_id, error_summary)
        else:
            logger.info("[server %d] Sync completed", server_id)
        return await self.db.update_server_sync(
            server_id,
            sync_status=SyncStatus.COMPLETED,
            sync_progress=SyncProgress.COMPLETED,
            sync_error=error_summary,
            last_sync_completed=datetime.now(UTC),
        )

    async def fail(self, server_id: int, message: str) -> bool:
        logger.error("[server %d] Sync failed: %s", server_id, message)
        return await self.db.update_server_sync(server_id, sync_status=SyncStatus.FAILED, sync_error=message)

    async def get_status(self, server_id: int) -> dict[str, Any] | None:
        """Status view for the API, or None if the server is unknown."""
        server = await self.db.get_server(server_id)
        if server is None:
            return None

        index = SYNC_PHASES.index(server.sync_progress)
        is_ready = server.sync_status == SyncStatus.COMPLETED and server.sync_progress == SyncProgress.COMPLETED
        return {
            "id": server.id,
            "name": server.name,
            "syncStatus": server.sync_status.value,
            "syncProgress": server.sync_progress.value,
            "syncError": server.sync_error,
            "lastSyncStarted": server.last_sync_started,
            "lastSyncCompleted": server.last_sync_completed,
            "progressPercentage": round(index / (len(SYNC_PHASES) - 1) * 100),
            "isReady": is_ready,
            "canRedirect": is_ready,
        }
