"""Recovery of servers whose sync never finished."""

import asyncio
import contextlib
import logging
from datetime import UTC, datetime, timedelta

from ..database import Database
from ..models import SyncProgress, SyncStatus

logger = logging.getLogger(__name__)

DEFAULT_STUCK_THRESHOLD = timedelta(hours=1)
FORCE_RESET_MESSAGE = "Force reset via utility"


def _describe_threshold(threshold: timedelta) -> str:
    seconds = int(threshold.total_seconds())
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    if seconds % 60 == 0:
        return f"{seconds // 60} minutes"
    return f"{seconds} seconds"


def stuck_message(threshold: timedelta) -> str:
    return f"Reset due to stuck sync (>{_describe_threshold(threshold)})"


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


async def _mark_reset(db: Database, server_id: int, message: str, now: datetime) -> bool:
    return await db.update_server_sync(
        server_id,
        sync_status=SyncStatus.COMPLETED,
        sync_progress=SyncProgress.COMPLETED,
        sync_error=message,
        last_sync_completed=now,
    )


async def reset_stuck_servers(
    db: Database,
    threshold: timedelta = DEFAULT_STUCK_THRESHOLD,
    now: datetime | None = None,
) -> list[int]:
    """Reset servers that have been ``syncing`` for longer than ``threshold``.

    Returns the ids of the servers that were reset.
    """
    now = now or datetime.now(UTC)
    cutoff = now - threshold
    message = stuck_message(threshold)

    reset_ids = []
    for server in await db.list_servers_by_status(SyncStatus.SYNCING):
        if server.last_sync_started is None or _as_utc(server.last_sync_started) >= cutoff:
            continue
        logger.warning(
            "[%s] Sync stuck since %s, resetting",
            server.name,
            server.last_sync_started.isoformat(),
        )
        if await _mark_reset(db, server.id, message, now):
            reset_ids.append(server.id)

    if reset_ids:
        logger.info("Reset %d stuck syncs", len(reset_ids))
    return reset_ids


async def force_reset_server(db: Database, server_id: int) -> bool:
    """Reset a server's sync state regardless of how long it has been running."""
    server = await db.get_server(server_id)
    if server is None:
        logger.error("[server %d] Cannot reset: server not found", server_id)
        return False

    logger.info(
        "[%s] Force reset (was %s/%s)",
        server.name,
        server.sync_status.value,
        server.sync_progress.value,
    )
    return await _mark_reset(db, server_id, FORCE_RESET_MESSAGE, datetime.now(UTC))


class RecoverySweeper:
    """Background loop calling :func:`reset_stuck_servers`."""

    def __init__(
        self,
        db: Database,
        threshold: timedelta = DEFAULT_STUCK_THRESHOLD,
        interval_seconds: float = 300.0,
    ):
        self.db = db
        self.threshold = threshold
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Stuck-sync sweeper started (every %.0fs)", self.interval_seconds)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Stuck-sync sweeper stopped")

    async def sweep(self) -> list[int]:
        return await reset_stuck_servers(self.db, self.threshold)

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.sweep()
            except Exception as e:
                logger.exception("Error in stuck-sync sweep: %s", e)

            await asyncio.sleep(self.interval_seconds)
