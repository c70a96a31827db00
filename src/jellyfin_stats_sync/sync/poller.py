"""Live session poller.

Polls ``/Sessions`` on every server, follows each playback while it is
visible and stores a canonical session once it disappears.
"""

import asyncio
import contextlib
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from ..database import Database
from ..jellyfin import JellyfinClient, JellyfinError
from ..mapping.live import (
    TrackedSession,
    final_duration,
    is_trackable,
    map_live_session,
    session_key,
    track_session,
    update_tracked,
)
from ..references import DatabaseResolver, ReferenceCheck

logger = logging.getLogger(__name__)

# Finished playbacks must exceed this duration to be stored
MIN_SESSION_SECONDS = 1


class SessionPoller:
    """Tracks active playbacks per server and persists finished ones."""

    def __init__(self, db: Database, clients: Mapping[int, JellyfinClient], interval_seconds: float = 5.0):
        self.db = db
        self.clients = clients
        self.interval_seconds = interval_seconds
        self.resolver = DatabaseResolver(db)
        self._tracked: dict[int, dict[str, TrackedSession]] = {}
        # Finished playbacks whose save failed, with the time they ended
        self._unsaved: dict[int, list[tuple[TrackedSession, datetime]]] = {}
        self._running = False
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Start the background polling loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Session poller started (every %.0fs)", self.interval_seconds)

    async def stop(self) -> None:
        """Stop the background polling loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Session poller stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.poll_all()
            except Exception as e:
                logger.exception("Error in session poller loop: %s", e)

            await asyncio.sleep(self.interval_seconds)

    async def poll_all(self) -> int:
        """Poll every server once. Returns the number of sessions saved."""
        saved = 0
        for server_id, client in list(self.clients.items()):
            try:
                saved += await self.poll_server(server_id, client)
            except JellyfinError as e:
                logger.warning("[%s] Failed to poll sessions: %s", client.server.name, e)
            except Exception as e:
                logger.exception("[%s] Error while polling sessions: %s", client.server.name, e)
        return saved

    async def poll_server(self, server_id: int, client: JellyfinClient, now: datetime | None = None) -> int:
        """Poll one server. Returns the number of finished sessions saved."""
        now = now or datetime.now(UTC)
        raw_sessions = await client.get_sessions()

        previous = self._tracked.get(server_id, {})
        current: dict[str, TrackedSession] = {}
        for raw in raw_sessions:
            if not is_trackable(raw):
                continue
            key = session_key(raw)
            if key in previous:
                current[key] = update_tracked(previous[key], raw, now)
            elif key not in current:
                logger.debug("[%s] New playback: %s", client.server.name, key)
                current[key] = track_session(raw, now)
        self._tracked[server_id] = current

        finished = self._unsaved.pop(server_id, [])
        finished.extend((tracked, now) for key, tracked in previous.items() if key not in current)

        saved = 0
        for tracked, ended_at in finished:
            try:
                if await self._save_finished(server_id, tracked, ended_at):
                    saved += 1
            except Exception as e:
                logger.exception("[server %d] Failed to save playback %s: %s", server_id, tracked.session_key, e)
                self._unsaved.setdefault(server_id, []).append((tracked, ended_at))
        return saved

    async def _save_finished(self, server_id: int, tracked: TrackedSession, now: datetime) -> bool:
        duration = final_duration(tracked, now)
        if duration <= MIN_SESSION_SECONDS:
            logger.debug("Dropping playback %s after %ds", tracked.session_key, duration)
            return False

        session = map_live_session(tracked, server_id, now)
        check = ReferenceCheck(self.resolver)
        session.user_id = await check.check("userId", "users", session.user_id)
        session.item_id = await check.check("itemId", "items", session.item_id)
        if check.missing_references:
            session.raw_data = {**session.raw_data, "missingReferences": check.missing_references}

        inserted = await self.db.insert_session(session)
        logger.info(
            "[server %d] Saved playback of %s by %s (%ds, %.0f%%)",
            server_id,
            session.item_name,
            session.user_name,
            session.play_duration,
            session.percent_complete,
        )
        return inserted

    def get_active_sessions(self, server_id: int) -> list[TrackedSession]:
        return list(self._tracked.get(server_id, {}).values())

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "interval_seconds": self.interval_seconds,
            "tracked_sessions": {server_id: len(tracked) for server_id, tracked in self._tracked.items()},
        }
