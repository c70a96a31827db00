"""Full sync of Jellyfin users, libraries, items and activities into the database."""

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from typing import Any

import aiosqlite

from ..config import Config, ServerConfig, get_config
from ..database import Database
from ..jellyfin import JellyfinClient, JellyfinError, JellyfinResponseError
from ..models import Server, SyncProgress, SyncResult, SyncResultStatus
from .status import SyncStatusTracker

logger = logging.getLogger(__name__)


class SyncPhaseError(Exception):
    """A whole phase could not run; the sync is marked failed."""

    def __init__(self, phase: SyncProgress, message: str):
        super().__init__(f"Failed to sync {phase.value}: {message}")
        self.phase = phase
        self.message = message


def describe_failure(error: Exception) -> str:
    """Short description of why a phase failed."""
    if isinstance(error, JellyfinResponseError):
        return error.message
    if isinstance(error, JellyfinError):
        if error.status_code is not None:
            return f"API Error: {error.status_code} - {error.message}"
        return error.message
    if isinstance(error, aiosqlite.Error):
        return f"Database Error: {error}"
    return str(error)


# ========== Jellyfin entity -> mirror row ==========


def user_row(user: dict[str, Any], server_id: int) -> dict[str, Any]:
    policy = user.get("Policy") or {}
    return {
        "id": user["Id"],
        "server_id": server_id,
        "name": user.get("Name") or "",
        "last_login_date": user.get("LastLoginDate"),
        "last_activity_date": user.get("LastActivityDate"),
        "is_administrator": bool(policy.get("IsAdministrator")),
        "is_hidden": bool(policy.get("IsHidden")),
        "is_disabled": bool(policy.get("IsDisabled")),
    }


def library_row(folder: dict[str, Any], server_id: int) -> dict[str, Any]:
    return {
        "id": folder["ItemId"],
        "server_id": server_id,
        "name": folder.get("Name") or "",
        "type": folder.get("CollectionType") or "mixed",
    }


def item_row(item: dict[str, Any], server_id: int, library_id: str) -> dict[str, Any]:
    return {
        "id": item["Id"],
        "server_id": server_id,
        "library_id": library_id,
        "name": item.get("Name") or "",
        "type": item.get("Type") or "Unknown",
        "series_id": item.get("SeriesId"),
        "series_name": item.get("SeriesName"),
        "season_id": item.get("SeasonId"),
        "season_name": item.get("SeasonName"),
        "index_number": item.get("IndexNumber"),
        "parent_index_number": item.get("ParentIndexNumber"),
        "runtime_ticks": item.get("RunTimeTicks"),
        "production_year": item.get("ProductionYear"),
        "path": item.get("Path"),
        "genres": item.get("Genres") or [],
        "raw_data": item,
    }


def activity_row(entry: dict[str, Any], server_id: int) -> dict[str, Any]:
    return {
        "id": str(entry["Id"]),
        "server_id": server_id,
        "name": entry.get("Name") or "",
        "short_overview": entry.get("ShortOverview"),
        "type": entry.get("Type"),
        "date": entry.get("Date"),
        "severity": entry.get("Severity"),
        "user_id": entry.get("UserId"),
        "item_id": entry.get("ItemId"),
    }


class SyncEngine:
    """Runs full syncs, one at a time per server.

    Phases run in order: users, libraries, items (every library, paged),
    activities (paged). A phase that cannot run at all fails the sync; a
    record that cannot be stored is reported but does not stop the phase.
    """

    def __init__(self, db: Database, config: Config | None = None):
        self.db = db
        self.config = config or get_config()
        self.tracker = SyncStatusTracker(db)
        self.clients: dict[int, JellyfinClient] = {}
        self._tasks: dict[int, asyncio.Task[SyncResult | None]] = {}

    def get_client(self, server: Server) -> JellyfinClient:
        """Get or create a client for a registered server."""
        client = self.clients.get(server.id)
        if client is None or client.base_url != server.url.rstrip("/") or client.server.api_key != server.api_key:
            client = JellyfinClient(
                ServerConfig(name=server.name, url=server.url, api_key=server.api_key),
                self.config.jellyfin,
            )
            self.clients[server.id] = client
        return client

    async def register_servers(self) -> list[Server]:
        """Upsert every configured server and prepare its client."""
        servers = []
        for server_config in self.config.servers:
            server = await self.db.upsert_server(server_config.name, server_config.url, server_config.api_key)
            self.get_client(server)
            servers.append(server)
        logger.info("Registered %d servers", len(servers))
        return servers

    # ========== Full sync ==========

    async def run_full_sync(self, server_id: int) -> SyncResult | None:
        """Sync everything for one server. Returns None if the server is unknown.

        Raises:
            SyncPhaseError: a phase failed; the server is left in ``failed``
        """
        server = await self.db.get_server(server_id)
        if server is None:
            logger.error("[server %d] Cannot sync: server not found", server_id)
            return None

        client = self.get_client(server)
        started = time.monotonic()
        counts: dict[str, int] = {}
        errors: list[str] = []

        await self.tracker.start(server_id)
        logger.info("[%s] Starting full sync", server.name)

        phases = (
            (SyncProgress.USERS, "Users", self._sync_users),
            (SyncProgress.LIBRARIES, "Libraries", self._sync_libraries),
            (SyncProgress.ITEMS, "Items", self._sync_items),
            (SyncProgress.ACTIVITIES, "Activities", self._sync_activities),
        )
        for phase, label, run_phase in phases:
            await self.tracker.advance(server_id, phase)
            phase_errors: list[str] = []
            try:
                counts[phase.value] = await run_phase(client, server, phase_errors)
            except Exception as e:
                error = SyncPhaseError(phase, describe_failure(e))
                await self.tracker.fail(server_id, str(error))
                raise error from e
            finally:
                errors.extend(f"{label}: {message}" for message in phase_errors)
            logger.info("[%s] Synced %d %s", server.name, counts[phase.value], phase.value)

        await self.tracker.complete(server_id, "; ".join(errors) if errors else None)
        duration = time.monotonic() - started
        logger.info("[%s] Full sync finished in %.1fs (%d errors)", server.name, duration, len(errors))
        return SyncResult(
            status=SyncResultStatus.PARTIAL if errors else SyncResultStatus.SUCCESS,
            server_id=server_id,
            counts=counts,
            errors=errors,
            duration_seconds=duration,
        )

    async def _upsert_all(self, table: str, rows: list[dict[str, Any]], errors: list[str]) -> int:
        stored = 0
        for row in rows:
            try:
                await self.db.upsert_mirror(table, row, commit=False)
                stored += 1
            except Exception as e:
                logger.warning("Failed to store %s row %s: %s", table, row.get("id"), e)
                errors.append(f"{row.get('name') or row.get('id')}: {e}")
        await self.db.commit()
        return stored

    @staticmethod
    def _rows(
        entities: list[dict[str, Any]],
        key: str,
        to_row: Callable[[dict[str, Any]], dict[str, Any]],
        errors: list[str],
    ) -> list[dict[str, Any]]:
        rows = []
        for entity in entities:
            if not entity.get(key):
                errors.append(f"record without {key} skipped")
                continue
            rows.append(to_row(entity))
        return rows

    async def _sync_users(self, client: JellyfinClient, server: Server, errors: list[str]) -> int:
        users = await client.get_users()
        rows = self._rows(users, "Id", lambda user: user_row(user, server.id), errors)
        return await self._upsert_all("users", rows, errors)

    async def _sync_libraries(self, client: JellyfinClient, server: Server, errors: list[str]) -> int:
        folders = await client.get_libraries()
        rows = self._rows(folders, "ItemId", lambda folder: library_row(folder, server.id), errors)
        return await self._upsert_all("libraries", rows, errors)

    async def _sync_items(self, client: JellyfinClient, server: Server, errors: list[str]) -> int:
        page_size = self.config.sync.item_page_size
        stored = 0
        for library in await self.db.list_libraries(server.id):
            start_index = 0
            while True:
                items, total = await client.get_items_page(library["id"], start_index, page_size)
                rows = self._rows(items, "Id", lambda item: item_row(item, server.id, library["id"]), errors)
                stored += await self._upsert_all("items", rows, errors)
                start_index += len(items)
                if not items or start_index >= total:
                    break
            logger.debug("[%s] Library %s: %d items", server.name, library["name"], start_index)
        return stored

    async def _sync_activities(self, client: JellyfinClient, server: Server, errors: list[str]) -> int:
        page_size = self.config.sync.activity_page_size
        stored = 0
        start_index = 0
        while True:
            entries = await client.get_activities(start_index, page_size)
            rows = self._rows(entries, "Id", lambda entry: activity_row(entry, server.id), errors)
            stored += await self._upsert_all("activities", rows, errors)
            if len(entries) < page_size:
                break
            start_index += len(entries)
        return stored

    # ========== Background runs ==========

    def is_syncing(self, server_id: int) -> bool:
        task = self._tasks.get(server_id)
        return task is not None and not task.done()

    def trigger_sync(self, server_id: int) -> bool:
        """Start a full sync in the background. False if one is already running."""
        if self.is_syncing(server_id):
            logger.info("[server %d] Sync already in progress", server_id)
            return False
        self._tasks[server_id] = asyncio.create_task(self._run_in_background(server_id))
        return True

    async def _run_in_background(self, server_id: int) -> SyncResult | None:
        try:
            return await self.run_full_sync(server_id)
        except SyncPhaseError as e:
            logger.error("[server %d] %s", server_id, e)
        except Exception as e:
            logger.exception("[server %d] Unexpected error during sync: %s", server_id, e)
        return None

    async def wait_for(self, server_id: int) -> SyncResult | None:
        """Wait for a background sync of ``server_id``, if any."""
        task = self._tasks.get(server_id)
        if task is None:
            return None
        return await task

    async def stop(self) -> None:
        """Cancel running syncs and close HTTP clients."""
        for task in self._tasks.values():
            task.cancel()
        for task in self._tasks.values():
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

        for client in self.clients.values():
            await client.close()
        logger.info("Sync engine stopped")

    # ========== Health ==========

    async def health_check_all(self) -> dict[str, bool]:
        """Check health of all registered servers."""
        results: dict[str, bool] = {}

        async def check_server(server: Server) -> tuple[str, bool]:
            client = self.get_client(server)
            healthy = await client.health_check()
            return server.name, healthy

        tasks = [check_server(s) for s in await self.db.list_servers()]
        for name, healthy in await asyncio.gather(*tasks):
            results[name] = healthy

        return results
