"""Jellyfin API client for sync and live session polling."""

import asyncio
import logging
from typing import Any

import httpx

from ..config import JellyfinConfig, ServerConfig

logger = logging.getLogger(__name__)

# Connection pool limits
DEFAULT_LIMITS = httpx.Limits(max_connections=20, max_keepalive_connections=10)

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.RemoteProtocolError,
)

ITEM_FIELDS = "BasicSyncInfo,MediaSourceCount,Path,Genres"
EXCLUDED_COLLECTION_TYPES = ("boxsets", "playlists")

_STATUS_MESSAGES = {
    401: "Unauthorized access to Jellyfin server (API key may be invalid)",
    502: "Jellyfin server is currently unreachable (Bad Gateway)",
    503: "Jellyfin server is temporarily unavailable (Service Unavailable)",
    504: "Jellyfin server request timed out (Gateway Timeout)",
}


def describe_status(status_code: int) -> str:
    """Human readable message for a Jellyfin HTTP status."""
    return _STATUS_MESSAGES.get(status_code, f"Jellyfin API returned {status_code}")


class JellyfinError(Exception):
    """Base error for Jellyfin API calls."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class JellyfinConnectivityError(JellyfinError):
    """Server unreachable, timed out or answered with a 5xx."""


class JellyfinAuthError(JellyfinError):
    """Server rejected the API key."""


class JellyfinResponseError(JellyfinError):
    """Unexpected status code or payload shape."""


class JellyfinClient:
    """Async client for Jellyfin API."""

    def __init__(self, server: ServerConfig, settings: JellyfinConfig | None = None):
        self.server = server
        self.settings = settings or JellyfinConfig()
        self.base_url = server.url.rstrip("/")
        self.headers = {
            "X-Emby-Token": server.api_key,
            "Content-Type": "application/json",
        }
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.timeout_seconds, connect=10.0),
                limits=DEFAULT_LIMITS,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _retry_delay(self, attempt: int) -> float:
        return min(self.settings.retry_base_delay * (2**attempt), 30.0)

    async def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an authenticated request, retrying transient failures.

        Raises:
            JellyfinConnectivityError: transport failure or 5xx after retries
            JellyfinAuthError: 401
            JellyfinResponseError: any other non-2xx status
        """
        url = f"{self.base_url}{endpoint}"
        client = await self._get_client()
        max_retries = self.settings.max_retries

        for attempt in range(max_retries + 1):
            try:
                response = await client.request(method, url, headers=self.headers, **kwargs)
            except RETRYABLE_EXCEPTIONS as e:
                if attempt < max_retries:
                    delay = self._retry_delay(attempt)
                    logger.warning(
                        "[%s] %s %s failed (%s), retrying in %.1fs (attempt %d/%d)",
                        self.server.name,
                        method,
                        endpoint,
                        type(e).__name__,
                        delay,
                        attempt + 1,
                        max_retries + 1,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise JellyfinConnectivityError(f"Failed to reach Jellyfin server: {e}") from e
            except httpx.HTTPError as e:
                raise JellyfinConnectivityError(f"Failed to reach Jellyfin server: {e}") from e

            status = response.status_code
            if status in RETRYABLE_STATUS_CODES and attempt < max_retries:
                delay = self._retry_delay(attempt)
                logger.warning(
                    "[%s] %s %s returned %d, retrying in %.1fs (attempt %d/%d)",
                    self.server.name,
                    method,
                    endpoint,
                    status,
                    delay,
                    attempt + 1,
                    max_retries + 1,
                )
                await asyncio.sleep(delay)
                continue

            if status == 401:
                raise JellyfinAuthError(describe_status(status), status)
            if status >= 500:
                raise JellyfinConnectivityError(describe_status(status), status)
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise JellyfinResponseError(f"API Error: {status} - {response.reason_phrase}", status) from e
            return response

        # Loop always returns or raises
        raise JellyfinConnectivityError(f"Failed to reach Jellyfin server after {max_retries + 1} attempts")

    async def _get_json(self, endpoint: str, **kwargs: Any) -> Any:
        response = await self._request("GET", endpoint, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise JellyfinResponseError(f"Invalid JSON from {endpoint}: {e}", response.status_code) from e

    # ========== Sessions ==========

    async def get_sessions(self) -> list[dict[str, Any]]:
        """Get active sessions. A non-list payload is treated as no sessions."""
        sessions = await self._get_json("/Sessions")
        if not isinstance(sessions, list):
            logger.error("[%s] Unexpected response format from /Sessions: %r", self.server.name, sessions)
            return []
        return sessions

    # ========== Users ==========

    async def get_users(self) -> list[dict[str, Any]]:
        """Get all users from the server."""
        logger.debug("[%s] Getting users list", self.server.name)
        users = await self._get_json("/Users")
        if not isinstance(users, list):
            raise JellyfinResponseError("Expected a list of users from /Users")
        logger.debug("[%s] Found %d users", self.server.name, len(users))
        return users

    # ========== Libraries and items ==========

    async def get_libraries(self) -> list[dict[str, Any]]:
        """Get media libraries, without collection and playlist folders."""
        folders = await self._get_json("/Library/VirtualFolders")
        if not isinstance(folders, list):
            raise JellyfinResponseError("Expected a list of folders from /Library/VirtualFolders")
        libraries = [
            folder for folder in folders if (folder.get("CollectionType") or "").lower() not in EXCLUDED_COLLECTION_TYPES
        ]
        logger.debug("[%s] Found %d libraries", self.server.name, len(libraries))
        return libraries

    async def get_items_page(
        self,
        library_id: str,
        start_index: int = 0,
        limit: int = 500,
    ) -> tuple[list[dict[str, Any]], int]:
        """Get one page of items below a library. Returns (items, total record count)."""
        data = await self._get_json(
            "/Items",
            params={
                "ParentId": library_id,
                "Recursive": "true",
                "Fields": ITEM_FIELDS,
                "StartIndex": start_index,
                "Limit": limit,
            },
        )
        if not isinstance(data, dict):
            raise JellyfinResponseError("Expected an object from /Items")
        items = data.get("Items") or []
        total = data.get("TotalRecordCount")
        return items, total if isinstance(total, int) else len(items)

    # ========== Activity log ==========

    async def get_activities(self, start_index: int = 0, limit: int = 1000) -> list[dict[str, Any]]:
        """Get one page of activity log entries, newest first."""
        data = await self._get_json(
            "/System/ActivityLog/Entries",
            params={"startIndex": start_index, "limit": limit},
        )
        if not isinstance(data, dict):
            raise JellyfinResponseError("Expected an object from /System/ActivityLog/Entries")
        return data.get("Items") or []

    # ========== Health ==========

    async def health_check(self) -> bool:
        """Check if server is reachable."""
        try:
            await self._request("GET", "/System/Info/Public")
            return True
        except JellyfinError as e:
            logger.warning("[%s] Health check failed: %s", self.server.name, e)
            return False
