"""Jellyfin API access."""

from .client import (
    JellyfinAuthError,
    JellyfinClient,
    JellyfinConnectivityError,
    JellyfinError,
    JellyfinResponseError,
    describe_status,
)

__all__ = [
    "JellyfinClient",
    "JellyfinError",
    "JellyfinConnectivityError",
    "JellyfinAuthError",
    "JellyfinResponseError",
    "describe_status",
]
