"""Jellyfin playback statistics sync and import service."""

__version__ = "0.1.0"
