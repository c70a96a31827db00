"""Configuration models for jellyfin-stats-sync."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """Configuration for a single Jellyfin server."""

    name: str
    url: str
    api_key: str


class JellyfinConfig(BaseModel):
    """HTTP behavior towards Jellyfin servers."""

    timeout_seconds: float = 60.0
    max_retries: int = 3
    retry_base_delay: float = 1.0


class SyncConfig(BaseModel):
    """Full sync behavior configuration."""

    item_page_size: int = 500
    activity_page_size: int = 1000
    sync_on_startup: bool = False


class RecoveryConfig(BaseModel):
    """Stuck-sync recovery sweep."""

    enabled: bool = True
    stuck_threshold_seconds: int = 3600
    sweep_interval_seconds: float = 300.0


class PollerConfig(BaseModel):
    """Live session poller."""

    enabled: bool = True
    interval_seconds: float = 5.0


class ImportConfig(BaseModel):
    """Upload handling."""

    chunk_size: int = 65536


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "/data/jellyfin-stats-sync.db"
    journal_mode: str = "WAL"  # WAL, DELETE, TRUNCATE, MEMORY, OFF


class ServerSettings(BaseModel):
    """HTTP server configuration."""

    host: str = "0.0.0.0"
    port: int = 8080


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"


class Config(BaseModel):
    """Root configuration model."""

    servers: list[ServerConfig] = Field(default_factory=list)
    jellyfin: JellyfinConfig = Field(default_factory=JellyfinConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    imports: ImportConfig = Field(default_factory=ImportConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    def get_server(self, name: str) -> ServerConfig | None:
        """Get server config by name."""
        for server in self.servers:
            if server.name == name:
                return server
        return None

    def get_server_by_url(self, url: str) -> ServerConfig | None:
        """Get server config by URL, ignoring a trailing slash."""
        wanted = url.rstrip("/")
        for server in self.servers:
            if server.url.rstrip("/") == wanted:
                return server
        return None


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    if _config is None:
        raise RuntimeError("Configuration not loaded. Call load_config() first.")
    return _config


def load_config(path: str | Path) -> Config:
    """Load configuration from file and set as global."""
    global _config
    _config = Config.from_yaml(path)
    return _config
