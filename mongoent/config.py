"""
Configuration for mongoent.

Uses pydantic-settings for environment variable loading. Every setting can be
overridden with a MONGOENT_ prefixed variable (MONGOENT_HOST, MONGOENT_NAME, ...).

Invariants:
    - All settings have sensible defaults for local development
    - Passwords are never logged
"""

from __future__ import annotations

from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import Field
from pydantic_settings import BaseSettings


class DatabaseSettings(BaseSettings):
    """Database configuration loaded from environment."""

    # Connection
    host: str = Field(default="localhost", description="MongoDB host")
    port: int = Field(default=27017, description="MongoDB port")
    username: str = Field(default="", description="MongoDB username")
    password: str = Field(default="", description="MongoDB password")
    name: str = Field(default="mongoent", description="Database name")
    auth_source: str = Field(default="", description="Authentication database")
    uri: str | None = Field(default=None, description="Full connection URI, overrides host/port")
    server_selection_timeout_ms: int = Field(default=30000)

    # Model behaviour
    date_format: str = Field(default="%d-%m-%Y", description="strptime format for date casts")
    master_mind_collection: str = Field(default="MasterMind", description="Identity counter collection")
    trash_suffix: str = Field(default="Trash", description="Suffix of the trash collection")
    per_page: int = Field(default=15, description="Default items per page")

    # Observability
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", description="text or json")

    model_config = {"env_prefix": "MONGOENT_"}

    @property
    def connection_uri(self) -> str:
        """MongoDB connection URI."""
        if self.uri:
            return self.uri
        if self.username and self.password:
            return (
                f"mongodb://{quote_plus(self.username)}:{quote_plus(self.password)}"
                f"@{self.host}:{self.port}"
            )
        return f"mongodb://{self.host}:{self.port}"

    @property
    def is_authenticated(self) -> bool:
        """Whether credentials are configured."""
        return bool(self.uri) or bool(self.username and self.password)


@lru_cache
def get_settings() -> DatabaseSettings:
    """Get the process-wide settings instance."""
    return DatabaseSettings()
