"""Application configuration using pydantic-settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DRIVEMIRROR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Drive Mirror"
    version: str = "0.3.0"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8080, description="Server port")

    # Paths
    config_path: Path = Field(
        default=Path("/config"),
        description="Path for configuration files and database",
    )

    # Database
    database_url: str | None = Field(
        default=None,
        description="Database connection URL (defaults to SQLite under config_path)",
    )

    # CORS
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins",
    )

    # Google OAuth (from Google Cloud console)
    google_client_id: str | None = Field(
        default=None,
        description="OAuth client ID for the Drive integration",
    )
    google_client_secret: str | None = Field(
        default=None,
        description="OAuth client secret for the Drive integration",
    )
    google_redirect_uri: str = Field(
        default="http://localhost:8080/api/v1/drive/callback",
        description="Redirect URI registered for the OAuth client",
    )
    encryption_key: str | None = Field(
        default=None,
        description="Fernet key used to encrypt stored OAuth tokens",
    )

    # Google API pacing
    google_request_delay: float = Field(
        default=0.2,
        ge=0,
        description="Minimum delay in seconds between Drive API requests",
    )
    google_requests_per_minute: int = Field(
        default=300,
        ge=1,
        description="Maximum Drive API requests per minute",
    )

    # Tokens
    token_refresh_threshold: int = Field(
        default=300,
        ge=0,
        description="Refresh access tokens expiring within this many seconds",
    )

    # Crawl / sync
    sync_default_budget: int = Field(
        default=10,
        ge=1,
        description="Folders processed per run() call when no budget is given",
    )
    sync_max_budget: int = Field(
        default=20,
        ge=1,
        description="Upper bound accepted for budget_folders",
    )
    sync_max_iterations: int = Field(
        default=50,
        ge=1,
        description="Circuit breaker: maximum run() batches per orchestration",
    )
    sync_run_delay: float = Field(
        default=0.5,
        ge=0,
        description="Delay in seconds between successive run() batches",
    )
    sync_root_mismatch_delay: float = Field(
        default=1.0,
        ge=0,
        description="Delay in seconds before re-arming after ROOT_MISMATCH",
    )
    orphan_retention_days: int = Field(
        default=30,
        ge=1,
        description="Days a MISSING item stays in virtual trash before purge",
    )

    @property
    def google_oauth_configured(self) -> bool:
        """Check if Google OAuth client credentials are configured."""
        return self.google_client_id is not None and self.google_client_secret is not None

    @property
    def db_path(self) -> Path:
        """Get the SQLite database file path."""
        return self.config_path / "drivemirror.db"


# Global settings instance
settings = Settings()
