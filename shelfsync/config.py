"""
Configuration management for Shelf Sync.
Values come from environment variables (optionally via a .env file).
"""

import os
from typing import Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

load_dotenv()


class SyncConfig(BaseModel):
    """Configuration for the sync service."""

    # Crawlbase proxy settings
    crawlbase_token: Optional[str] = Field(default=None, description="Crawlbase API token")
    crawlbase_url: str = Field(
        default="https://api.crawlbase.com/",
        description="Crawlbase proxy endpoint"
    )

    # Goodreads settings
    goodreads_base_url: str = Field(
        default="https://www.goodreads.com",
        description="Goodreads site root"
    )

    # Fetch settings
    request_timeout: float = Field(default=90.0, description="Hard timeout per HTTP call in seconds")
    max_attempts: int = Field(default=3, ge=1, description="Fetch attempts per page")
    backoff_base_seconds: float = Field(default=2.0, description="First backoff delay in seconds")

    # Pagination settings
    books_per_page: int = Field(default=100, ge=1, description="Books requested per shelf page")
    max_pages_per_shelf: int = Field(default=200, ge=1, description="Upper bound on pages walked per shelf")

    # Sync settings
    quota_limit: int = Field(default=100, description="Syncs allowed per user and API class")
    sync_lock_ttl_minutes: int = Field(default=30, description="Age after which a running sync marker is stale")

    # Application settings
    database_url: str = Field(
        default="sqlite:///data/shelf-sync.db",
        description="Database connection URL"
    )
    log_level: str = Field(default="INFO", description="Logging level")
    port: int = Field(default=5000, description="HTTP port")


def get_config_from_env() -> SyncConfig:
    """Load configuration from environment variables."""
    return SyncConfig(
        crawlbase_token=os.getenv("CRAWLBASE_TOKEN"),
        crawlbase_url=os.getenv("CRAWLBASE_URL", "https://api.crawlbase.com/"),
        goodreads_base_url=os.getenv("GOODREADS_BASE_URL", "https://www.goodreads.com"),
        request_timeout=float(os.getenv("REQUEST_TIMEOUT", "90")),
        max_attempts=int(os.getenv("MAX_ATTEMPTS", "3")),
        backoff_base_seconds=float(os.getenv("BACKOFF_BASE_SECONDS", "2.0")),
        books_per_page=int(os.getenv("BOOKS_PER_PAGE", "100")),
        max_pages_per_shelf=int(os.getenv("MAX_PAGES_PER_SHELF", "200")),
        quota_limit=int(os.getenv("QUOTA_LIMIT", "100")),
        sync_lock_ttl_minutes=int(os.getenv("SYNC_LOCK_TTL_MINUTES", "30")),
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/shelf-sync.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        port=int(os.getenv("PORT", "5000")),
    )


def is_configured(config: SyncConfig) -> bool:
    """Check if the minimum required configuration is present."""
    return bool(config.crawlbase_token)
