"""
Configuration for CatalogDB.

Uses pydantic-settings for environment variable loading. Every setting has a
default suitable for local development and can be overridden with a
CATALOG_-prefixed environment variable (e.g. CATALOG_DATA_DIR).

Invariants:
    - All settings have sensible defaults for local development
    - Settings are read once per process through get_settings()

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep check() free of side effects besides logging
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

LOG_FORMATS = ("json", "text")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """CatalogDB configuration loaded from environment."""

    # Storage
    data_dir: str = Field(default="/var/lib/catalogdb", description="Directory holding the catalog database")
    db_name: str = Field(default="catalog.db", description="Catalog database file name")
    wal_mode: bool = Field(default=True, description="Enable SQLite WAL mode")
    busy_timeout_ms: int = Field(
        default=5000, ge=0, description="How long a store call waits on a locked database"
    )
    cache_size_pages: int = Field(default=-64000, description="SQLite cache size (negative = KB)")

    # Identifiers
    id_counter: str = Field(default="catalog", description="Counter shared by all entity kinds")

    # Observability
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: str = Field(default="text", description="Log format: json or text")
    slow_query_ms: int = Field(
        default=1000, ge=0, description="Operations slower than this are logged as warnings"
    )

    model_config = {"env_prefix": "CATALOG_"}

    @property
    def db_path(self) -> Path:
        """Full path of the catalog database file."""
        return Path(self.data_dir) / self.db_name

    def check(self) -> list[str]:
        """Check settings that pydantic cannot express.

        Returns:
            List of problems; empty when the settings are usable
        """
        errors = []
        if self.log_format not in LOG_FORMATS:
            errors.append(f"log_format must be one of {LOG_FORMATS}, got {self.log_format!r}")
        if self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"log_level must be one of {LOG_LEVELS}, got {self.log_level!r}")
        if not self.id_counter:
            errors.append("id_counter must not be empty")
        if not Path(self.data_dir).exists():
            logger.warning(f"Data directory {self.data_dir} does not exist; it will be created")
        return errors


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    return Settings()
