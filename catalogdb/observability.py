"""
Logging setup for CatalogDB.

Every module logs through ``logging.getLogger(__name__)`` and passes
structured context in ``extra``. setup_logging() installs one handler on the
root logger: JSON lines (json_log_formatter) for production, or a plain text
format for local development.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import Settings


class CatalogJSONFormatter(json_log_formatter.JSONFormatter):
    """JSON formatter that adds level and logger name to every record."""

    def json_record(self, message: str, extra: dict, record: logging.LogRecord) -> dict:
        extra = super().json_record(message, extra, record)
        extra["level"] = record.levelname
        extra["logger"] = record.name
        return extra


def setup_logging(settings: Settings) -> None:
    """Configure logging based on configuration.

    Args:
        settings: Catalog settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = CatalogJSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
