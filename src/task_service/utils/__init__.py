"""Shared utilities."""

from task_service.utils.logging import get_logger, setup_logging
from task_service.utils.metrics import get_metrics
from task_service.utils.timestamps import (
    EXPECTED_FORMAT,
    advance,
    format_instant,
    format_timestamp,
    parse_timestamp,
    utcnow,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "get_metrics",
    "EXPECTED_FORMAT",
    "advance",
    "format_instant",
    "format_timestamp",
    "parse_timestamp",
    "utcnow",
]
