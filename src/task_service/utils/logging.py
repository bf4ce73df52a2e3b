"""structlog setup shared by the API, the webhook workers and the CLI.

Log events pass through stdlib logging so uvicorn and httpx records get the
same rendering and redaction as our own.
"""

import hashlib
import logging
import re
import sys
from functools import lru_cache
from typing import Any

import structlog
from structlog.types import Processor

from task_service.config import Settings, get_settings

SENSITIVE_KEYS = (
    "authorization",
    "token",
    "secret",
    "password",
    "credential",
    "api_key",
)

# Libraries whose INFO output is per-request chatter
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "aiosqlite")

_BEARER = re.compile(r"(Bearer\s+)\S+", re.IGNORECASE)


def fingerprint(secret: str) -> str:
    """Short stable identifier for a credential, safe to log."""
    return "sha256:" + hashlib.sha256(secret.encode("utf-8")).hexdigest()[:12]


def _redact(key: str, value: Any) -> Any:
    if any(marker in key.lower() for marker in SENSITIVE_KEYS):
        if isinstance(value, str) and value:
            return fingerprint(value)
        if isinstance(value, (list, tuple)):
            return [_redact(key, item) for item in value]
        return "***REDACTED***"
    if isinstance(value, dict):
        return {k: _redact(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact(key, item) for item in value]
    if isinstance(value, str) and "bearer" in value.lower():
        return _BEARER.sub(r"\1***", value)
    return value


def sanitize_for_logging(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """structlog processor that keeps credentials out of log output.

    Values under credential-like keys become a fingerprint (or a fixed
    marker for non-strings); inline ``Bearer`` credentials in any string are
    masked.
    """
    return {k: _redact(k, v) for k, v in event_dict.items()}


def bind_request_context(**values: Any) -> None:
    """Bind request-scoped values (request_id, method, path) to every log event."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def _formatter(renderer: Processor, pre_chain: list[Processor]) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain)


def setup_logging(settings: Settings | None = None, use_stderr: bool = False) -> None:
    """Route structlog through the root logger.

    Args:
        settings: Source of log level, format and optional file (defaults to cached settings)
        use_stderr: Write console output to stderr instead of stdout
    """
    settings = settings or get_settings()

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        sanitize_for_logging,
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if settings.log_format == "console":
        renderer: Processor = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty() if use_stderr else True)
    else:
        renderer = structlog.processors.JSONRenderer()

    stream_handler = logging.StreamHandler(sys.stderr if use_stderr else sys.stdout)
    stream_handler.setFormatter(_formatter(renderer, pre_chain))
    handlers: list[logging.Handler] = [stream_handler]

    if settings.log_file:
        # Files always get JSON so they stay machine-readable
        file_handler = logging.FileHandler(settings.log_file)
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), pre_chain))
        handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers[:] = handlers
    root.setLevel(settings.log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@lru_cache(maxsize=128)
def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger for ``name`` (usually ``__name__``)."""
    return structlog.get_logger(name)
