"""Unit tests for logging and metrics utilities."""

import logging
import sys
from pathlib import Path

import pytest
import structlog
from prometheus_client import REGISTRY

from task_service.config import Settings
from task_service.utils.logging import (
    bind_request_context,
    clear_request_context,
    fingerprint,
    get_logger,
    sanitize_for_logging,
    setup_logging,
)
from task_service.utils.metrics import Metrics, get_metrics


def sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestGetLogger:
    """Tests for get_logger function."""

    def test_returns_logger(self) -> None:
        logger = get_logger("test_module")

        assert hasattr(logger, "info")
        assert hasattr(logger, "error")
        assert hasattr(logger, "exception")

    def test_multiple_calls_same_logger(self) -> None:
        """Test multiple calls return cached logger."""
        assert get_logger("cached_test_module") is get_logger("cached_test_module")


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_json_format(self) -> None:
        setup_logging(Settings(log_level="WARNING", log_format="json"))

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)

    def test_console_format_to_stderr(self) -> None:
        setup_logging(Settings(log_level="DEBUG", log_format="console"), use_stderr=True)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert root.handlers[0].stream is sys.stderr

    def test_log_file_handler(self, tmp_path: Path) -> None:
        log_file = tmp_path / "service.log"
        setup_logging(Settings(log_file=str(log_file)))

        handlers = logging.getLogger().handlers
        assert any(isinstance(h, logging.FileHandler) for h in handlers)

    def test_third_party_loggers_quieted(self) -> None:
        setup_logging(Settings(log_level="DEBUG"))

        assert logging.getLogger("httpx").level == logging.WARNING


class TestSanitize:
    """Tests for sensitive value redaction."""

    def test_token_becomes_fingerprint(self) -> None:
        result = sanitize_for_logging(None, "info", {"access_token": "abcdefghijklmnop"})

        assert result["access_token"] == fingerprint("abcdefghijklmnop")
        assert result["access_token"].startswith("sha256:")
        assert "abcdefghijklmnop" not in result["access_token"]

    def test_same_secret_same_fingerprint(self) -> None:
        first = sanitize_for_logging(None, "info", {"client_secret": "short"})
        second = sanitize_for_logging(None, "info", {"client_secret": "short"})

        assert first == second

    def test_nested_authorization_redacted(self) -> None:
        result = sanitize_for_logging(None, "info", {"headers": {"Authorization": 42}})

        assert result["headers"]["Authorization"] == "***REDACTED***"

    def test_inline_bearer_masked(self) -> None:
        result = sanitize_for_logging(None, "info", {"event": "rejected header Bearer abc.def.ghi"})

        assert result["event"] == "rejected header Bearer ***"

    def test_lists_are_walked(self) -> None:
        result = sanitize_for_logging(None, "info", {"secrets": ["one-secret", "two-secret"]})

        assert result["secrets"] == [fingerprint("one-secret"), fingerprint("two-secret")]

    def test_plain_values_untouched(self) -> None:
        event = {"event": "task_created", "task_id": 3, "actor": "admin", "tags": ["web"]}

        assert sanitize_for_logging(None, "info", dict(event)) == event


class TestRequestContext:
    """Tests for request-scoped log context."""

    def test_bind_replaces_previous_context(self) -> None:
        bind_request_context(request_id="first", path="/a")
        bind_request_context(request_id="second")

        context = structlog.contextvars.get_contextvars()
        assert context == {"request_id": "second"}

    def test_clear(self) -> None:
        bind_request_context(request_id="abc")
        clear_request_context()

        assert structlog.contextvars.get_contextvars() == {}


class TestMetrics:
    """Tests for the Metrics collection."""

    def test_get_metrics_cached(self) -> None:
        metrics = get_metrics()

        assert isinstance(metrics, Metrics)
        assert get_metrics() is metrics

    def test_record_http_request(self) -> None:
        labels = {"method": "GET", "route": "/metrics-test", "status": "200"}
        before = sample("http_requests_total", **labels)

        get_metrics().record_http_request("GET", "/metrics-test", 200, 0.01)

        assert sample("http_requests_total", **labels) == before + 1
        assert sample("http_request_duration_seconds_count", method="GET", route="/metrics-test") >= 1

    def test_record_domain_operation(self) -> None:
        labels = {"operation": "archive", "entity": "widget", "status": "success"}
        before = sample("domain_operations_total", **labels)

        get_metrics().record_domain_operation("archive", "widget", "success")

        assert sample("domain_operations_total", **labels) == before + 1

    def test_record_webhook_delivery(self) -> None:
        labels = {"event": "metrics.test", "outcome": "delivered"}
        before = sample("webhook_deliveries_total", **labels)

        get_metrics().record_webhook_delivery("metrics.test", "delivered", 0.2)

        assert sample("webhook_deliveries_total", **labels) == before + 1
