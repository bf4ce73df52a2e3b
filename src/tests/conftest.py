"""Pytest fixtures for the task service tests."""

import logging
from collections.abc import Generator

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from task_service.api.http_server import create_app
from task_service.config import SeedUser, Settings, StaticToken
from task_service.core.auth import Principal
from task_service.core.webhooks import WebhookDispatcher
from task_service.storage.dead_letters import DeadLetterStore
from task_service.storage.domain_store import DomainStore
from task_service.utils.logging import clear_request_context

from tests.fixtures import (
    ADMIN_TOKEN,
    ALL_SCOPES,
    EMPTY_TOKEN,
    READER_TOKEN,
    RecordingSink,
    WebhookRecorder,
    bearer,
)


@pytest.fixture(autouse=True)
def restore_root_logger() -> Generator[None, None, None]:
    """Keep handler changes made by setup_logging local to each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    clear_request_context()


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with a static token table and seeded users."""
    return Settings(
        auth_mode="static",
        static_tokens={
            ADMIN_TOKEN: StaticToken(subject="admin", scopes=ALL_SCOPES, user_id=1),
            READER_TOKEN: StaticToken(subject="reader", scopes=["tasks:read", "projects:read"], user_id=2),
            EMPTY_TOKEN: StaticToken(subject="nobody", scopes=[]),
        },
        seed_users=[
            SeedUser(id=1, name="Ada Lovelace", email="ada@example.com"),
            SeedUser(id=2, name="Grace Hopper", email="grace@example.com"),
        ],
        rate_limit_requests=1000,
        rate_limit_window_seconds=3600,
        webhook_workers=2,
        webhook_max_retries=1,
        webhook_retry_base_delay=0.0,
        webhook_retry_max_delay=0.0,
        dead_letter_path=":memory:",
        log_level="DEBUG",
        log_format="console",
    )


@pytest.fixture
def admin() -> Principal:
    return Principal(subject="admin", scopes=frozenset(ALL_SCOPES), user_id=1)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return bearer(ADMIN_TOKEN)


@pytest.fixture
def reader_headers() -> dict[str, str]:
    return bearer(READER_TOKEN)


@pytest.fixture
def store() -> DomainStore:
    return DomainStore()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def webhook_recorder() -> WebhookRecorder:
    return WebhookRecorder()


@pytest.fixture
def dispatcher(webhook_recorder: WebhookRecorder) -> WebhookDispatcher:
    """Dispatcher delivering into the recorder without backoff delays."""
    return WebhookDispatcher(
        dead_letters=DeadLetterStore(":memory:"),
        workers=2,
        max_retries=1,
        base_delay=0.0,
        max_delay=0.0,
        transport=httpx.MockTransport(webhook_recorder),
    )


@pytest.fixture
def app(test_settings: Settings, dispatcher: WebhookDispatcher) -> FastAPI:
    return create_app(test_settings, dispatcher=dispatcher)


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Test client with the application lifespan running."""
    with TestClient(app) as test_client:
        yield test_client
