"""Test doubles and request body builders."""

from tests.fixtures.doubles import (
    ADMIN_TOKEN,
    ALL_SCOPES,
    EMPTY_TOKEN,
    READER_TOKEN,
    RecordingSink,
    WebhookRecorder,
    bearer,
)
from tests.fixtures.factories import project_body, task_body

__all__ = [
    # Tokens
    "ADMIN_TOKEN",
    "ALL_SCOPES",
    "EMPTY_TOKEN",
    "READER_TOKEN",
    "bearer",
    # Doubles
    "RecordingSink",
    "WebhookRecorder",
    # Builders
    "project_body",
    "task_body",
]
