"""Builders for request bodies used across tests."""

from typing import Any


def project_body(owner_id: int = 1, **overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "name": "Website relaunch",
        "description": "Q3 marketing site",
        "owner_id": owner_id,
        "team_members": [owner_id],
        "deadline": "2030-09-30T17:00:00Z",
    }
    body.update(overrides)
    return body


def task_body(project_id: int, **overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "title": "Draft landing page copy",
        "project_id": project_id,
    }
    body.update(overrides)
    return body
