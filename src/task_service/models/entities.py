"""Task, Project, User and Webhook Subscription records."""

from datetime import datetime
from typing import Any

from pydantic import Field

from task_service.models.base import EventType, ProjectStatus, Record, TaskPriority, TaskStatus
from task_service.utils.timestamps import format_instant, format_timestamp


class User(Record):
    """Externally provisioned user. Referenced by tasks and projects, never owned."""

    name: str
    email: str

    def summary(self) -> dict[str, Any]:
        """Embedded form used inside task representations."""
        return {"id": self.id, "name": self.name, "email": self.email}

    def to_payload(self) -> dict[str, Any]:
        return {
            **self.summary(),
            "created_at": format_instant(self.created_at),
            "updated_at": format_instant(self.updated_at),
        }


class Task(Record):
    """A unit of work inside a project."""

    title: str
    description: str | None = None
    project_id: int
    assignee_id: int | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority | None = None
    due_date: datetime | None = None
    tags: tuple[str, ...] = ()

    def to_payload(self, assignee: User | None = None) -> dict[str, Any]:
        """Render the full task representation.

        Args:
            assignee: Resolved assignee record (None when unassigned)

        Returns:
            JSON-ready dictionary
        """
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "project_id": self.project_id,
            "assignee_id": self.assignee_id,
            "assignee": assignee.summary() if assignee else None,
            "status": self.status.value,
            "priority": self.priority.value if self.priority else None,
            "due_date": format_timestamp(self.due_date),
            "tags": list(self.tags),
            "created_at": format_instant(self.created_at),
            "updated_at": format_instant(self.updated_at),
        }


class Project(Record):
    """A container of tasks owned by a user."""

    name: str
    description: str | None = None
    owner_id: int
    team_members: tuple[int, ...] = ()
    deadline: datetime | None = None
    status: ProjectStatus = ProjectStatus.ACTIVE

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "owner_id": self.owner_id,
            "team_members": list(self.team_members),
            "deadline": format_timestamp(self.deadline),
            "status": self.status.value,
            "created_at": format_instant(self.created_at),
            "updated_at": format_instant(self.updated_at),
        }


class WebhookSubscription(Record):
    """A subscriber endpoint and the events it receives."""

    url: str
    events: frozenset[EventType] = Field(default_factory=frozenset)
    active: bool = True
    secret: str | None = None

    def wants(self, event: EventType) -> bool:
        return self.active and event in self.events

    def to_payload(self) -> dict[str, Any]:
        # The signing secret is write-only.
        return {
            "id": self.id,
            "url": self.url,
            "events": sorted(e.value for e in self.events),
            "active": self.active,
            "signed": self.secret is not None,
            "created_at": format_instant(self.created_at),
        }
