"""Request bodies accepted by the API.

Type coercion happens here; domain rules (length bounds, timestamp format,
references) are enforced by the store so every write path shares them.
"""

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from task_service.models.base import EventType, ProjectStatus, TaskPriority, TaskStatus


class RequestBody(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TaskCreate(RequestBody):
    title: str
    description: str | None = None
    project_id: int
    assignee_id: int | None = None
    priority: TaskPriority | None = None
    due_date: str | None = Field(default=None, description="YYYY-MM-DDTHH:MM:SSZ")
    tags: list[str] = Field(default_factory=list)


class TaskUpdate(RequestBody):
    """Partial task update; only fields present in the body are applied."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    description: str | None = None
    assignee_id: int | None = None
    priority: TaskPriority | None = None
    due_date: str | None = None
    tags: list[str] | None = None


class TaskStatusUpdate(RequestBody):
    status: TaskStatus


class ProjectCreate(RequestBody):
    name: str
    description: str | None = None
    owner_id: int
    team_members: list[int] = Field(default_factory=list)
    deadline: str | None = Field(default=None, description="YYYY-MM-DDTHH:MM:SSZ")


class ProjectUpdate(RequestBody):
    """Partial project update; only fields present in the body are applied."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    description: str | None = None
    owner_id: int | None = None
    team_members: list[int] | None = None
    deadline: str | None = None
    status: ProjectStatus | None = None


class UserUpsert(RequestBody):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+$")


class SubscriptionCreate(RequestBody):
    url: HttpUrl
    events: list[EventType] = Field(..., min_length=1)
    secret: str | None = Field(default=None, min_length=8)
    active: bool = True
