"""Common enums and the base record model."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from task_service.utils.timestamps import utcnow


class TaskStatus(str, Enum):
    """Task status values. Any value may follow any other."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    """Task priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ProjectStatus(str, Enum):
    """Project lifecycle status."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class EventType(str, Enum):
    """Webhook event catalog."""

    TASK_CREATED = "task.created"
    TASK_UPDATED = "task.updated"
    TASK_COMPLETED = "task.completed"
    PROJECT_CREATED = "project.created"
    PROJECT_COMPLETED = "project.completed"


class Record(BaseModel):
    """Immutable stored record.

    Records are never mutated in place: updates produce a new snapshot via
    ``model_copy(update=...)`` which the store swaps in atomically.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=1, description="Server-assigned identifier")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utcnow, description="Last modification timestamp")
