"""Data models for the task service."""

from task_service.models.base import EventType, ProjectStatus, Record, TaskPriority, TaskStatus
from task_service.models.entities import Project, Task, User, WebhookSubscription
from task_service.models.events import Event, Page
from task_service.models.requests import (
    ProjectCreate,
    ProjectUpdate,
    SubscriptionCreate,
    TaskCreate,
    TaskStatusUpdate,
    TaskUpdate,
    UserUpsert,
)

__all__ = [
    # Enums
    "EventType",
    "ProjectStatus",
    "TaskPriority",
    "TaskStatus",
    # Records
    "Record",
    "Project",
    "Task",
    "User",
    "WebhookSubscription",
    # Events
    "Event",
    "Page",
    # Requests
    "ProjectCreate",
    "ProjectUpdate",
    "SubscriptionCreate",
    "TaskCreate",
    "TaskStatusUpdate",
    "TaskUpdate",
    "UserUpsert",
]
