"""Task, project and user operations on top of the domain store.

Services turn store records into API representations (resolving the
assignee summary for tasks) and emit domain events for the webhook
dispatcher after each successful mutation.
"""

from typing import Any, Protocol

from task_service.core.auth import Principal
from task_service.models import (
    Event,
    EventType,
    Page,
    ProjectCreate,
    ProjectStatus,
    ProjectUpdate,
    Task,
    TaskCreate,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
    User,
    UserUpsert,
)
from task_service.storage.domain_store import DomainStore
from task_service.utils.logging import get_logger
from task_service.utils.metrics import get_metrics

logger = get_logger(__name__)
metrics = get_metrics()


class EventSink(Protocol):
    """Anything that accepts domain events without blocking."""

    def emit(self, event: Event) -> int: ...


def page_payload(page: Page[Any], items: list[dict[str, Any]]) -> dict[str, Any]:
    """List response body: ``{data, pagination}``."""
    return {"data": items, "pagination": page.pagination()}


class TaskService:
    """Create, read, update and list tasks."""

    def __init__(self, store: DomainStore, events: EventSink) -> None:
        self.store = store
        self.events = events

    def render(self, task: Task) -> dict[str, Any]:
        """Full task representation with the assignee summary embedded."""
        return task.to_payload(assignee=self.store.find_user(task.assignee_id))

    async def create_task(self, body: TaskCreate, actor: Principal) -> dict[str, Any]:
        try:
            task = await self.store.create_task(
                title=body.title,
                project_id=body.project_id,
                description=body.description,
                assignee_id=body.assignee_id,
                priority=body.priority,
                due_date=body.due_date,
                tags=body.tags,
            )
        except Exception:
            metrics.record_domain_operation("create", "task", "error")
            raise

        metrics.record_domain_operation("create", "task", "success")
        payload = self.render(task)
        self.events.emit(Event(event=EventType.TASK_CREATED, data=payload))
        logger.info("task_created", task_id=task.id, project_id=task.project_id, actor=actor.subject)
        return payload

    async def get_task(self, task_id: int) -> dict[str, Any]:
        return self.render(await self.store.get_task(task_id))

    async def list_tasks(
        self,
        project_id: int | None = None,
        assignee_id: int | None = None,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> dict[str, Any]:
        result = await self.store.list_tasks(
            project_id=project_id,
            assignee_id=assignee_id,
            status=status,
            priority=priority,
            page=page,
            limit=limit,
        )
        return page_payload(result, [self.render(t) for t in result.items])

    async def update_task(self, task_id: int, body: TaskUpdate, actor: Principal) -> dict[str, Any]:
        """Apply the fields present in ``body`` and emit ``task.updated``."""
        changes = body.model_dump(exclude_unset=True)
        try:
            _, task = await self.store.update_task(task_id, changes)
        except Exception:
            metrics.record_domain_operation("update", "task", "error")
            raise

        metrics.record_domain_operation("update", "task", "success")
        payload = self.render(task)
        self.events.emit(Event(event=EventType.TASK_UPDATED, data=payload))
        logger.info("task_updated", task_id=task_id, fields=sorted(changes), actor=actor.subject)
        return payload

    async def update_status(self, task_id: int, status: TaskStatus, actor: Principal) -> dict[str, Any]:
        """Set a task's status.

        Any status may follow any other. Moving to ``completed`` emits
        ``task.completed`` carrying the acting user; every other status change
        emits ``task.updated``.
        """
        try:
            previous, task = await self.store.update_task(task_id, {"status": status})
        except Exception:
            metrics.record_domain_operation("update_status", "task", "error")
            raise

        metrics.record_domain_operation("update_status", "task", "success")
        payload = self.render(task)

        if task.status == TaskStatus.COMPLETED:
            acting_user = self.store.find_user(actor.user_id)
            data = {
                **payload,
                "completed_by": {
                    "subject": actor.subject,
                    "user": acting_user.summary() if acting_user else None,
                },
            }
            self.events.emit(Event(event=EventType.TASK_COMPLETED, data=data))
        else:
            self.events.emit(Event(event=EventType.TASK_UPDATED, data=payload))

        logger.info(
            "task_status_changed",
            task_id=task_id,
            previous=previous.status.value,
            status=task.status.value,
            actor=actor.subject,
        )
        return payload


class ProjectService:
    """Create, read, update and list projects."""

    def __init__(self, store: DomainStore, events: EventSink) -> None:
        self.store = store
        self.events = events

    async def create_project(self, body: ProjectCreate, actor: Principal) -> dict[str, Any]:
        try:
            project = await self.store.create_project(
                name=body.name,
                owner_id=body.owner_id,
                description=body.description,
                team_members=body.team_members,
                deadline=body.deadline,
            )
        except Exception:
            metrics.record_domain_operation("create", "project", "error")
            raise

        metrics.record_domain_operation("create", "project", "success")
        payload = project.to_payload()
        self.events.emit(Event(event=EventType.PROJECT_CREATED, data=payload))
        logger.info("project_created", project_id=project.id, actor=actor.subject)
        return payload

    async def get_project(self, project_id: int) -> dict[str, Any]:
        return (await self.store.get_project(project_id)).to_payload()

    async def list_projects(
        self,
        owner_id: int | None = None,
        member_id: int | None = None,
        status: ProjectStatus | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> dict[str, Any]:
        result = await self.store.list_projects(
            owner_id=owner_id,
            member_id=member_id,
            status=status,
            page=page,
            limit=limit,
        )
        return page_payload(result, [p.to_payload() for p in result.items])

    async def update_project(self, project_id: int, body: ProjectUpdate, actor: Principal) -> dict[str, Any]:
        """Apply the fields present in ``body``.

        Emits ``project.completed`` when the update moves the project into
        ``completed``.
        """
        changes = body.model_dump(exclude_unset=True)
        try:
            previous, project = await self.store.update_project(project_id, changes)
        except Exception:
            metrics.record_domain_operation("update", "project", "error")
            raise

        metrics.record_domain_operation("update", "project", "success")
        payload = project.to_payload()
        if project.status == ProjectStatus.COMPLETED and previous.status != ProjectStatus.COMPLETED:
            self.events.emit(Event(event=EventType.PROJECT_COMPLETED, data=payload))

        logger.info("project_updated", project_id=project_id, fields=sorted(changes), actor=actor.subject)
        return payload


class UserService:
    """Read access to users plus the provisioning upsert."""

    def __init__(self, store: DomainStore) -> None:
        self.store = store

    async def get_user(self, user_id: int) -> dict[str, Any]:
        return (await self.store.get_user(user_id)).to_payload()

    async def list_users(self, page: int = 1, limit: int | None = None) -> dict[str, Any]:
        result = await self.store.list_users(page=page, limit=limit)
        return page_payload(result, [u.to_payload() for u in result.items])

    async def upsert_user(self, user_id: int, body: UserUpsert, actor: Principal) -> dict[str, Any]:
        user: User = await self.store.upsert_user(user_id, name=body.name, email=body.email)
        logger.info("user_provisioned", user_id=user_id, actor=actor.subject)
        return user.to_payload()
