"""In-process store for tasks, projects and users.

The store owns every Task and Project record and enforces field and
referential invariants before any write. Records are immutable snapshots;
an update builds a new snapshot under the record's lock and swaps it in, so
a concurrent reader sees either the old or the new record, never a mix.
"""

import asyncio
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from task_service.core.errors import InvalidParameter, InvalidReference, NotFound
from task_service.models import (
    Page,
    Project,
    ProjectStatus,
    Record,
    Task,
    TaskPriority,
    TaskStatus,
    User,
)
from task_service.utils.logging import get_logger
from task_service.utils.timestamps import EXPECTED_FORMAT, advance, parse_timestamp

logger = get_logger(__name__)

R = TypeVar("R", bound=Record)

MAX_TEXT_LENGTH = 255
MAX_TAG_LENGTH = 64

TASK_FIELDS = {"title", "description", "assignee_id", "priority", "due_date", "tags", "status"}
PROJECT_FIELDS = {"name", "description", "owner_id", "team_members", "deadline", "status"}


class DomainStore:
    """Tasks, projects and users keyed by generated integer ids."""

    def __init__(self, default_limit: int = 20, max_limit: int = 100) -> None:
        """Initialize an empty store.

        Args:
            default_limit: Page size when the caller gives none
            max_limit: Largest accepted page size
        """
        self.default_limit = default_limit
        self.max_limit = max_limit

        self._users: dict[int, User] = {}
        self._tasks: dict[int, Task] = {}
        self._projects: dict[int, Project] = {}
        self._next_id: dict[str, int] = {"task": 1, "project": 1}
        self._locks: dict[tuple[str, int], asyncio.Lock] = {}
        self._create_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _text(parameter: str, value: Any, required: bool) -> str | None:
        if value is None:
            if required:
                raise InvalidParameter(parameter, None, f"'{parameter}' is required")
            return None
        if not isinstance(value, str):
            raise InvalidParameter(parameter, value, f"'{parameter}' must be a string")
        if required and not value.strip():
            raise InvalidParameter(parameter, value, f"'{parameter}' must not be blank")
        if len(value) > MAX_TEXT_LENGTH:
            raise InvalidParameter(
                parameter,
                value,
                f"'{parameter}' must be at most {MAX_TEXT_LENGTH} characters",
            )
        return value

    @staticmethod
    def _timestamp(parameter: str, value: Any) -> Any:
        if value is None:
            return None
        try:
            return parse_timestamp(value)
        except ValueError:
            raise InvalidParameter(
                parameter,
                value,
                f"Invalid date format for '{parameter}'",
                expected_format=EXPECTED_FORMAT,
            ) from None

    @staticmethod
    def _tags(value: Iterable[Any]) -> tuple[str, ...]:
        tags: list[str] = []
        for tag in value:
            if not isinstance(tag, str) or not tag.strip() or len(tag) > MAX_TAG_LENGTH:
                raise InvalidParameter(
                    "tags",
                    tag,
                    f"Tags must be non-empty strings of at most {MAX_TAG_LENGTH} characters",
                )
            tag = tag.strip()
            if tag not in tags:
                tags.append(tag)
        return tuple(tags)

    @staticmethod
    def _enum(parameter: str, value: Any, enum: type) -> Any:
        if value is None or isinstance(value, enum):
            return value
        try:
            return enum(value)
        except ValueError:
            allowed = ", ".join(member.value for member in enum)
            raise InvalidParameter(parameter, value, f"'{parameter}' must be one of: {allowed}") from None

    def _user_ref(self, parameter: str, user_id: Any) -> None:
        if user_id not in self._users:
            raise InvalidReference(parameter, user_id, "User")

    def _project_ref(self, parameter: str, project_id: Any) -> None:
        if project_id not in self._projects:
            raise InvalidReference(parameter, project_id, "Project")

    def _members(self, value: Iterable[Any]) -> tuple[int, ...]:
        members: list[int] = []
        for user_id in value:
            self._user_ref("team_members", user_id)
            if user_id not in members:
                members.append(user_id)
        return tuple(members)

    def _page_bounds(self, page: int, limit: int | None) -> tuple[int, int]:
        if limit is None:
            limit = self.default_limit
        if not isinstance(page, int) or page < 1:
            raise InvalidParameter("page", page, "'page' must be an integer >= 1")
        if not isinstance(limit, int) or not 1 <= limit <= self.max_limit:
            raise InvalidParameter(
                "limit",
                limit,
                f"'limit' must be an integer between 1 and {self.max_limit}",
            )
        return page, limit

    def _lock(self, kind: str, record_id: int) -> asyncio.Lock:
        return self._locks.setdefault((kind, record_id), asyncio.Lock())

    def _allocate(self, kind: str) -> int:
        record_id = self._next_id[kind]
        self._next_id[kind] = record_id + 1
        return record_id

    @staticmethod
    def _paginate(records: Iterable[R], predicate: Callable[[R], bool], page: int, limit: int) -> Page[R]:
        matched = sorted(
            (r for r in records if predicate(r)),
            key=lambda r: (r.created_at, r.id),
        )
        start = (page - 1) * limit
        return Page(items=matched[start : start + limit], total=len(matched), page=page, limit=limit)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def upsert_user(self, user_id: int, name: str, email: str) -> User:
        """Create or replace a user record provisioned by the identity system."""
        if not isinstance(user_id, int) or user_id < 1:
            raise InvalidParameter("id", user_id, "'id' must be a positive integer")
        name = self._text("name", name, required=True)
        email = self._text("email", email, required=True)

        async with self._lock("user", user_id):
            existing = self._users.get(user_id)
            if existing:
                user = existing.model_copy(
                    update={"name": name, "email": email, "updated_at": advance(existing.updated_at)}
                )
            else:
                user = User(id=user_id, name=name, email=email)
            self._users[user_id] = user

        logger.debug("user_upserted", user_id=user_id, created=existing is None)
        return user

    def find_user(self, user_id: int | None) -> User | None:
        if user_id is None:
            return None
        return self._users.get(user_id)

    async def get_user(self, user_id: int) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise NotFound("User", user_id)
        return user

    async def list_users(self, page: int = 1, limit: int | None = None) -> Page[User]:
        page, limit = self._page_bounds(page, limit)
        return self._paginate(list(self._users.values()), lambda _: True, page, limit)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def create_project(
        self,
        name: str,
        owner_id: int,
        description: str | None = None,
        team_members: Iterable[int] = (),
        deadline: str | None = None,
    ) -> Project:
        """Validate and persist a new project.

        Raises:
            InvalidParameter: name blank/too long, deadline malformed
            InvalidReference: owner or a team member does not exist
        """
        name = self._text("name", name, required=True)
        description = self._text("description", description, required=False)
        parsed_deadline = self._timestamp("deadline", deadline)
        self._user_ref("owner_id", owner_id)
        members = self._members(team_members)

        async with self._create_lock:
            project = Project(
                id=self._allocate("project"),
                name=name,
                description=description,
                owner_id=owner_id,
                team_members=members,
                deadline=parsed_deadline,
            )
            self._projects[project.id] = project

        logger.info("project_stored", project_id=project.id, owner_id=owner_id)
        return project

    async def get_project(self, project_id: int) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise NotFound("Project", project_id)
        return project

    async def update_project(self, project_id: int, changes: dict[str, Any]) -> tuple[Project, Project]:
        """Apply a partial update to a project.

        Args:
            project_id: Project to update
            changes: Field values keyed by name (only PROJECT_FIELDS)

        Returns:
            Tuple of (previous snapshot, new snapshot)
        """
        await self.get_project(project_id)
        unknown = set(changes) - PROJECT_FIELDS
        if unknown:
            field = sorted(unknown)[0]
            raise InvalidParameter(field, changes[field], f"'{field}' cannot be updated")

        update: dict[str, Any] = {}
        if "name" in changes:
            update["name"] = self._text("name", changes["name"], required=True)
        if "description" in changes:
            update["description"] = self._text("description", changes["description"], required=False)
        if "deadline" in changes:
            update["deadline"] = self._timestamp("deadline", changes["deadline"])
        if "status" in changes:
            if changes["status"] is None:
                raise InvalidParameter("status", None, "'status' must not be null")
            update["status"] = self._enum("status", changes["status"], ProjectStatus)
        if "owner_id" in changes:
            self._user_ref("owner_id", changes["owner_id"])
            update["owner_id"] = changes["owner_id"]
        if "team_members" in changes:
            update["team_members"] = self._members(changes["team_members"] or ())

        async with self._lock("project", project_id):
            previous = await self.get_project(project_id)
            update["updated_at"] = advance(previous.updated_at)
            project = previous.model_copy(update=update)
            self._projects[project_id] = project

        return previous, project

    async def list_projects(
        self,
        owner_id: int | None = None,
        member_id: int | None = None,
        status: ProjectStatus | str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> Page[Project]:
        """List projects ordered by creation time, filtered by owner, member and status."""
        page, limit = self._page_bounds(page, limit)
        status = self._enum("status", status, ProjectStatus)

        def matches(project: Project) -> bool:
            if owner_id is not None and project.owner_id != owner_id:
                return False
            if member_id is not None and member_id not in project.team_members:
                return False
            if status is not None and project.status != status:
                return False
            return True

        return self._paginate(list(self._projects.values()), matches, page, limit)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def create_task(
        self,
        title: str,
        project_id: int,
        description: str | None = None,
        assignee_id: int | None = None,
        priority: TaskPriority | str | None = None,
        due_date: str | None = None,
        tags: Iterable[str] = (),
    ) -> Task:
        """Validate and persist a new task in status ``todo``.

        Raises:
            InvalidParameter: title blank/too long, bad priority, due_date malformed, bad tag
            InvalidReference: project or assignee does not exist
        """
        title = self._text("title", title, required=True)
        description = self._text("description", description, required=False)
        priority = self._enum("priority", priority, TaskPriority)
        parsed_due = self._timestamp("due_date", due_date)
        clean_tags = self._tags(tags)
        self._project_ref("project_id", project_id)
        if assignee_id is not None:
            self._user_ref("assignee_id", assignee_id)

        async with self._create_lock:
            task = Task(
                id=self._allocate("task"),
                title=title,
                description=description,
                project_id=project_id,
                assignee_id=assignee_id,
                priority=priority,
                due_date=parsed_due,
                tags=clean_tags,
            )
            self._tasks[task.id] = task

        logger.info("task_stored", task_id=task.id, project_id=project_id)
        return task

    async def get_task(self, task_id: int) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFound("Task", task_id)
        return task

    async def update_task(self, task_id: int, changes: dict[str, Any]) -> tuple[Task, Task]:
        """Apply a partial update to a task.

        Args:
            task_id: Task to update
            changes: Field values keyed by name (only TASK_FIELDS)

        Returns:
            Tuple of (previous snapshot, new snapshot)
        """
        await self.get_task(task_id)
        unknown = set(changes) - TASK_FIELDS
        if unknown:
            field = sorted(unknown)[0]
            raise InvalidParameter(field, changes[field], f"'{field}' cannot be updated")

        update: dict[str, Any] = {}
        if "title" in changes:
            update["title"] = self._text("title", changes["title"], required=True)
        if "description" in changes:
            update["description"] = self._text("description", changes["description"], required=False)
        if "priority" in changes:
            update["priority"] = self._enum("priority", changes["priority"], TaskPriority)
        if "status" in changes:
            if changes["status"] is None:
                raise InvalidParameter("status", None, "'status' must not be null")
            update["status"] = self._enum("status", changes["status"], TaskStatus)
        if "due_date" in changes:
            update["due_date"] = self._timestamp("due_date", changes["due_date"])
        if "tags" in changes:
            update["tags"] = self._tags(changes["tags"] or ())
        if "assignee_id" in changes:
            if changes["assignee_id"] is not None:
                self._user_ref("assignee_id", changes["assignee_id"])
            update["assignee_id"] = changes["assignee_id"]

        async with self._lock("task", task_id):
            previous = await self.get_task(task_id)
            update["updated_at"] = advance(previous.updated_at)
            task = previous.model_copy(update=update)
            self._tasks[task_id] = task

        return previous, task

    async def list_tasks(
        self,
        project_id: int | None = None,
        assignee_id: int | None = None,
        status: TaskStatus | str | None = None,
        priority: TaskPriority | str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> Page[Task]:
        """List tasks ordered by creation time, filtered by project, assignee, status and priority."""
        page, limit = self._page_bounds(page, limit)
        status = self._enum("status", status, TaskStatus)
        priority = self._enum("priority", priority, TaskPriority)

        def matches(task: Task) -> bool:
            if project_id is not None and task.project_id != project_id:
                return False
            if assignee_id is not None and task.assignee_id != assignee_id:
                return False
            if status is not None and task.status != status:
                return False
            if priority is not None and task.priority != priority:
                return False
            return True

        return self._paginate(list(self._tasks.values()), matches, page, limit)

    def counts(self) -> dict[str, int]:
        """Record counts for status reporting."""
        return {
            "users": len(self._users),
            "projects": len(self._projects),
            "tasks": len(self._tasks),
        }
