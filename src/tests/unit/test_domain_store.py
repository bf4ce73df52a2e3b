"""Unit tests for the domain store."""

import asyncio

import pytest

from task_service.core.errors import InvalidParameter, InvalidReference, NotFound
from task_service.models import ProjectStatus, TaskPriority, TaskStatus
from task_service.storage.domain_store import DomainStore
from task_service.utils.timestamps import EXPECTED_FORMAT


async def seed(store: DomainStore) -> int:
    """Two users and one project; returns the project id."""
    await store.upsert_user(1, name="Ada", email="ada@example.com")
    await store.upsert_user(2, name="Grace", email="grace@example.com")
    project = await store.create_project(name="Apollo", owner_id=1, team_members=[1, 2])
    return project.id


class TestUsers:
    """Tests for user provisioning."""

    @pytest.mark.asyncio
    async def test_upsert_creates_then_replaces(self, store: DomainStore) -> None:
        created = await store.upsert_user(5, name="Ada", email="ada@example.com")
        replaced = await store.upsert_user(5, name="Ada L.", email="ada@example.com")

        assert replaced.id == 5
        assert replaced.name == "Ada L."
        assert replaced.created_at == created.created_at
        assert replaced.updated_at > created.updated_at

    @pytest.mark.asyncio
    async def test_get_missing_user(self, store: DomainStore) -> None:
        with pytest.raises(NotFound):
            await store.get_user(42)

    @pytest.mark.asyncio
    async def test_invalid_user_id(self, store: DomainStore) -> None:
        with pytest.raises(InvalidParameter) as exc_info:
            await store.upsert_user(0, name="x", email="x@example.com")

        assert exc_info.value.parameter == "id"


class TestProjects:
    """Tests for project creation and updates."""

    @pytest.mark.asyncio
    async def test_create_defaults(self, store: DomainStore) -> None:
        project_id = await seed(store)
        project = await store.get_project(project_id)

        assert project.status == ProjectStatus.ACTIVE
        assert project.team_members == (1, 2)
        assert project.deadline is None

    @pytest.mark.asyncio
    async def test_unknown_owner(self, store: DomainStore) -> None:
        with pytest.raises(InvalidReference) as exc_info:
            await store.create_project(name="X", owner_id=99)

        assert exc_info.value.parameter == "owner_id"

    @pytest.mark.asyncio
    async def test_unknown_team_member(self, store: DomainStore) -> None:
        await store.upsert_user(1, name="Ada", email="ada@example.com")

        with pytest.raises(InvalidReference) as exc_info:
            await store.create_project(name="X", owner_id=1, team_members=[1, 77])

        assert exc_info.value.details["provided_value"] == 77

    @pytest.mark.asyncio
    async def test_bad_deadline(self, store: DomainStore) -> None:
        await store.upsert_user(1, name="Ada", email="ada@example.com")

        with pytest.raises(InvalidParameter) as exc_info:
            await store.create_project(name="X", owner_id=1, deadline="next week")

        assert exc_info.value.parameter == "deadline"
        assert exc_info.value.details["expected_format"] == EXPECTED_FORMAT

    @pytest.mark.asyncio
    async def test_update_returns_previous_and_new(self, store: DomainStore) -> None:
        project_id = await seed(store)

        previous, project = await store.update_project(project_id, {"status": "completed"})

        assert previous.status == ProjectStatus.ACTIVE
        assert project.status == ProjectStatus.COMPLETED
        assert project.updated_at > previous.updated_at
        assert (await store.get_project(project_id)).status == ProjectStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_update_missing_project(self, store: DomainStore) -> None:
        with pytest.raises(NotFound):
            await store.update_project(5, {"name": "x"})

    @pytest.mark.asyncio
    async def test_failed_update_leaves_record_unchanged(self, store: DomainStore) -> None:
        project_id = await seed(store)
        before = await store.get_project(project_id)

        with pytest.raises(InvalidReference):
            await store.update_project(project_id, {"name": "Renamed", "owner_id": 404})

        assert await store.get_project(project_id) == before

    @pytest.mark.asyncio
    async def test_list_filters(self, store: DomainStore) -> None:
        await seed(store)
        await store.create_project(name="Solo", owner_id=2)

        by_owner = await store.list_projects(owner_id=2)
        by_member = await store.list_projects(member_id=2)

        assert [p.name for p in by_owner.items] == ["Solo"]
        assert [p.name for p in by_member.items] == ["Apollo"]


class TestTaskCreation:
    """Tests for task creation invariants."""

    @pytest.mark.asyncio
    async def test_defaults(self, store: DomainStore) -> None:
        project_id = await seed(store)

        task = await store.create_task(title="Write docs", project_id=project_id)

        assert task.status == TaskStatus.TODO
        assert task.assignee_id is None
        assert task.priority is None
        assert task.tags == ()
        assert task.id == 1

    @pytest.mark.asyncio
    async def test_ids_increase(self, store: DomainStore) -> None:
        project_id = await seed(store)

        first = await store.create_task(title="a", project_id=project_id)
        second = await store.create_task(title="b", project_id=project_id)

        assert second.id == first.id + 1

    @pytest.mark.asyncio
    async def test_unknown_project(self, store: DomainStore) -> None:
        await seed(store)

        with pytest.raises(InvalidReference) as exc_info:
            await store.create_task(title="a", project_id=999)

        assert exc_info.value.parameter == "project_id"
        assert exc_info.value.details["provided_value"] == 999

    @pytest.mark.asyncio
    async def test_unknown_assignee(self, store: DomainStore) -> None:
        project_id = await seed(store)

        with pytest.raises(InvalidReference) as exc_info:
            await store.create_task(title="a", project_id=project_id, assignee_id=55)

        assert exc_info.value.parameter == "assignee_id"

    @pytest.mark.asyncio
    async def test_malformed_due_date(self, store: DomainStore) -> None:
        project_id = await seed(store)

        with pytest.raises(InvalidParameter) as exc_info:
            await store.create_task(title="a", project_id=project_id, due_date="tomorrow")

        assert exc_info.value.parameter == "due_date"
        assert exc_info.value.details["provided_value"] == "tomorrow"
        assert exc_info.value.details["expected_format"] == EXPECTED_FORMAT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("title", ["", "   ", "x" * 256])
    async def test_bad_title(self, store: DomainStore, title: str) -> None:
        project_id = await seed(store)

        with pytest.raises(InvalidParameter) as exc_info:
            await store.create_task(title=title, project_id=project_id)

        assert exc_info.value.parameter == "title"

    @pytest.mark.asyncio
    async def test_title_at_limit_accepted(self, store: DomainStore) -> None:
        project_id = await seed(store)

        task = await store.create_task(title="x" * 255, project_id=project_id)

        assert len(task.title) == 255

    @pytest.mark.asyncio
    async def test_tags_deduplicated_in_order(self, store: DomainStore) -> None:
        project_id = await seed(store)

        task = await store.create_task(
            title="a", project_id=project_id, tags=["ui", "bug", "ui", " bug "]
        )

        assert task.tags == ("ui", "bug")

    @pytest.mark.asyncio
    async def test_bad_priority(self, store: DomainStore) -> None:
        project_id = await seed(store)

        with pytest.raises(InvalidParameter) as exc_info:
            await store.create_task(title="a", project_id=project_id, priority="critical")

        assert exc_info.value.parameter == "priority"

    @pytest.mark.asyncio
    async def test_failed_create_stores_nothing(self, store: DomainStore) -> None:
        await seed(store)

        with pytest.raises(InvalidReference):
            await store.create_task(title="a", project_id=999)

        assert store.counts()["tasks"] == 0


class TestTaskUpdates:
    """Tests for task updates."""

    @pytest.mark.asyncio
    async def test_status_update(self, store: DomainStore) -> None:
        project_id = await seed(store)
        task = await store.create_task(title="a", project_id=project_id)

        previous, updated = await store.update_task(task.id, {"status": TaskStatus.COMPLETED})

        assert previous.status == TaskStatus.TODO
        assert updated.status == TaskStatus.COMPLETED
        assert updated.updated_at > previous.updated_at
        assert updated.created_at == previous.created_at

    @pytest.mark.asyncio
    async def test_any_transition_allowed(self, store: DomainStore) -> None:
        project_id = await seed(store)
        task = await store.create_task(title="a", project_id=project_id)

        await store.update_task(task.id, {"status": "completed"})
        _, reopened = await store.update_task(task.id, {"status": "todo"})

        assert reopened.status == TaskStatus.TODO

    @pytest.mark.asyncio
    async def test_null_status_rejected(self, store: DomainStore) -> None:
        project_id = await seed(store)
        task = await store.create_task(title="a", project_id=project_id)

        with pytest.raises(InvalidParameter):
            await store.update_task(task.id, {"status": None})

    @pytest.mark.asyncio
    async def test_unassign(self, store: DomainStore) -> None:
        project_id = await seed(store)
        task = await store.create_task(title="a", project_id=project_id, assignee_id=2)

        _, updated = await store.update_task(task.id, {"assignee_id": None})

        assert updated.assignee_id is None

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, store: DomainStore) -> None:
        project_id = await seed(store)
        task = await store.create_task(title="a", project_id=project_id)

        with pytest.raises(InvalidParameter) as exc_info:
            await store.update_task(task.id, {"project_id": 2})

        assert exc_info.value.parameter == "project_id"

    @pytest.mark.asyncio
    async def test_update_missing_task(self, store: DomainStore) -> None:
        with pytest.raises(NotFound):
            await store.update_task(12, {"status": "completed"})

    @pytest.mark.asyncio
    async def test_concurrent_updates_keep_whole_snapshots(self, store: DomainStore) -> None:
        project_id = await seed(store)
        task = await store.create_task(title="a", project_id=project_id)

        await asyncio.gather(
            *(
                store.update_task(task.id, {"title": f"title-{n}", "tags": [f"tag-{n}"]})
                for n in range(20)
            )
        )

        final = await store.get_task(task.id)
        n = final.title.split("-")[1]
        assert final.tags == (f"tag-{n}",)


class TestListing:
    """Tests for filtered, paginated listing."""

    @pytest.mark.asyncio
    async def test_pages_concatenate_to_full_set(self, store: DomainStore) -> None:
        project_id = await seed(store)
        for n in range(7):
            await store.create_task(title=f"t{n}", project_id=project_id, assignee_id=1 + n % 2)

        everything = await store.list_tasks(project_id=project_id, limit=100)
        collected = []
        page = 1
        while True:
            result = await store.list_tasks(project_id=project_id, page=page, limit=3)
            collected.extend(result.items)
            if result.next_page is None:
                break
            page = result.next_page

        assert [t.id for t in collected] == [t.id for t in everything.items]
        assert everything.total == 7
        assert len(set(t.id for t in collected)) == 7

    @pytest.mark.asyncio
    async def test_creation_order(self, store: DomainStore) -> None:
        project_id = await seed(store)
        ids = [(await store.create_task(title=f"t{n}", project_id=project_id)).id for n in range(5)]

        result = await store.list_tasks()

        assert [t.id for t in result.items] == ids

    @pytest.mark.asyncio
    async def test_filters(self, store: DomainStore) -> None:
        project_id = await seed(store)
        await store.create_task(title="a", project_id=project_id, assignee_id=1, priority="high")
        await store.create_task(title="b", project_id=project_id, assignee_id=2, priority="low")
        c = await store.create_task(title="c", project_id=project_id, assignee_id=1, priority="low")
        await store.update_task(c.id, {"status": "completed"})

        assert [t.title for t in (await store.list_tasks(assignee_id=1)).items] == ["a", "c"]
        assert [t.title for t in (await store.list_tasks(priority=TaskPriority.LOW)).items] == ["b", "c"]
        assert [t.title for t in (await store.list_tasks(status="completed")).items] == ["c"]
        assert (await store.list_tasks(project_id=404)).total == 0

    @pytest.mark.asyncio
    async def test_page_past_end_is_empty(self, store: DomainStore) -> None:
        project_id = await seed(store)
        await store.create_task(title="a", project_id=project_id)

        result = await store.list_tasks(page=5)

        assert result.items == []
        assert result.total == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,limit,parameter", [(0, 20, "page"), (1, 0, "limit"), (1, 101, "limit")])
    async def test_bad_bounds(self, store: DomainStore, page: int, limit: int, parameter: str) -> None:
        with pytest.raises(InvalidParameter) as exc_info:
            await store.list_tasks(page=page, limit=limit)

        assert exc_info.value.parameter == parameter

    @pytest.mark.asyncio
    async def test_default_limit(self) -> None:
        store = DomainStore(default_limit=2)
        project_id = await seed(store)
        for n in range(3):
            await store.create_task(title=f"t{n}", project_id=project_id)

        result = await store.list_tasks()

        assert len(result.items) == 2
        assert result.limit == 2
        assert result.next_page == 2
