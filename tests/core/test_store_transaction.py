"""Store + 事务测试 -- 行写入与 changes outbox 原子提交、条件写、幂等键"""

from datetime import UTC, datetime, timedelta

import pytest
from timetracker.core.exceptions import (
    DuplicateNotificationError,
    NotFoundError,
)
from timetracker.core.models import (
    ChangeType,
    Notification,
    NotificationType,
    Role,
    Task,
    TaskStatus,
)
from timetracker.core.store import (
    TaskStatusConflictError,
    create_task_with_change,
    insert_notification_with_change,
    mark_notification_read_with_change,
    update_task_with_change,
)
from ulid import ULID

NOW = datetime(2024, 1, 1, tzinfo=UTC)


def _task(directory, offset_s: int = 0, **overrides) -> Task:
    ts = NOW + timedelta(seconds=offset_s)
    data = {
        "id": str(ULID()),
        "title": "Batch",
        "project_id": directory.project.id,
        "assigned_to": directory.operator.id,
        "created_at": ts,
        "updated_at": ts,
    }
    data.update(overrides)
    return Task(**data)


def _notification(user_id: str, dedup_key: str | None = "k1", offset_s: int = 0) -> Notification:
    return Notification(
        id=str(ULID()),
        user_id=user_id,
        message="hello",
        type=NotificationType.INFO,
        created_at=NOW + timedelta(seconds=offset_s),
        dedup_key=dedup_key,
    )


async def _create(store_group, task: Task):
    return await create_task_with_change(
        store_group.conn,
        store_group.task_store,
        store_group.change_store,
        store_group.change_feed,
        task,
    )


async def _update(store_group, task_id: str, updates: dict, expected_status=None):
    return await update_task_with_change(
        store_group.conn,
        store_group.task_store,
        store_group.change_store,
        store_group.change_feed,
        task_id,
        updates,
        NOW + timedelta(minutes=5),
        expected_status=expected_status,
    )


class TestTaskStore:
    async def test_create_and_get(self, store_group, directory):
        task = _task(directory)
        change = await _create(store_group, task)

        stored = await store_group.task_store.get_task(task.id)
        assert stored == task
        assert change.change_type == ChangeType.INSERT
        assert change.seq >= 1
        assert change.old_row is None

    async def test_list_newest_first_with_filters(self, store_group, directory):
        older = _task(directory, 0)
        newer = _task(directory, 10)
        other = _task(
            directory,
            20,
            project_id=directory.other_project.id,
            assigned_to=directory.operator2.id,
        )
        for task in (older, newer, other):
            await _create(store_group, task)

        all_ids = [t.id for t in await store_group.task_store.list_tasks()]
        assert all_ids == [other.id, newer.id, older.id]

        mine = await store_group.task_store.list_tasks(assigned_to=directory.operator.id)
        assert [t.id for t in mine] == [newer.id, older.id]

        in_project = await store_group.task_store.list_tasks(
            project_ids=[directory.other_project.id]
        )
        assert [t.id for t in in_project] == [other.id]

        assert await store_group.task_store.list_tasks(project_ids=[]) == []
        assert await store_group.task_store.list_tasks(statuses=[TaskStatus.QC]) == []

    async def test_get_missing_returns_none(self, store_group):
        assert await store_group.task_store.get_task("missing") is None


class TestUpdateWithChange:
    async def test_update_bumps_version_and_records_change(self, store_group, directory):
        task = _task(directory)
        await _create(store_group, task)
        queue = await store_group.change_feed.subscribe("tasks")

        old, new = await _update(
            store_group,
            task.id,
            {"status": TaskStatus.IN_PROGRESS},
            expected_status=TaskStatus.PENDING,
        )

        assert old.version == 1
        assert new.version == 2
        assert new.status == TaskStatus.IN_PROGRESS
        assert new.updated_at > old.updated_at

        published = queue.get_nowait()
        assert published.change_type == ChangeType.UPDATE
        assert published.old_row["status"] == "pending"
        assert published.new_row["status"] == "in_progress"
        assert published.new_row["version"] == 2

        persisted = await store_group.change_store.get_changes_after("tasks", 0)
        assert [c.seq for c in persisted][-1] == published.seq

    async def test_status_mismatch_rolls_back(self, store_group, directory):
        task = _task(directory, status=TaskStatus.COMPLETED)
        await _create(store_group, task)
        seq_before = await store_group.change_store.get_latest_seq()

        with pytest.raises(TaskStatusConflictError):
            await _update(
                store_group,
                task.id,
                {"status": TaskStatus.IN_PROGRESS},
                expected_status=TaskStatus.PENDING,
            )

        assert (await store_group.task_store.get_task(task.id)).status == TaskStatus.COMPLETED
        assert await store_group.change_store.get_latest_seq() == seq_before

    async def test_missing_task(self, store_group):
        with pytest.raises(NotFoundError):
            await _update(store_group, "missing", {"status": TaskStatus.PAUSED})

    async def test_stale_version_is_rejected(self, store_group, directory):
        task = _task(directory)
        await _create(store_group, task)
        await _update(store_group, task.id, {"title": "renamed"})

        stale = task.model_copy(update={"title": "stale"})
        assert not await store_group.task_store.update_task(stale, expected_version=1)


class TestNotificationStore:
    async def test_dedup_key_conflict(self, store_group, directory):
        first = _notification(directory.admin.id, "same-key")
        await insert_notification_with_change(
            store_group.conn,
            store_group.notification_store,
            store_group.change_store,
            store_group.change_feed,
            first,
        )

        with pytest.raises(DuplicateNotificationError):
            await insert_notification_with_change(
                store_group.conn,
                store_group.notification_store,
                store_group.change_store,
                store_group.change_feed,
                _notification(directory.admin.id, "same-key"),
            )

        assert await store_group.notification_store.check_dedup_key("same-key") == first.id
        assert len(await store_group.notification_store.list_unread(directory.admin.id)) == 1

    async def test_null_dedup_keys_do_not_conflict(self, store_group, directory):
        for _ in range(2):
            await insert_notification_with_change(
                store_group.conn,
                store_group.notification_store,
                store_group.change_store,
                store_group.change_feed,
                _notification(directory.admin.id, None),
            )
        assert len(await store_group.notification_store.list_unread(directory.admin.id)) == 2

    async def test_unread_newest_first(self, store_group, directory):
        older = _notification(directory.operator.id, "a", 0)
        newer = _notification(directory.operator.id, "b", 30)
        for n in (older, newer):
            await store_group.notification_store.insert_notification(n)
        await store_group.conn.commit()

        unread = await store_group.notification_store.list_unread(directory.operator.id)
        assert [n.id for n in unread] == [newer.id, older.id]

    async def test_mark_read_is_monotonic(self, store_group, directory):
        n = _notification(directory.operator.id)
        await insert_notification_with_change(
            store_group.conn,
            store_group.notification_store,
            store_group.change_store,
            store_group.change_feed,
            n,
        )
        seq_after_insert = await store_group.change_store.get_latest_seq()

        first = await mark_notification_read_with_change(
            store_group.conn,
            store_group.notification_store,
            store_group.change_store,
            store_group.change_feed,
            n.id,
            NOW,
        )
        seq_after_read = await store_group.change_store.get_latest_seq()
        second = await mark_notification_read_with_change(
            store_group.conn,
            store_group.notification_store,
            store_group.change_store,
            store_group.change_feed,
            n.id,
            NOW,
        )

        assert first.read and second.read
        assert seq_after_read == seq_after_insert + 1
        # 已读后再次标记不产生新的 change
        assert await store_group.change_store.get_latest_seq() == seq_after_read
        assert await store_group.notification_store.list_unread(directory.operator.id) == []
        assert not await store_group.notification_store.mark_read(n.id)

    async def test_mark_read_missing(self, store_group):
        with pytest.raises(NotFoundError):
            await mark_notification_read_with_change(
                store_group.conn,
                store_group.notification_store,
                store_group.change_store,
                store_group.change_feed,
                "missing",
                NOW,
            )


class TestDirectoryStore:
    async def test_list_admins(self, store_group, directory):
        admins = await store_group.user_store.list_users(Role.ADMIN)
        assert {u.id for u in admins} == {directory.admin.id, directory.admin2.id}

    async def test_projects_led_by(self, store_group, directory):
        ids = await store_group.project_store.list_project_ids_led_by(directory.leader.id)
        assert ids == [directory.project.id]
        assert await store_group.project_store.list_project_ids_led_by(directory.operator.id) == []
