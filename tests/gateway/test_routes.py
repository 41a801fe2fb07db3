"""HTTP 路由测试 -- 认证头、任务 CRUD、状态流转、错误响应体"""

import aiosqlite
from httpx import AsyncClient


async def _create(client: AsyncClient, as_user, directory, title: str = "Batch 7") -> str:
    resp = await client.post(
        "/api/tasks",
        json={
            "title": title,
            "project_id": directory.project.id,
            "assigned_to": directory.operator.id,
        },
        headers=as_user(directory.admin),
    )
    assert resp.status_code == 201
    return resp.json()["id"]


class TestAuthentication:
    async def test_missing_header(self, client: AsyncClient):
        resp = await client.get("/api/tasks")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHENTICATED"

    async def test_unknown_user(self, client: AsyncClient):
        resp = await client.get("/api/tasks", headers={"X-User-Id": "ghost"})
        assert resp.status_code == 401


class TestTaskRoutes:
    async def test_create_and_list(self, client: AsyncClient, as_user, directory):
        task_id = await _create(client, as_user, directory)

        resp = await client.get("/api/tasks", headers=as_user(directory.operator))
        assert resp.status_code == 200
        tasks = resp.json()["tasks"]
        assert [t["id"] for t in tasks] == [task_id]
        assert tasks[0]["status"] == "pending"
        assert tasks[0]["total_time_spent"] == 0

        resp = await client.get("/api/tasks", headers=as_user(directory.operator2))
        assert resp.json()["tasks"] == []

    async def test_operator_cannot_create(self, client: AsyncClient, as_user, directory):
        resp = await client.post(
            "/api/tasks",
            json={"title": "x", "project_id": directory.project.id},
            headers=as_user(directory.operator),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "PERMISSION_DENIED"

    async def test_detail_not_found(self, client: AsyncClient, as_user, directory):
        resp = await client.get(
            "/api/tasks/01HZZZZZZZZZZZZZZZZZZZZZZZ", headers=as_user(directory.admin)
        )
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"]["code"] == "NOT_FOUND"
        assert "does not exist" in body["error"]["message"]

    async def test_detail_includes_live_elapsed(
        self, client: AsyncClient, as_user, directory, clock
    ):
        task_id = await _create(client, as_user, directory)
        op = as_user(directory.operator)
        await client.post(f"/api/tasks/{task_id}/start", headers=op)
        clock.advance(3725)

        resp = await client.get(f"/api/tasks/{task_id}", headers=op)
        body = resp.json()
        assert body["elapsed_seconds"] == 3725
        assert body["elapsed_display"] == "01:02:05"
        assert body["timing"] is True
        assert body["total_time_spent"] == 0

        # admin 没有本地会话，只看到持久化的累计
        resp = await client.get(f"/api/tasks/{task_id}", headers=as_user(directory.admin))
        assert resp.json()["elapsed_seconds"] == 0
        assert resp.json()["timing"] is False

    async def test_assign(self, client: AsyncClient, as_user, directory):
        task_id = await _create(client, as_user, directory)
        resp = await client.post(
            f"/api/tasks/{task_id}/assign",
            json={"assigned_to": directory.operator2.id},
            headers=as_user(directory.leader),
        )
        assert resp.status_code == 200
        assert resp.json()["assigned_to"] == directory.operator2.id


class TestTransitionRoutes:
    async def test_full_lifecycle(self, client: AsyncClient, as_user, directory, clock):
        task_id = await _create(client, as_user, directory)
        op = as_user(directory.operator)

        resp = await client.post(f"/api/tasks/{task_id}/start", headers=op)
        assert resp.json()["status"] == "in_progress"
        clock.advance(90)
        resp = await client.post(f"/api/tasks/{task_id}/pause", headers=op)
        assert resp.json() == {
            "task_id": task_id,
            "status": "paused",
            "total_time_spent": 90,
            "completed_at": None,
        }

        resp = await client.post(f"/api/tasks/{task_id}/complete", headers=op)
        assert resp.json()["status"] == "completed"
        assert resp.json()["completed_at"] is not None

        resp = await client.post(f"/api/tasks/{task_id}/qc", headers=as_user(directory.admin))
        assert resp.json()["status"] == "qc"
        resp = await client.post(
            f"/api/tasks/{task_id}/reject", headers=as_user(directory.leader)
        )
        assert resp.json()["status"] == "correction"
        await client.post(f"/api/tasks/{task_id}/start", headers=op)
        await client.post(f"/api/tasks/{task_id}/complete", headers=op)
        await client.post(f"/api/tasks/{task_id}/qc", headers=as_user(directory.admin))
        resp = await client.post(
            f"/api/tasks/{task_id}/finalize", headers=as_user(directory.leader)
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "finalized"
        assert resp.json()["total_time_spent"] == 90

    async def test_invalid_transition_is_409(self, client: AsyncClient, as_user, directory):
        task_id = await _create(client, as_user, directory)
        resp = await client.post(f"/api/tasks/{task_id}/qc", headers=as_user(directory.admin))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INVALID_TRANSITION"

    async def test_leader_cannot_send_to_qc(self, client: AsyncClient, as_user, directory):
        task_id = await _create(client, as_user, directory)
        op = as_user(directory.operator)
        await client.post(f"/api/tasks/{task_id}/start", headers=op)
        await client.post(f"/api/tasks/{task_id}/complete", headers=op)

        resp = await client.post(f"/api/tasks/{task_id}/qc", headers=as_user(directory.leader))
        assert resp.status_code == 409


class TestSessionRoutes:
    async def test_session_and_logout(self, client: AsyncClient, as_user, directory, clock):
        task_id = await _create(client, as_user, directory)
        op = as_user(directory.operator)

        resp = await client.get("/api/session", headers=op)
        assert resp.json() == {"session": None}

        await client.post(f"/api/tasks/{task_id}/start", headers=op)
        clock.advance(61)
        session = (await client.get("/api/session", headers=op)).json()["session"]
        assert session["task_id"] == task_id
        assert session["elapsed_seconds"] == 61
        assert session["elapsed_display"] == "00:01:01"

        resp = await client.post("/api/session/logout", headers=op)
        assert resp.status_code == 200
        assert resp.json() == {"paused_task_ids": [task_id], "failed_task_ids": []}
        assert (await client.get("/api/session", headers=op)).json() == {"session": None}

        detail = (await client.get(f"/api/tasks/{task_id}", headers=op)).json()
        assert detail["status"] == "paused"
        assert detail["total_time_spent"] == 61


class TestNotificationRoutes:
    async def test_list_and_mark_read(
        self, client: AsyncClient, as_user, directory, settle
    ):
        await _create(client, as_user, directory)
        await settle()
        op = as_user(directory.operator)

        body = (await client.get("/api/notifications", headers=op)).json()
        assert body["unread_count"] == 1
        notification_id = body["notifications"][0]["id"]

        resp = await client.post(f"/api/notifications/{notification_id}/read", headers=op)
        assert resp.status_code == 200
        assert resp.json()["read"] is True

        body = (await client.get("/api/notifications", headers=op)).json()
        assert body == {"notifications": [], "unread_count": 0}
        body = (
            await client.get("/api/notifications", params={"include_read": True}, headers=op)
        ).json()
        assert len(body["notifications"]) == 1

    async def test_mark_other_users_notification(
        self, client: AsyncClient, as_user, directory, settle
    ):
        await _create(client, as_user, directory)
        await settle()
        body = (
            await client.get("/api/notifications", headers=as_user(directory.operator))
        ).json()
        notification_id = body["notifications"][0]["id"]

        resp = await client.post(
            f"/api/notifications/{notification_id}/read",
            headers=as_user(directory.operator2),
        )
        assert resp.status_code == 404


class TestStorageReadFailures:
    async def test_failing_task_read_is_503(
        self, client: AsyncClient, as_user, directory, store_group, monkeypatch
    ):
        task_id = await _create(client, as_user, directory)

        async def broken_get_task(task_id):
            raise aiosqlite.OperationalError("disk I/O error")

        monkeypatch.setattr(store_group.task_store, "get_task", broken_get_task)
        resp = await client.get(f"/api/tasks/{task_id}", headers=as_user(directory.admin))
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "PERSISTENCE_FAILURE"

        resp = await client.post(
            f"/api/tasks/{task_id}/start", headers=as_user(directory.operator)
        )
        assert resp.status_code == 503

    async def test_failing_list_read_is_503(
        self, client: AsyncClient, as_user, directory, store_group, monkeypatch
    ):
        async def broken_list_tasks(**filters):
            raise aiosqlite.OperationalError("database is locked")

        monkeypatch.setattr(store_group.task_store, "list_tasks", broken_list_tasks)
        resp = await client.get("/api/tasks", headers=as_user(directory.admin))
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "PERSISTENCE_FAILURE"

    async def test_failing_actor_lookup_is_503(
        self, client: AsyncClient, directory, store_group, monkeypatch
    ):
        async def broken_get_user(user_id):
            raise aiosqlite.OperationalError("disk I/O error")

        monkeypatch.setattr(store_group.user_store, "get_user", broken_get_user)
        resp = await client.get("/api/tasks", headers={"X-User-Id": directory.admin.id})
        assert resp.status_code == 503
