"""进程重启测试 -- 计时会话从本地快照恢复，启动回放补齐缺失的通知"""

from timetracker.core.models import TaskAction


async def _create(app, directory, title: str = "Batch 7"):
    return await app.state.task_service.create_task(
        directory.admin, title, directory.project.id, directory.operator.id
    )


class TestSessionRestore:
    async def test_session_survives_restart(self, gateway, directory, clock):
        op = directory.operator
        headers = {"X-User-Id": op.id}
        clock.set(0)

        app = await gateway.start()
        task = await _create(app, directory)
        await app.state.task_service.start_task(op, task.id)
        clock.set(50)

        # 不登出直接退出
        await gateway.restart()
        assert (gateway.sessions_dir / f"{op.id}.json").exists()

        async with gateway.client() as client:
            resp = await client.get("/api/session", headers=headers)
            session = resp.json()["session"]
            assert session["task_id"] == task.id
            assert session["start_time"] == clock.at(0)
            assert session["total_duration_at_start"] == 0
            assert session["elapsed_seconds"] == 50

            resp = await client.get(f"/api/tasks/{task.id}", headers=headers)
            detail = resp.json()
            assert detail["timing"] is True
            assert detail["elapsed_seconds"] == 50
            assert detail["total_time_spent"] == 0

            clock.set(80)
            resp = await client.post(f"/api/tasks/{task.id}/pause", headers=headers)
            assert resp.status_code == 200
            assert resp.json()["total_time_spent"] == 80

        assert not (gateway.sessions_dir / f"{op.id}.json").exists()

    async def test_corrupt_snapshot_is_discarded(self, gateway, directory):
        op = directory.operator
        gateway.sessions_dir.mkdir(parents=True, exist_ok=True)
        (gateway.sessions_dir / f"{op.id}.json").write_text("{not json")

        await gateway.start()
        async with gateway.client() as client:
            resp = await client.get("/api/session", headers={"X-User-Id": op.id})
            assert resp.status_code == 200
            assert resp.json()["session"] is None


class TestStartupReplay:
    async def test_replay_backfills_missed_notifications(self, gateway, directory, clock):
        op = directory.operator
        app = await gateway.start()
        # 派生引擎在变更发生前退出
        await app.state.reconciler.stop()

        task = await _create(app, directory)
        service = app.state.task_service
        await service.start_task(op, task.id)
        clock.advance(60)
        await service.complete_task(op, task.id)
        await service.review_task(directory.admin, task.id, TaskAction.SEND_TO_QC)
        assert await app.state.store_group.notification_store.list_unread(directory.admin.id) == []

        app = await gateway.restart(reconcile_on_startup=True)
        unread = await app.state.store_group.notification_store.list_unread(directory.admin.id)
        assert sorted(n.message for n in unread) == [
            'Task "Batch 7" was marked DONE by ana!',
            'Task "Batch 7" was sent to quality review.',
        ]

        # 再次回放不产生重复通知
        app = await gateway.restart(reconcile_on_startup=True)
        again = await app.state.store_group.notification_store.list_unread(directory.admin.id)
        assert sorted(n.id for n in again) == sorted(n.id for n in unread)

    async def test_replay_keeps_read_state(self, gateway, directory, clock):
        op = directory.operator
        app = await gateway.start()
        task = await _create(app, directory)
        await app.state.task_service.start_task(op, task.id)
        clock.advance(5)
        await app.state.task_service.complete_task(op, task.id)
        await app.state.reconciler.drain()

        unread = await app.state.store_group.notification_store.list_unread(directory.admin.id)
        assert len(unread) == 1
        await app.state.notification_hub.mark_read(directory.admin.id, unread[0].id)

        app = await gateway.restart(reconcile_on_startup=True)
        assert await app.state.store_group.notification_store.list_unread(directory.admin.id) == []
