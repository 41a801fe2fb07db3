"""TaskService -- 任务生命周期与计时业务逻辑

所有状态流转都经过 state_machine.plan_transition 校验，然后：
1. 条件写入 task 行 + changes outbox（单事务）
2. 提交成功后才修改操作员的 ActiveTimerSession
3. 通知由 NotificationReconciler 从变更流异步派生

锁顺序：操作员锁 -> 任务锁。
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

import aiosqlite
import structlog
from pydantic import BaseModel, Field
from timetracker.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    PersistenceFailureError,
    TimeTrackerError,
    UnauthenticatedError,
)
from timetracker.core.models import (
    TERMINAL_STATES,
    TIMED_STATES,
    Project,
    Role,
    Task,
    TaskAction,
    TaskStatus,
    TimerSession,
    User,
)
from timetracker.core.notification_rules import creation_notification
from timetracker.core.state_machine import can_manage_project, plan_transition
from timetracker.core.store import (
    StoreGroup,
    create_task_with_change,
    update_task_with_change,
)
from timetracker.core.timer_session import ActiveTimerSession, SessionRegistry
from timetracker.core.timing import elapsed_seconds, now_ms
from ulid import ULID

from .reconciler import persist_draft

log = structlog.get_logger()

# 管理类动作（无计时副作用）
REVIEW_ACTIONS = {TaskAction.SEND_TO_QC, TaskAction.FINALIZE, TaskAction.REJECT}


class LogoutReport(BaseModel):
    """登出 flush 结果"""

    paused_task_ids: list[str] = Field(default_factory=list)
    failed_task_ids: list[str] = Field(
        default_factory=list, description="flush 失败的任务（已记录日志，不阻塞登出）"
    )


def _ts(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, UTC)


class TaskService:
    """任务业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        sessions: SessionRegistry,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._stores = store_group
        self._sessions = sessions
        self._clock = clock
        self._task_locks: dict[str, asyncio.Lock] = {}
        self._task_locks_guard = asyncio.Lock()

    # ---- 查询 ----

    async def get_actor(self, user_id: str | None) -> User:
        """按 ID 解析操作者

        Raises:
            UnauthenticatedError: 未提供或未知的用户 ID
        """
        if not user_id:
            raise UnauthenticatedError()
        try:
            user = await self._stores.user_store.get_user(user_id)
        except aiosqlite.Error as e:
            raise PersistenceFailureError("get_user", e) from e
        if user is None:
            raise UnauthenticatedError(f"Unknown user {user_id}")
        return user

    async def list_tasks_for(self, actor: User) -> list[Task]:
        """按角色可见范围列出任务（created_at 倒序）"""
        if actor.role == Role.ADMIN:
            return await self._stores.task_store.list_tasks()
        if actor.role == Role.LEADER:
            project_ids = await self._stores.project_store.list_project_ids_led_by(actor.id)
            return await self._stores.task_store.list_tasks(project_ids=project_ids)
        return await self._stores.task_store.list_tasks(assigned_to=actor.id)

    async def get_task_for(self, actor: User, task_id: str) -> Task:
        """获取单个任务并检查可见性"""
        task = await self._require_task(task_id)
        if actor.role == Role.ADMIN:
            return task
        if actor.role == Role.LEADER:
            project = await self._stores.project_store.get_project(task.project_id)
            if can_manage_project(actor, project):
                return task
        elif task.assigned_to == actor.id:
            return task
        raise PermissionDeniedError(f"User {actor.id} cannot view task {task_id}")

    async def current_session(self, actor: User) -> TimerSession | None:
        session = await self._sessions.get(actor.id)
        return session.current()

    async def elapsed_for(self, actor: User, task: Task) -> int:
        """当前操作员视角下任务的实时累计秒数"""
        session = await self._sessions.get(actor.id)
        return elapsed_seconds(task, session.current(), self._clock())

    # ---- 创建 / 分配 ----

    async def create_task(
        self,
        actor: User,
        title: str,
        project_id: str,
        assigned_to: str | None = None,
        description: str = "",
    ) -> Task:
        """创建任务（admin 或项目 leader），有 assignee 时直接发"已分配"通知

        Raises:
            NotFoundError: 项目或 assignee 不存在
            PermissionDeniedError: 操作者不能管理该项目
        """
        project = await self._require_project(project_id)
        if not can_manage_project(actor, project):
            raise PermissionDeniedError(
                f"User {actor.id} cannot create tasks in project {project_id}"
            )
        assignee = await self._require_user(assigned_to) if assigned_to else None

        ts = _ts(self._clock())
        task = Task(
            id=str(ULID()),
            title=title,
            description=description,
            project_id=project_id,
            assigned_to=assigned_to,
            created_by=actor.id,
            status=TaskStatus.PENDING,
            total_time_spent=0,
            created_at=ts,
            updated_at=ts,
        )
        await create_task_with_change(
            self._stores.conn,
            self._stores.task_store,
            self._stores.change_store,
            self._stores.change_feed,
            task,
        )
        log.info(
            "task_created",
            task_id=task.id,
            project_id=project_id,
            assigned_to=assigned_to,
            created_by=actor.id,
        )

        if assignee is not None:
            await persist_draft(self._stores, creation_notification(task, assignee))
        return task

    async def assign_task(self, actor: User, task_id: str, assignee_id: str) -> Task:
        """重新分配任务

        计时中（in_progress / correction）和终态的任务不能重新分配。
        """
        task = await self._require_task(task_id)
        project = await self._stores.project_store.get_project(task.project_id)
        if not can_manage_project(actor, project):
            raise PermissionDeniedError(
                f"User {actor.id} cannot assign tasks in project {task.project_id}"
            )
        await self._require_user(assignee_id)

        if task.assigned_to == assignee_id:
            return task
        if task.status in TIMED_STATES or task.status in TERMINAL_STATES:
            raise InvalidTransitionError(
                f"Task {task_id} cannot be reassigned in status {task.status.value}"
            )

        lock = await self._get_task_lock(task_id)
        async with lock:
            _, new = await update_task_with_change(
                self._stores.conn,
                self._stores.task_store,
                self._stores.change_store,
                self._stores.change_feed,
                task_id,
                {"assigned_to": assignee_id},
                _ts(self._clock()),
                expected_status=task.status,
            )
        log.info(
            "task_assigned",
            task_id=task_id,
            previous_assignee=task.assigned_to,
            assigned_to=assignee_id,
        )
        return new

    # ---- 操作员动作 ----

    async def start_task(self, actor: User, task_id: str) -> Task:
        """开始 / 恢复计时

        同一操作员正在计时另一个任务时先隐式暂停它；
        隐式暂停失败则不开始新任务。

        Raises:
            InvalidTransitionError: 状态 / 角色不允许，或该任务已在计时
        """
        op_lock = await self._sessions.lock_for(actor.id)
        async with op_lock:
            task = await self._require_task(task_id)
            plan = plan_transition(task, TaskAction.START, actor)
            session = await self._sessions.get(actor.id)
            now = self._clock()

            current = session.current()
            if current is not None and current.task_id == task_id:
                if task.status in TIMED_STATES:
                    raise InvalidTransitionError(f"Task {task_id} is already being timed")
                # 服务端已不在计时状态，本地会话已过期
                log.warning(
                    "stale_timer_session_dropped",
                    operator_id=actor.id,
                    task_id=task_id,
                    status=task.status.value,
                )
                await session.clear()
            elif current is not None:
                await self._implicit_pause(actor, session, current, now)

            lock = await self._get_task_lock(task_id)
            async with lock:
                _, new = await update_task_with_change(
                    self._stores.conn,
                    self._stores.task_store,
                    self._stores.change_store,
                    self._stores.change_feed,
                    task_id,
                    {"status": plan.to_status},
                    _ts(now),
                    expected_status=plan.from_status,
                )
            await session.start(task_id, new.total_time_spent, now=now)

        log.info(
            "task_started",
            task_id=task_id,
            operator_id=actor.id,
            from_status=plan.from_status.value,
            baseline_seconds=new.total_time_spent,
        )
        return new

    async def pause_task(self, actor: User, task_id: str) -> Task:
        """暂停计时并 flush 累计时长"""
        op_lock = await self._sessions.lock_for(actor.id)
        async with op_lock:
            task = await self._require_task(task_id)
            session = await self._sessions.get(actor.id)
            return await self._pause_locked(actor, session, task, self._clock())

    async def complete_task(self, actor: User, task_id: str) -> Task:
        """标记完成：有本任务的会话时先 flush，completed_at 只写一次"""
        op_lock = await self._sessions.lock_for(actor.id)
        async with op_lock:
            task = await self._require_task(task_id)
            plan = plan_transition(task, TaskAction.COMPLETE, actor)
            session = await self._sessions.get(actor.id)
            now = self._clock()

            flushed = session.checkpoint(task_id, now)
            updates: dict = {"status": plan.to_status}
            if flushed is not None:
                updates["total_time_spent"] = max(flushed, task.total_time_spent)
            if plan.sets_completed_at:
                updates["completed_at"] = _ts(now)

            lock = await self._get_task_lock(task_id)
            async with lock:
                _, new = await update_task_with_change(
                    self._stores.conn,
                    self._stores.task_store,
                    self._stores.change_store,
                    self._stores.change_feed,
                    task_id,
                    updates,
                    _ts(now),
                    expected_status=plan.from_status,
                )
            if flushed is not None:
                await session.clear()

        log.info(
            "task_completed",
            task_id=task_id,
            operator_id=actor.id,
            from_status=plan.from_status.value,
            total_time_spent=new.total_time_spent,
        )
        return new

    # ---- 管理动作 ----

    async def review_task(self, actor: User, task_id: str, action: TaskAction) -> Task:
        """send_to_qc / finalize / reject，不触碰 total_time_spent"""
        if action not in REVIEW_ACTIONS:
            raise InvalidTransitionError(f"{action.value} is not a review action")

        task = await self._require_task(task_id)
        project = await self._stores.project_store.get_project(task.project_id)
        plan = plan_transition(task, action, actor, project)

        lock = await self._get_task_lock(task_id)
        async with lock:
            _, new = await update_task_with_change(
                self._stores.conn,
                self._stores.task_store,
                self._stores.change_store,
                self._stores.change_feed,
                task_id,
                {"status": plan.to_status},
                _ts(self._clock()),
                expected_status=plan.from_status,
            )

        log.info(
            "task_reviewed",
            task_id=task_id,
            action=action.value,
            actor_id=actor.id,
            from_status=plan.from_status.value,
            to_status=plan.to_status.value,
        )
        if new.status in TERMINAL_STATES:
            await self._cleanup_task_lock(task_id)
        return new

    # ---- 登出 ----

    async def logout(self, actor: User) -> LogoutReport:
        """登出前暂停该操作员所有计时中的任务

        单个任务 flush 失败只记录日志；无论成败最后都清理会话和快照。
        """
        report = LogoutReport()
        op_lock = await self._sessions.lock_for(actor.id)
        async with op_lock:
            session = await self._sessions.get(actor.id)
            try:
                tasks = await self._stores.task_store.list_tasks(
                    assigned_to=actor.id,
                    statuses=list(TIMED_STATES),
                )
                now = self._clock()
                for task in tasks:
                    try:
                        await self._pause_locked(actor, session, task, now)
                        report.paused_task_ids.append(task.id)
                    except (TimeTrackerError, aiosqlite.Error) as e:
                        log.error(
                            "logout_flush_failed",
                            task_id=task.id,
                            operator_id=actor.id,
                            error_type=type(e).__name__,
                            error=str(e),
                            recoverable=True,
                        )
                        report.failed_task_ids.append(task.id)
            except (TimeTrackerError, aiosqlite.Error) as e:
                log.error(
                    "logout_task_listing_failed",
                    operator_id=actor.id,
                    error_type=type(e).__name__,
                    recoverable=True,
                )
            finally:
                await session.clear()
                await self._sessions.forget(actor.id)

        log.info(
            "operator_logged_out",
            operator_id=actor.id,
            paused=len(report.paused_task_ids),
            failed=len(report.failed_task_ids),
        )
        return report

    # ---- 内部 ----

    async def _pause_locked(
        self,
        actor: User,
        session: ActiveTimerSession,
        task: Task,
        now: int,
    ) -> Task:
        """暂停单个任务（调用方需持有操作员锁）

        本客户端没有该任务的会话时只改状态，不 flush。
        """
        plan = plan_transition(task, TaskAction.PAUSE, actor)
        flushed = session.checkpoint(task.id, now)
        updates: dict = {"status": plan.to_status}
        if flushed is not None:
            # total_time_spent 单调不减
            updates["total_time_spent"] = max(flushed, task.total_time_spent)
        else:
            log.warning("pause_without_session", task_id=task.id, operator_id=actor.id)

        lock = await self._get_task_lock(task.id)
        async with lock:
            _, new = await update_task_with_change(
                self._stores.conn,
                self._stores.task_store,
                self._stores.change_store,
                self._stores.change_feed,
                task.id,
                updates,
                _ts(now),
                expected_status=plan.from_status,
            )
        if flushed is not None:
            await session.clear()

        log.info(
            "task_paused",
            task_id=task.id,
            operator_id=actor.id,
            total_time_spent=new.total_time_spent,
        )
        return new

    async def _implicit_pause(
        self,
        actor: User,
        session: ActiveTimerSession,
        current: TimerSession,
        now: int,
    ) -> None:
        """开始新任务前暂停当前会话的任务"""
        other = await self._stores.task_store.get_task(current.task_id)
        if (
            other is None
            or other.status not in TIMED_STATES
            or other.assigned_to != actor.id
        ):
            log.warning(
                "stale_timer_session_dropped",
                operator_id=actor.id,
                task_id=current.task_id,
                status=other.status.value if other is not None else None,
            )
            await session.clear()
            return
        await self._pause_locked(actor, session, other, now)

    async def _require_task(self, task_id: str) -> Task:
        try:
            task = await self._stores.task_store.get_task(task_id)
        except aiosqlite.Error as e:
            raise PersistenceFailureError("get_task", e) from e
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def _require_project(self, project_id: str) -> Project:
        try:
            project = await self._stores.project_store.get_project(project_id)
        except aiosqlite.Error as e:
            raise PersistenceFailureError("get_project", e) from e
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    async def _require_user(self, user_id: str) -> User:
        try:
            user = await self._stores.user_store.get_user(user_id)
        except aiosqlite.Error as e:
            raise PersistenceFailureError("get_user", e) from e
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def _get_task_lock(self, task_id: str) -> asyncio.Lock:
        """获取 task 级别锁，串行化同一任务的 flush / start"""
        async with self._task_locks_guard:
            lock = self._task_locks.get(task_id)
            if lock is None:
                lock = asyncio.Lock()
                self._task_locks[task_id] = lock
            return lock

    async def _cleanup_task_lock(self, task_id: str) -> None:
        """任务终态后清理 lock，避免字典无限增长。"""
        async with self._task_locks_guard:
            lock = self._task_locks.get(task_id)
            if lock is not None and not lock.locked():
                self._task_locks.pop(task_id, None)
