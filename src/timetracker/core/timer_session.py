"""Active Timer Session -- 每个操作员至多一个正在计时的任务

会话在内存中持有，同时写入本地快照以便页面刷新 / 进程重启后恢复。
会话只是"建议性"的单例：同一操作员在多个客户端各自持有会话时不做跨进程互斥。
"""

import asyncio
from collections.abc import Callable
from pathlib import Path

import structlog
from pydantic import ValidationError

from .exceptions import SessionConflictError
from .models.session import TimerSession
from .store.protocols import SnapshotStore
from .store.snapshot_store import FileSnapshotStore
from .timing import checkpoint_total, now_ms

log = structlog.get_logger()


class ActiveTimerSession:
    """单个操作员客户端的计时会话"""

    def __init__(
        self,
        snapshot: SnapshotStore,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._snapshot = snapshot
        self._clock = clock
        self._session: TimerSession | None = None

    def current(self) -> TimerSession | None:
        """当前会话，没有则返回 None"""
        return self._session

    async def restore(self) -> TimerSession | None:
        """从本地快照恢复会话（客户端初始化时调用一次）

        快照内容按原样信任，不与服务端 total_time_spent 交叉校验；
        损坏的快照会被记录并丢弃。
        """
        try:
            data = await self._snapshot.read()
        except (OSError, ValueError) as e:
            log.warning("timer_snapshot_unreadable", error=str(e))
            await self._discard_snapshot()
            return None

        if data is None:
            self._session = None
            return None

        try:
            self._session = TimerSession.model_validate(data)
        except ValidationError as e:
            log.warning("timer_snapshot_invalid", error_count=e.error_count())
            await self._discard_snapshot()
            self._session = None
            return None

        log.info(
            "timer_session_restored",
            task_id=self._session.task_id,
            start_time=self._session.start_time,
        )
        return self._session

    async def start(
        self,
        task_id: str,
        baseline_seconds: int,
        now: int | None = None,
    ) -> TimerSession:
        """开启会话

        Args:
            task_id: 开始计时的任务
            baseline_seconds: 任务当前 total_time_spent
            now: 锚点时间（epoch 毫秒），默认取时钟

        Raises:
            SessionConflictError: 另一个任务的会话尚未 stop
        """
        if self._session is not None and self._session.task_id != task_id:
            raise SessionConflictError(self._session.task_id, task_id)

        session = TimerSession(
            task_id=task_id,
            start_time=self._clock() if now is None else now,
            total_duration_at_start=baseline_seconds,
        )
        self._session = session
        try:
            await self._snapshot.write(session.model_dump())
        except OSError as e:
            # 内存会话仍有效，只是刷新后无法恢复
            log.error(
                "timer_snapshot_write_failed",
                task_id=task_id,
                error=str(e),
                recoverable=True,
            )
        return session

    def checkpoint(self, task_id: str, now: int | None = None) -> int | None:
        """计算 flush 值但不修改会话

        Returns:
            会话属于 task_id 时返回应写入的 total_time_spent，否则 None
        """
        if self._session is None or self._session.task_id != task_id:
            return None
        return checkpoint_total(self._session, self._clock() if now is None else now)

    async def stop(self, now: int | None = None) -> int | None:
        """关闭会话并返回 flush 值

        Returns:
            锚点 + 实时增量；没有会话时返回 None
        """
        if self._session is None:
            return None
        flushed = checkpoint_total(self._session, self._clock() if now is None else now)
        await self.clear()
        return flushed

    async def clear(self) -> None:
        """丢弃会话和快照"""
        self._session = None
        await self._discard_snapshot()

    async def _discard_snapshot(self) -> None:
        try:
            await self._snapshot.delete()
        except OSError as e:
            log.error("timer_snapshot_delete_failed", error=str(e), recoverable=True)


class SessionRegistry:
    """按操作员管理 ActiveTimerSession

    每个操作员一个快照文件；首次获取时从快照恢复。
    同时提供操作员级别锁，串行化同一操作员的会话变更。
    """

    def __init__(
        self,
        sessions_dir: Path,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._sessions_dir = sessions_dir
        self._clock = clock
        self._sessions: dict[str, ActiveTimerSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._guard = asyncio.Lock()

    def snapshot_path(self, operator_id: str) -> Path:
        return self._sessions_dir / f"{operator_id}.json"

    async def get(self, operator_id: str) -> ActiveTimerSession:
        """获取操作员的会话，首次访问时 restore"""
        async with self._guard:
            session = self._sessions.get(operator_id)
            if session is None:
                session = ActiveTimerSession(
                    FileSnapshotStore(self.snapshot_path(operator_id)),
                    clock=self._clock,
                )
                await session.restore()
                self._sessions[operator_id] = session
            return session

    async def lock_for(self, operator_id: str) -> asyncio.Lock:
        """获取操作员级别锁"""
        async with self._guard:
            lock = self._locks.get(operator_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[operator_id] = lock
            return lock

    async def forget(self, operator_id: str) -> None:
        """登出后移除内存中的会话对象"""
        async with self._guard:
            self._sessions.pop(operator_id, None)
