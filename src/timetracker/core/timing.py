"""Time Accumulator -- 从检查点 + 锚点计算实时累计时长

纯函数，无副作用；每次都从锚点重新计算，不做原地累加，
因此可按任意频率调用（例如每秒刷新显示）而不会漂移。
"""

import time

from .models.session import TimerSession
from .models.task import Task

MS_PER_SECOND = 1000


def now_ms() -> int:
    """默认时钟：当前墙钟时间（epoch 毫秒）"""
    return time.time_ns() // 1_000_000


def live_seconds(session: TimerSession, now: int) -> int:
    """会话锚点以来的秒数，时钟回拨时截断为 0"""
    return max(0, (now - session.start_time) // MS_PER_SECOND)


def checkpoint_total(session: TimerSession, now: int) -> int:
    """在 now 时刻 flush 会话应写入的 total_time_spent"""
    return session.total_duration_at_start + live_seconds(session, now)


def elapsed_seconds(task: Task, session: TimerSession | None, now: int) -> int:
    """任务的实时累计秒数

    Args:
        task: 任务（total_time_spent 为上个检查点的值）
        session: 当前客户端的计时会话，可为空
        now: 当前时间（epoch 毫秒）

    Returns:
        无匹配会话时返回 task.total_time_spent，否则返回锚点 + 实时增量
    """
    if session is None or session.task_id != task.id:
        return task.total_time_spent
    return checkpoint_total(session, now)


def format_duration(total_seconds: int) -> str:
    """格式化为 HH:MM:SS，小时数不按 24 取模"""
    total_seconds = max(0, total_seconds)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
