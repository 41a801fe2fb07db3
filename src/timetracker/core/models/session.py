"""TimerSession -- 活动计时会话快照

只保存锚点（start_time + total_duration_at_start），实时时长总是从锚点重新计算。
"""

from pydantic import BaseModel, Field


class TimerSession(BaseModel):
    """单个操作员正在计时的任务"""

    task_id: str = Field(description="正在计时的 Task ID")
    start_time: int = Field(description="最近一次开始/恢复的墙钟时间（epoch 毫秒）")
    total_duration_at_start: int = Field(
        ge=0,
        description="开始时 task.total_time_spent 的快照（秒）",
    )
