"""ChangeEvent -- 持久层行变更事件

每次 tasks / notifications 行写入都会在同一事务内追加一条 changes outbox 记录，
提交后经 ChangeFeed 广播。投递语义：至少一次，同一行内有序。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import ChangeType


class ChangeEvent(BaseModel):
    """行变更事件"""

    seq: int = Field(default=0, description="outbox 序号，单调递增")
    table: str = Field(description="表名：tasks / notifications")
    change_type: ChangeType = Field(description="INSERT / UPDATE")
    row_id: str = Field(description="变更行的主键")
    old_row: dict[str, Any] | None = Field(default=None, description="变更前的行（INSERT 为空）")
    new_row: dict[str, Any] = Field(description="变更后的行")
    ts: datetime = Field(description="变更时间")
