"""Task / Project / User Domain Model

tasks 表的每次 UPDATE 都会递增 version，并在同一事务内写入 changes outbox，
通知派生以 (task_id, version) 作为变更身份。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import Role, TaskStatus


class User(BaseModel):
    """用户（操作员 / leader / admin）"""

    id: str = Field(description="唯一标识，ULID 格式")
    username: str = Field(description="显示名")
    role: Role = Field(description="角色")


class Project(BaseModel):
    """项目 -- 核心层只读"""

    id: str = Field(description="唯一标识，ULID 格式")
    name: str = Field(description="项目名称")
    description: str = Field(default="", description="项目描述")
    leader_id: str | None = Field(default=None, description="项目 leader 的用户 ID")


class Task(BaseModel):
    """Task 数据模型

    total_time_spent 只在 pause/complete 检查点写入，
    计时中的实时时长需结合 TimerSession 计算。
    """

    id: str = Field(description="唯一标识，ULID 格式")
    title: str = Field(description="任务标题")
    description: str = Field(default="", description="任务描述")
    project_id: str = Field(description="所属项目 ID")
    assigned_to: str | None = Field(default=None, description="执行人用户 ID")
    created_by: str | None = Field(default=None, description="创建人用户 ID")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="当前状态")
    total_time_spent: int = Field(default=0, ge=0, description="截至上个检查点的累计秒数")
    completed_at: datetime | None = Field(
        default=None, description="首次进入 completed 的时间"
    )
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    version: int = Field(default=1, description="行版本，每次更新 +1")
