"""通知派生规则 -- 从 task 变更 (old_row, new_row) 推导通知

纯函数：给定一次变更和一个接收者，返回该接收者应收到的通知草稿。
同一事件对同一接收者，完成类规则最多产生一条（corrected 优先于 completed）。
"""

import hashlib
from enum import StrEnum

from pydantic import BaseModel, Field

from .models.enums import NotificationType, Role, TaskStatus
from .models.task import Task, User

UNKNOWN_ASSIGNEE_NAME = "a user"


class NotificationRule(StrEnum):
    """派生规则标识（参与幂等键计算）"""

    CORRECTION_REQUESTED = "correction_requested"
    TASK_ASSIGNED = "task_assigned"
    TASK_COMPLETED = "task_completed"
    TASK_CORRECTED_COMPLETED = "task_corrected_completed"
    TASK_SENT_TO_QC = "task_sent_to_qc"
    TASK_FINALIZED = "task_finalized"
    TASK_CREATED = "task_created"


class NotificationDraft(BaseModel):
    """待写入的通知"""

    rule: NotificationRule
    user_id: str = Field(description="接收者")
    message: str
    type: NotificationType
    task_id: str
    dedup_key: str


def dedup_key(
    task_id: str,
    version: int | str,
    old_status: TaskStatus | None,
    new_status: TaskStatus,
    rule: NotificationRule,
    recipient_id: str,
) -> str:
    """幂等键：同一行版本上的同一规则对同一接收者只产生一次"""
    parts = [
        task_id,
        str(version),
        old_status.value if old_status is not None else "",
        new_status.value,
        rule.value,
        recipient_id,
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def _draft(
    rule: NotificationRule,
    recipient: User,
    message: str,
    type_: NotificationType,
    old: Task | None,
    new: Task,
) -> NotificationDraft:
    return NotificationDraft(
        rule=rule,
        user_id=recipient.id,
        message=message,
        type=type_,
        task_id=new.id,
        dedup_key=dedup_key(
            new.id,
            new.version,
            old.status if old is not None else None,
            new.status,
            rule,
            recipient.id,
        ),
    )


def derive_for_viewer(
    old: Task,
    new: Task,
    viewer: User,
    assignee_name: str = UNKNOWN_ASSIGNEE_NAME,
) -> list[NotificationDraft]:
    """对单个接收者评估所有规则

    Args:
        old: 变更前的任务行
        new: 变更后的任务行
        viewer: 接收者
        assignee_name: 任务执行人的显示名（admin 消息使用）

    Returns:
        0~N 条通知草稿
    """
    drafts: list[NotificationDraft] = []
    title = new.title

    # assignee 规则
    if new.assigned_to == viewer.id:
        if old.status != TaskStatus.CORRECTION and new.status == TaskStatus.CORRECTION:
            drafts.append(
                _draft(
                    NotificationRule.CORRECTION_REQUESTED,
                    viewer,
                    f'Task "{title}" needs correction!',
                    NotificationType.WARNING,
                    old,
                    new,
                )
            )
        if old.assigned_to != new.assigned_to:
            drafts.append(
                _draft(
                    NotificationRule.TASK_ASSIGNED,
                    viewer,
                    f'Task "{title}" has been assigned to you!',
                    NotificationType.INFO,
                    old,
                    new,
                )
            )
        if old.status != TaskStatus.FINALIZED and new.status == TaskStatus.FINALIZED:
            drafts.append(
                _draft(
                    NotificationRule.TASK_FINALIZED,
                    viewer,
                    f'Task "{title}" was finalized!',
                    NotificationType.SUCCESS,
                    old,
                    new,
                )
            )

    # admin 规则
    if viewer.role == Role.ADMIN:
        if old.status == TaskStatus.CORRECTION and new.status == TaskStatus.COMPLETED:
            drafts.append(
                _draft(
                    NotificationRule.TASK_CORRECTED_COMPLETED,
                    viewer,
                    f'Task "{title}" was CORRECTED and marked DONE by {assignee_name}!',
                    NotificationType.SUCCESS,
                    old,
                    new,
                )
            )
        elif old.status != TaskStatus.COMPLETED and new.status == TaskStatus.COMPLETED:
            drafts.append(
                _draft(
                    NotificationRule.TASK_COMPLETED,
                    viewer,
                    f'Task "{title}" was marked DONE by {assignee_name}!',
                    NotificationType.SUCCESS,
                    old,
                    new,
                )
            )
        if old.status != TaskStatus.QC and new.status == TaskStatus.QC:
            drafts.append(
                _draft(
                    NotificationRule.TASK_SENT_TO_QC,
                    viewer,
                    f'Task "{title}" was sent to quality review.',
                    NotificationType.INFO,
                    old,
                    new,
                )
            )

    return drafts


def derive_notifications(
    old: Task,
    new: Task,
    audience: list[User],
    assignee_name: str = UNKNOWN_ASSIGNEE_NAME,
) -> list[NotificationDraft]:
    """对所有接收者评估规则，同一接收者只出现一次"""
    drafts: list[NotificationDraft] = []
    seen: set[str] = set()
    for viewer in audience:
        if viewer.id in seen:
            continue
        seen.add(viewer.id)
        drafts.extend(derive_for_viewer(old, new, viewer, assignee_name))
    return drafts


def creation_notification(task: Task, assignee: User) -> NotificationDraft:
    """任务创建时直接发给 assignee 的"已分配"通知"""
    return _draft(
        NotificationRule.TASK_CREATED,
        assignee,
        f'Task "{task.title}" has been assigned to you!',
        NotificationType.INFO,
        None,
        task,
    )
