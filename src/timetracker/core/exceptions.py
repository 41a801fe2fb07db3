"""TimeTracker 异常体系

InvalidTransition / NotFound 直接反馈给调用方且不重试；
PersistenceFailure 在登出 flush 路径上只记录日志，不阻塞登出。
"""


class TimeTrackerError(Exception):
    """核心包基础异常"""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, recoverable: bool = False) -> None:
        """
        Args:
            message: 错误描述（面向用户）
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


class InvalidTransitionError(TimeTrackerError):
    """当前状态 + 操作者不允许此状态流转，未做任何写入"""

    code = "INVALID_TRANSITION"

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=False)


class NotFoundError(TimeTrackerError):
    """引用的任务 / 用户 / 项目不存在"""

    code = "NOT_FOUND"

    def __init__(self, kind: str, ident: str) -> None:
        """
        Args:
            kind: 实体类型（Task / User / Project / Notification）
            ident: 实体 ID
        """
        super().__init__(f"{kind} with id {ident} does not exist", recoverable=False)
        self.kind = kind
        self.ident = ident


class PersistenceFailureError(TimeTrackerError):
    """存储读写失败，事务已回滚"""

    code = "PERSISTENCE_FAILURE"

    def __init__(self, operation: str, original_error: Exception) -> None:
        """
        Args:
            operation: 失败的存储操作
            original_error: 原始异常
        """
        super().__init__(
            f"Storage operation {operation} failed: {original_error}",
            recoverable=True,
        )
        self.operation = operation
        self.original_error = original_error


class DuplicateNotificationError(TimeTrackerError):
    """dedup_key 已存在 -- Reconciler 内部短路，不对外暴露"""

    code = "DUPLICATE_NOTIFICATION"

    def __init__(self, dedup_key: str) -> None:
        super().__init__(f"Notification {dedup_key} already exists", recoverable=False)
        self.dedup_key = dedup_key


class SessionConflictError(TimeTrackerError):
    """试图在另一个任务仍在计时时开启新会话"""

    code = "SESSION_CONFLICT"

    def __init__(self, active_task_id: str, requested_task_id: str) -> None:
        super().__init__(
            f"Task {active_task_id} is still being timed; "
            f"stop it before starting {requested_task_id}",
            recoverable=False,
        )
        self.active_task_id = active_task_id
        self.requested_task_id = requested_task_id


class PermissionDeniedError(TimeTrackerError):
    """操作者无权执行非状态流转类操作（创建 / 重新分配任务）"""

    code = "PERMISSION_DENIED"

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=False)


class UnauthenticatedError(TimeTrackerError):
    """请求未携带可识别的用户身份"""

    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Missing or unknown X-User-Id header") -> None:
        super().__init__(message, recoverable=False)
