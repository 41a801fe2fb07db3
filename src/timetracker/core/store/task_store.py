"""TaskStore SQLite 实现

UPDATE 以 version 做条件写（乐观并发），rowcount 为 0 表示行已被并发修改。
此处仅提供数据库操作，事务由 transaction 模块管理。
"""

from collections.abc import Iterable
from datetime import datetime

import aiosqlite

from ..models.enums import TaskStatus
from ..models.task import Task

_COLUMNS = (
    "id, title, description, project_id, assigned_to, created_by, status, "
    "total_time_spent, completed_at, created_at, updated_at, version"
)


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        await self._conn.execute(
            f"""
            INSERT INTO tasks ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.id,
                task.title,
                task.description,
                task.project_id,
                task.assigned_to,
                task.created_by,
                task.status.value,
                task.total_time_spent,
                task.completed_at.isoformat() if task.completed_at else None,
                task.created_at.isoformat(),
                task.updated_at.isoformat(),
                task.version,
            ),
        )

    async def get_task(self, task_id: str) -> Task | None:
        """根据 id 查询任务"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM tasks WHERE id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(
        self,
        assigned_to: str | None = None,
        project_ids: Iterable[str] | None = None,
        statuses: Iterable[TaskStatus] | None = None,
    ) -> list[Task]:
        """查询任务列表，按 created_at 倒序

        Args:
            assigned_to: 只返回分配给该用户的任务
            project_ids: 只返回这些项目内的任务（空集合返回空列表）
            statuses: 只返回这些状态的任务
        """
        clauses: list[str] = []
        params: list = []
        if assigned_to is not None:
            clauses.append("assigned_to = ?")
            params.append(assigned_to)
        if project_ids is not None:
            ids = list(project_ids)
            if not ids:
                return []
            clauses.append(f"project_id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)
        if statuses is not None:
            values = [TaskStatus(s).value for s in statuses]
            if not values:
                return []
            clauses.append(f"status IN ({', '.join('?' for _ in values)})")
            params.extend(values)

        sql = f"SELECT {_COLUMNS} FROM tasks"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC"

        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def update_task(self, task: Task, expected_version: int) -> bool:
        """按 version 条件写回整行

        Returns:
            True 如果写入成功；False 表示行已被并发修改或不存在
        """
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET title = ?, description = ?, project_id = ?, assigned_to = ?,
                status = ?, total_time_spent = ?, completed_at = ?,
                updated_at = ?, version = ?
            WHERE id = ? AND version = ?
            """,
            (
                task.title,
                task.description,
                task.project_id,
                task.assigned_to,
                task.status.value,
                task.total_time_spent,
                task.completed_at.isoformat() if task.completed_at else None,
                task.updated_at.isoformat(),
                task.version,
                task.id,
                expected_version,
            ),
        )
        return cursor.rowcount == 1

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        return Task(
            id=row[0],
            title=row[1],
            description=row[2],
            project_id=row[3],
            assigned_to=row[4],
            created_by=row[5],
            status=TaskStatus(row[6]),
            total_time_spent=row[7],
            completed_at=datetime.fromisoformat(row[8]) if row[8] else None,
            created_at=datetime.fromisoformat(row[9]),
            updated_at=datetime.fromisoformat(row[10]),
            version=row[11],
        )
