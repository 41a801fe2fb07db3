"""ChangeStore SQLite 实现 -- changes outbox

outbox 表 append-only：只允许插入，不允许更新或删除。
seq 全局严格单调递增，用于 SSE 断线重连（Last-Event-ID）。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.change import ChangeEvent
from ..models.enums import ChangeType


class SqliteChangeStore:
    """ChangeStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_change(self, change: ChangeEvent) -> ChangeEvent:
        """追加变更记录（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。

        Returns:
            带有分配后 seq 的 ChangeEvent
        """
        cursor = await self._conn.execute(
            """
            INSERT INTO changes (table_name, change_type, row_id, old_row, new_row, ts)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                change.table,
                change.change_type.value,
                change.row_id,
                json.dumps(change.old_row, ensure_ascii=False)
                if change.old_row is not None
                else None,
                json.dumps(change.new_row, ensure_ascii=False),
                change.ts.isoformat(),
            ),
        )
        return change.model_copy(update={"seq": cursor.lastrowid})

    async def get_changes_after(
        self,
        table: str,
        after_seq: int,
        limit: int = 500,
    ) -> list[ChangeEvent]:
        """查询指定 seq 之后的增量变更，按 seq 正序"""
        cursor = await self._conn.execute(
            """
            SELECT seq, table_name, change_type, row_id, old_row, new_row, ts
            FROM changes
            WHERE table_name = ? AND seq > ?
            ORDER BY seq ASC
            LIMIT ?
            """,
            (table, after_seq, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_change(row) for row in rows]

    async def get_latest_seq(self) -> int:
        """当前最大 seq，空表返回 0"""
        cursor = await self._conn.execute("SELECT COALESCE(MAX(seq), 0) FROM changes")
        row = await cursor.fetchone()
        return row[0] if row else 0

    @staticmethod
    def _row_to_change(row: aiosqlite.Row) -> ChangeEvent:
        """将数据库行转换为 ChangeEvent 模型"""
        return ChangeEvent(
            seq=row[0],
            table=row[1],
            change_type=ChangeType(row[2]),
            row_id=row[3],
            old_row=json.loads(row[4]) if row[4] else None,
            new_row=json.loads(row[5]),
            ts=datetime.fromisoformat(row[6]),
        )
