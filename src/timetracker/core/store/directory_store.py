"""UserStore / ProjectStore SQLite 实现

users / projects 归外部 CRUD 负责，核心层只读；
create_* 仅用于测试和 CLI 的种子数据。
"""

import aiosqlite

from ..models.enums import Role
from ..models.task import Project, User


class SqliteUserStore:
    """UserStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_user(self, user: User) -> None:
        await self._conn.execute(
            "INSERT INTO users (id, username, role) VALUES (?, ?, ?)",
            (user.id, user.username, user.role.value),
        )

    async def get_user(self, user_id: str) -> User | None:
        cursor = await self._conn.execute(
            "SELECT id, username, role FROM users WHERE id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return User(id=row[0], username=row[1], role=Role(row[2]))

    async def list_users(self, role: Role | None = None) -> list[User]:
        """查询用户列表，可按角色筛选"""
        if role is not None:
            cursor = await self._conn.execute(
                "SELECT id, username, role FROM users WHERE role = ? ORDER BY username",
                (role.value,),
            )
        else:
            cursor = await self._conn.execute(
                "SELECT id, username, role FROM users ORDER BY username"
            )
        rows = await cursor.fetchall()
        return [User(id=r[0], username=r[1], role=Role(r[2])) for r in rows]


class SqliteProjectStore:
    """ProjectStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_project(self, project: Project) -> None:
        await self._conn.execute(
            "INSERT INTO projects (id, name, description, leader_id) VALUES (?, ?, ?, ?)",
            (project.id, project.name, project.description, project.leader_id),
        )

    async def get_project(self, project_id: str) -> Project | None:
        cursor = await self._conn.execute(
            "SELECT id, name, description, leader_id FROM projects WHERE id = ?",
            (project_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Project(id=row[0], name=row[1], description=row[2], leader_id=row[3])

    async def list_project_ids_led_by(self, leader_id: str) -> list[str]:
        """leader 负责的项目 ID 列表"""
        cursor = await self._conn.execute(
            "SELECT id FROM projects WHERE leader_id = ?",
            (leader_id,),
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]
