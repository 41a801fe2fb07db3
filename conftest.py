"""全局 pytest 配置 -- 临时 SQLite 数据库、可控时钟、种子用户/项目 fixture"""

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from timetracker.core.models import Project, Role, User
from timetracker.core.store import StoreGroup, create_store_group
from ulid import ULID

# 2023-11-14T22:13:20Z
CLOCK_EPOCH_MS = 1_700_000_000_000


class FakeClock:
    """可控时钟，返回 epoch 毫秒"""

    def __init__(self, start_ms: int = CLOCK_EPOCH_MS) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def at(self, seconds: float) -> int:
        """相对起点的绝对时刻"""
        return CLOCK_EPOCH_MS + int(seconds * 1000)

    def set(self, seconds: float) -> None:
        self.now = self.at(seconds)

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


@dataclass
class Directory:
    """种子数据：用户和项目"""

    admin: User
    admin2: User
    leader: User
    other_leader: User
    operator: User
    operator2: User
    project: Project
    other_project: Project


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from timetracker.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_db_path))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """共享连接的 Store 实例组"""
    group = await create_store_group(str(tmp_db_path))
    yield group
    await group.conn.close()


async def seed_directory(store_group: StoreGroup) -> Directory:
    """写入测试用户和项目"""

    def user(name: str, role: Role) -> User:
        return User(id=str(ULID()), username=name, role=role)

    directory_users = {
        "admin": user("admin", Role.ADMIN),
        "admin2": user("auditor", Role.ADMIN),
        "leader": user("leader", Role.LEADER),
        "other_leader": user("other-leader", Role.LEADER),
        "operator": user("ana", Role.DIGITADOR),
        "operator2": user("bruno", Role.DIGITADOR),
    }
    for u in directory_users.values():
        await store_group.user_store.create_user(u)

    project = Project(
        id=str(ULID()),
        name="Census",
        leader_id=directory_users["leader"].id,
    )
    other_project = Project(
        id=str(ULID()),
        name="Archive",
        leader_id=directory_users["other_leader"].id,
    )
    await store_group.project_store.create_project(project)
    await store_group.project_store.create_project(other_project)
    await store_group.conn.commit()

    return Directory(project=project, other_project=other_project, **directory_users)


@pytest_asyncio.fixture
async def directory(store_group: StoreGroup) -> Directory:
    return await seed_directory(store_group)
