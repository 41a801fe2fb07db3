"""CLI 入口模块 -- python -m timetracker.core <command>

支持的命令：
  init-db    初始化 SQLite 表结构
  seed-demo  写入演示用户、项目（admin / leader / digitador 各一个）
"""

import asyncio
import sys

from .config import get_db_path


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print("用法: python -m timetracker.core <command>")
        print("命令:")
        print("  init-db    初始化 SQLite 表结构")
        print("  seed-demo  写入演示用户和项目")
        sys.exit(1)

    command = sys.argv[1]

    if command == "init-db":
        asyncio.run(init_database())
    elif command == "seed-demo":
        asyncio.run(seed_demo())
    else:
        print(f"未知命令: {command}")
        print("可用命令: init-db, seed-demo")
        sys.exit(1)


async def init_database() -> None:
    """执行表结构初始化"""
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")

    store_group = await create_store_group(db_path)
    await store_group.conn.close()
    print("初始化完成")


async def seed_demo() -> None:
    """写入演示数据，打印生成的 ID"""
    from ulid import ULID

    from .models import Project, Role, User
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        users = [
            User(id=str(ULID()), username="admin", role=Role.ADMIN),
            User(id=str(ULID()), username="leader", role=Role.LEADER),
            User(id=str(ULID()), username="operator", role=Role.DIGITADOR),
        ]
        for user in users:
            await store_group.user_store.create_user(user)

        project = Project(
            id=str(ULID()),
            name="Demo",
            description="演示项目",
            leader_id=users[1].id,
        )
        await store_group.project_store.create_project(project)
        await store_group.conn.commit()

        for user in users:
            print(f"{user.role.value:<10} {user.username:<10} {user.id}")
        print(f"{'project':<10} {project.name:<10} {project.id}")
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    main()
