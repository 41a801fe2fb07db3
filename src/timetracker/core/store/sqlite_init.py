"""SQLite 数据库初始化

PRAGMA 配置 + users / projects / tasks / notifications / changes 五张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

_USERS_DDL = """
CREATE TABLE IF NOT EXISTS users (
    id        TEXT PRIMARY KEY,
    username  TEXT NOT NULL,
    role      TEXT NOT NULL
);
"""

_PROJECTS_DDL = """
CREATE TABLE IF NOT EXISTS projects (
    id           TEXT PRIMARY KEY,
    name         TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    leader_id    TEXT,

    FOREIGN KEY (leader_id) REFERENCES users(id)
);
"""

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    id                TEXT PRIMARY KEY,
    title             TEXT NOT NULL DEFAULT '',
    description       TEXT NOT NULL DEFAULT '',
    project_id        TEXT NOT NULL,
    assigned_to       TEXT,
    created_by        TEXT,
    status            TEXT NOT NULL DEFAULT 'pending',
    total_time_spent  INTEGER NOT NULL DEFAULT 0 CHECK (total_time_spent >= 0),
    completed_at      TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL,
    version           INTEGER NOT NULL DEFAULT 1,

    FOREIGN KEY (project_id) REFERENCES projects(id),
    FOREIGN KEY (assigned_to) REFERENCES users(id)
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_assigned_to ON tasks(assigned_to, status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_project_id ON tasks(project_id);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at DESC);",
]

_NOTIFICATIONS_DDL = """
CREATE TABLE IF NOT EXISTS notifications (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    message     TEXT NOT NULL,
    type        TEXT NOT NULL DEFAULT 'info',
    read        INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT NOT NULL,
    task_id     TEXT,
    dedup_key   TEXT,

    FOREIGN KEY (user_id) REFERENCES users(id)
);
"""

_NOTIFICATIONS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_notifications_user_unread "
    "ON notifications(user_id, read, created_at DESC);",
    # 幂等键唯一约束（仅对非 NULL 值生效）
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_notifications_dedup_key "
        "ON notifications(dedup_key) WHERE dedup_key IS NOT NULL;"
    ),
]

# changes outbox：与行写入同事务落盘
_CHANGES_DDL = """
CREATE TABLE IF NOT EXISTS changes (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name   TEXT NOT NULL,
    change_type  TEXT NOT NULL,
    row_id       TEXT NOT NULL,
    old_row      TEXT,
    new_row      TEXT NOT NULL,
    ts           TEXT NOT NULL
);
"""

_CHANGES_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_changes_table_seq ON changes(table_name, seq);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    for ddl in (_USERS_DDL, _PROJECTS_DDL, _TASKS_DDL, _NOTIFICATIONS_DDL, _CHANGES_DDL):
        await conn.execute(ddl)

    # 创建索引
    for idx_sql in _TASKS_INDEXES + _NOTIFICATIONS_INDEXES + _CHANGES_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
