"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、计时会话快照目录、SSE 心跳间隔等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TIMETRACKER_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "TIMETRACKER_DB_PATH",
        str(_get_base_dir() / "sqlite" / "timetracker.db"),
    )


def get_sessions_dir() -> Path:
    """获取计时会话快照目录（每个操作员一个快照文件）"""
    return Path(
        os.environ.get(
            "TIMETRACKER_SESSIONS_DIR",
            str(_get_base_dir() / "sessions"),
        )
    )


# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("TIMETRACKER_SSE_HEARTBEAT_INTERVAL", "15")
)

# ChangeFeed 订阅队列容量，满队列的订阅者会被丢弃
CHANGE_FEED_QUEUE_MAXSIZE: int = int(
    os.environ.get("TIMETRACKER_CHANGE_FEED_QUEUE_MAXSIZE", "1000")
)

# 单次 SSE 重连回放的最大 change 条数
CHANGE_REPLAY_LIMIT: int = 500
