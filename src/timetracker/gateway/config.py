"""GatewayConfig -- Gateway 运行配置加载

从环境变量加载，非法值记录日志后回退到默认值，不阻塞启动。
"""

import os

import structlog
from pydantic import BaseModel, Field
from timetracker.core.config import CHANGE_REPLAY_LIMIT, SSE_HEARTBEAT_INTERVAL

log = structlog.get_logger()


class GatewayConfig(BaseModel):
    """Gateway 配置

    环境变量:
        TIMETRACKER_SSE_HEARTBEAT_INTERVAL: SSE 心跳间隔（秒）
        TIMETRACKER_REPLAY_LIMIT: 单次回放的最大 change 条数
        TIMETRACKER_RECONCILE_ON_STARTUP: 启动时是否回放最近的 task 变更（true/false）
        TIMETRACKER_HOST / TIMETRACKER_PORT: uvicorn 监听地址
    """

    host: str = Field(default="127.0.0.1", description="监听地址")
    port: int = Field(default=8000, ge=1, le=65535, description="监听端口")

    heartbeat_interval_s: int = Field(
        default=SSE_HEARTBEAT_INTERVAL,
        ge=1,
        description="SSE 心跳间隔（秒）",
    )
    replay_limit: int = Field(
        default=CHANGE_REPLAY_LIMIT,
        ge=1,
        description="单次 SSE 重连 / 启动回放的最大 change 条数",
    )
    reconcile_on_startup: bool = Field(
        default=True,
        description="启动时回放最近的 task 变更以补齐通知",
    )


def _int_env(env_var: str, fallback: int) -> int | None:
    val = os.environ.get(env_var)
    if not val:
        return None
    try:
        parsed = int(val)
    except ValueError:
        parsed = 0
    if parsed < 1:
        log.warning(
            "invalid_gateway_config",
            env_var=env_var,
            value=val,
            fallback=fallback,
        )
        return None
    return parsed


def load_gateway_config() -> GatewayConfig:
    """从环境变量加载 Gateway 配置

    Returns:
        GatewayConfig 实例
    """
    kwargs: dict = {}

    if (val := _int_env("TIMETRACKER_SSE_HEARTBEAT_INTERVAL", SSE_HEARTBEAT_INTERVAL)) is not None:
        kwargs["heartbeat_interval_s"] = val

    if (val := _int_env("TIMETRACKER_REPLAY_LIMIT", CHANGE_REPLAY_LIMIT)) is not None:
        kwargs["replay_limit"] = val

    if val := os.environ.get("TIMETRACKER_RECONCILE_ON_STARTUP"):
        lowered = val.lower()
        if lowered in ("true", "1", "yes"):
            kwargs["reconcile_on_startup"] = True
        elif lowered in ("false", "0", "no"):
            kwargs["reconcile_on_startup"] = False
        else:
            log.warning(
                "invalid_gateway_config",
                env_var="TIMETRACKER_RECONCILE_ON_STARTUP",
                value=val,
                fallback=True,
            )

    if host := os.environ.get("TIMETRACKER_HOST"):
        kwargs["host"] = host

    if (val := _int_env("TIMETRACKER_PORT", 8000)) is not None and val <= 65535:
        kwargs["port"] = val

    return GatewayConfig(**kwargs)
