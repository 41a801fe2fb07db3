"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭、会话注册表、通知派生引擎、路由注册。
"""

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI
from timetracker.core.config import get_db_path, get_sessions_dir
from timetracker.core.store import create_store_group
from timetracker.core.timer_session import SessionRegistry
from timetracker.core.timing import now_ms

from .config import GatewayConfig, load_gateway_config
from .errors import register_error_handlers
from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import health, notifications, session, stream, tasks, transitions
from .services.notification_hub import NotificationHub
from .services.reconciler import NotificationReconciler
from .services.task_service import TaskService

log = structlog.get_logger()


async def init_app_state(
    app: FastAPI,
    db_path: str,
    sessions_dir: Path,
    clock: Callable[[], int] = now_ms,
    config: GatewayConfig | None = None,
) -> None:
    """初始化 app.state 上的 Store / 服务实例并启动后台消费者"""
    config = config or load_gateway_config()
    sessions_dir.mkdir(parents=True, exist_ok=True)

    store_group = await create_store_group(db_path)
    app.state.gateway_config = config
    app.state.store_group = store_group
    app.state.sessions = SessionRegistry(sessions_dir, clock=clock)
    app.state.task_service = TaskService(store_group, app.state.sessions, clock=clock)
    app.state.notification_hub = NotificationHub(store_group)
    app.state.reconciler = NotificationReconciler(store_group)

    # 先订阅再回放，回放期间产生的变更不会丢
    await app.state.reconciler.start()
    await app.state.notification_hub.start()
    if config.reconcile_on_startup:
        await app.state.reconciler.replay_recent(config.replay_limit)

    log.info(
        "app_state_initialized",
        db_path=db_path,
        sessions_dir=str(sessions_dir),
        reconcile_on_startup=config.reconcile_on_startup,
    )


async def shutdown_app_state(app: FastAPI) -> None:
    """停止后台消费者并关闭数据库连接"""
    reconciler = getattr(app.state, "reconciler", None)
    if reconciler is not None:
        await reconciler.stop()
    hub = getattr(app.state, "notification_hub", None)
    if hub is not None:
        await hub.stop()
    store_group = getattr(app.state, "store_group", None)
    if store_group is not None:
        await store_group.conn.close()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理"""
    await init_app_state(app, get_db_path(), get_sessions_dir())

    yield

    await shutdown_app_state(app)


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="TimeTracker Gateway",
        version="0.1.0",
        description="任务生命周期与计时 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    register_error_handlers(app)

    # 初始化日志
    setup_logging()
    setup_logfire()

    # 注册路由
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(transitions.router, tags=["transitions"])
    app.include_router(session.router, tags=["session"])
    app.include_router(notifications.router, tags=["notifications"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
