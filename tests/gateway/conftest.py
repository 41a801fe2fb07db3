"""gateway 测试配置 -- 手动初始化 app.state（绕过 lifespan）+ httpx AsyncClient"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from timetracker.core.models import User
from timetracker.gateway.config import GatewayConfig


@pytest_asyncio.fixture
async def app(tmp_db_path: Path, tmp_path: Path, clock):
    """测试用 FastAPI app，使用临时数据库和可控时钟"""
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from timetracker.gateway.main import create_app, init_app_state, shutdown_app_state

    application = create_app()
    await init_app_state(
        application,
        str(tmp_db_path),
        tmp_path / "sessions",
        clock=clock,
        config=GatewayConfig(heartbeat_interval_s=1, reconcile_on_startup=False),
    )
    yield application

    await shutdown_app_state(application)
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def store_group(app):
    """覆盖全局 fixture：与 app 共享同一个 StoreGroup"""
    return app.state.store_group


@pytest.fixture
def task_service(app):
    return app.state.task_service


@pytest.fixture
def reconciler(app):
    return app.state.reconciler


@pytest.fixture
def hub(app):
    return app.state.notification_hub


@pytest.fixture
def settle(reconciler, hub):
    """等待后台通知派生和未读集合更新完成"""

    async def _settle() -> None:
        await reconciler.drain()
        await hub.drain()

    return _settle


@pytest.fixture
def as_user():
    """构造 X-User-Id 请求头"""

    def _headers(user: User) -> dict[str, str]:
        return {"X-User-Id": user.id}

    return _headers


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
