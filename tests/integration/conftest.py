"""集成测试配置 -- 可重启的 Gateway（同一数据库 + 会话目录）"""

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from timetracker.gateway.config import GatewayConfig
from timetracker.gateway.main import create_app, init_app_state, shutdown_app_state


class GatewayProcess:
    """模拟 Gateway 进程的启动 / 退出，数据库和会话快照在重启间保留"""

    def __init__(self, db_path: Path, sessions_dir: Path, clock) -> None:
        self.db_path = db_path
        self.sessions_dir = sessions_dir
        self.clock = clock
        self.app: FastAPI | None = None

    async def start(self, reconcile_on_startup: bool = False) -> FastAPI:
        application = create_app()
        await init_app_state(
            application,
            str(self.db_path),
            self.sessions_dir,
            clock=self.clock,
            config=GatewayConfig(
                heartbeat_interval_s=1,
                reconcile_on_startup=reconcile_on_startup,
            ),
        )
        self.app = application
        return application

    async def stop(self) -> None:
        """进程退出：不登出，本地快照保留"""
        if self.app is not None:
            await shutdown_app_state(self.app)
            self.app = None

    async def restart(self, reconcile_on_startup: bool = False) -> FastAPI:
        await self.stop()
        return await self.start(reconcile_on_startup=reconcile_on_startup)

    @asynccontextmanager
    async def client(self) -> AsyncGenerator[AsyncClient, None]:
        async with AsyncClient(
            transport=ASGITransport(app=self.app),
            base_url="http://test",
        ) as ac:
            yield ac


@pytest_asyncio.fixture
async def gateway(tmp_db_path: Path, tmp_path: Path, clock, directory):
    """依赖 directory：种子数据在 Gateway 启动前写入"""
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"
    process = GatewayProcess(tmp_db_path, tmp_path / "sessions", clock)
    yield process
    await process.stop()
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)
