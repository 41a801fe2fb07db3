"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、会话快照目录、后台派生引擎状态。
"""

import aiosqlite
import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查

    检查项：
    1. sqlite: 数据库连通性
    2. sessions_dir: 会话快照目录可访问性
    3. reconciler: 通知派生消费者是否在运行
    """
    checks = {}
    all_ok = True

    # 1. SQLite 连通性检查
    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except (aiosqlite.Error, ValueError) as e:
        log.warning("readiness_sqlite_failed", error=str(e))
        checks["sqlite"] = f"error: {e}"
        all_ok = False

    # 2. 会话快照目录检查
    sessions = request.app.state.sessions
    sessions_dir = sessions.snapshot_path("readiness").parent
    if sessions_dir.exists() and sessions_dir.is_dir():
        checks["sessions_dir"] = "ok"
    else:
        checks["sessions_dir"] = "error: directory does not exist"
        all_ok = False

    # 3. 通知派生引擎
    if request.app.state.reconciler.running:
        checks["reconciler"] = "ok"
    else:
        checks["reconciler"] = "stopped"
        all_ok = False

    status_code = 200 if all_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
        },
    )
