"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性；profile=full 时附带外部运行时连接状态。
"""

import structlog
from fastapi import APIRouter, Query, Request
from officeflow.agentlink import LinkStatus
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: str | None = Query(
        default=None,
        description="core（默认）仅检查 SQLite；full 同时要求外部运行时已连接",
    ),
):
    """Readiness 检查

    检查项：
    1. sqlite: 数据库连通性
    2. runtime_link: profile=full 时检查网关连接；未启用外部运行时为 disabled
    """
    effective_profile = profile or "core"
    checks: dict[str, str] = {}
    all_ok = True

    try:
        cursor = await request.app.state.store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        log.warning("readiness_sqlite_failed", error=str(e))
        checks["sqlite"] = f"error: {e}"
        all_ok = False

    client = getattr(request.app.state, "gateway_client", None)
    if effective_profile != "full":
        checks["runtime_link"] = "skipped"
    elif client is None:
        checks["runtime_link"] = "disabled"
    elif client.status == LinkStatus.CONNECTED:
        checks["runtime_link"] = "ok"
    else:
        checks["runtime_link"] = str(client.status)
        all_ok = False

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "not_ready",
            "profile": effective_profile,
            "checks": checks,
        },
    )
