"""外部运行时状态路由

GET /api/runtime: 网关连接状态与适配器关联状态。
"""

from fastapi import APIRouter, Depends

from ..deps import get_gateway_client, get_runtime_adapter

router = APIRouter()


@router.get("/api/runtime")
async def runtime_status(
    client=Depends(get_gateway_client),
    adapter=Depends(get_runtime_adapter),
):
    return {
        "enabled": client is not None,
        "link": client.snapshot() if client is not None else None,
        "adapter": adapter.snapshot() if adapter is not None else None,
    }
