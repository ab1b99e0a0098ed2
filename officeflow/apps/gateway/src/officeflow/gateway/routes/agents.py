"""Agent 注册表路由

GET /api/config/agents: 当前 agent 注册表快照与编排者 ID。
"""

from fastapi import APIRouter, Depends

from ..deps import get_coordinator, get_office_config, get_registry

router = APIRouter()


@router.get("/api/config/agents")
async def list_agents(
    registry=Depends(get_registry),
    coordinator=Depends(get_coordinator),
    office_config=Depends(get_office_config),
):
    return {
        "office": office_config.office,
        "orchestrator": coordinator.orchestrator,
        "agents": [a.model_dump() for a in registry.list_all()],
    }
