"""依赖注入模块 -- 通过 FastAPI Depends 从 app.state 取出服务实例

所有实例在 lifespan 中显式构造与清理。
"""

from fastapi import Request
from officeflow.agentlink import GatewayClient
from officeflow.core.agents import AgentRegistry
from officeflow.core.config import OfficeConfig
from officeflow.core.store import StoreGroup

from .services.coordinator import WorkflowCoordinator
from .services.event_bus import EventBus
from .services.runtime_adapter import RuntimeAdapter


def get_store_group(request: Request) -> StoreGroup:
    return request.app.state.store_group


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


def get_registry(request: Request) -> AgentRegistry:
    return request.app.state.registry


def get_coordinator(request: Request) -> WorkflowCoordinator:
    return request.app.state.coordinator


def get_office_config(request: Request) -> OfficeConfig:
    return request.app.state.office_config


def get_runtime_adapter(request: Request) -> RuntimeAdapter | None:
    """外部运行时未启用时为 None"""
    return getattr(request.app.state, "runtime_adapter", None)


def get_gateway_client(request: Request) -> GatewayClient | None:
    return getattr(request.app.state, "gateway_client", None)
