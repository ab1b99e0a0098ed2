"""apps/gateway 测试配置 -- 协调器、事件总线与 httpx 测试客户端 fixture"""

from collections.abc import AsyncGenerator

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from officeflow.core.agents import AgentRegistry
from officeflow.core.config import OfficeConfig
from officeflow.core.scheduler import DelayedScheduler
from officeflow.core.store import StoreGroup
from officeflow.gateway.routes import agents, health, requests, runtime, stream, webhook, workflow
from officeflow.gateway.services.coordinator import WorkflowCoordinator
from officeflow.gateway.services.event_bus import EventBus


@pytest_asyncio.fixture
async def bus() -> AsyncGenerator[EventBus, None]:
    event_bus = EventBus()
    yield event_bus
    await event_bus.close()


@pytest_asyncio.fixture
async def scheduler() -> AsyncGenerator[DelayedScheduler, None]:
    """延迟压缩为 0 的调度器；drain() 后所有节奏步骤已执行"""
    delayed = DelayedScheduler(scale=0)
    yield delayed
    await delayed.close()


@pytest_asyncio.fixture
async def coordinator(
    store_group: StoreGroup,
    bus: EventBus,
    registry: AgentRegistry,
    scheduler: DelayedScheduler,
) -> WorkflowCoordinator:
    return WorkflowCoordinator(store_group, bus, registry, scheduler, orchestrator="main")


@pytest_asyncio.fixture
async def office_config() -> OfficeConfig:
    return OfficeConfig()


@pytest_asyncio.fixture
async def test_app(
    store_group: StoreGroup,
    bus: EventBus,
    registry: AgentRegistry,
    scheduler: DelayedScheduler,
    coordinator: WorkflowCoordinator,
    office_config: OfficeConfig,
) -> FastAPI:
    """创建测试用 FastAPI app，手动初始化 lifespan 状态"""
    app = FastAPI()
    app.include_router(stream.router)
    app.include_router(workflow.router)
    app.include_router(requests.router)
    app.include_router(webhook.router)
    app.include_router(runtime.router)
    app.include_router(agents.router)
    app.include_router(health.router)

    app.state.office_config = office_config
    app.state.store_group = store_group
    app.state.event_bus = bus
    app.state.registry = registry
    app.state.scheduler = scheduler
    app.state.coordinator = coordinator
    app.state.runtime_adapter = None
    app.state.gateway_client = None
    return app


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient"""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac
