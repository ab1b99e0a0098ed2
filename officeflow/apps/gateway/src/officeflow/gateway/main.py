"""FastAPI 应用主文件

app 创建 + lifespan 管理：
启动时构造 StoreGroup、EventBus、AgentRegistry、DelayedScheduler、WorkflowCoordinator，
外部运行时启用时再启动 GatewayClient + RuntimeAdapter；关闭时按相反顺序清理。
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from officeflow.agentlink import GatewayClient, load_agentlink_config
from officeflow.core.agents import AgentRegistry
from officeflow.core.config import (
    get_config_file,
    get_db_path,
    get_orchestrator,
    get_pacing_scale,
    load_office_config,
)
from officeflow.core.scheduler import DelayedScheduler
from officeflow.core.store import create_store_group

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import agents, health, requests, runtime, stream, webhook, workflow
from .services.coordinator import WorkflowCoordinator
from .services.event_bus import EventBus
from .services.runtime_adapter import RuntimeAdapter

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理"""
    config_path = get_config_file()
    office_config = load_office_config(config_path)
    app.state.office_config = office_config

    store_group = await create_store_group(get_db_path())
    app.state.store_group = store_group

    bus = EventBus()
    registry = AgentRegistry.from_config(office_config, config_path=config_path)
    scheduler = DelayedScheduler(get_pacing_scale())
    coordinator = WorkflowCoordinator(
        store_group,
        bus,
        registry,
        scheduler,
        orchestrator=get_orchestrator(),
    )
    app.state.event_bus = bus
    app.state.registry = registry
    app.state.scheduler = scheduler
    app.state.coordinator = coordinator

    # 外部运行时（可选）
    link_config = load_agentlink_config(office_config.gateway)
    client_task: asyncio.Task | None = None
    app.state.gateway_client = None
    app.state.runtime_adapter = None
    if link_config.enabled:
        adapter = RuntimeAdapter(coordinator)
        client = GatewayClient(
            link_config, adapter.handle_event, on_disconnect=adapter.handle_disconnect
        )
        app.state.runtime_adapter = adapter
        app.state.gateway_client = client
        client_task = asyncio.create_task(client.run())

    log.info(
        "gateway_started",
        orchestrator=coordinator.orchestrator,
        agents=len(registry.list_all()),
        runtime_enabled=link_config.enabled,
    )

    yield

    if client_task is not None:
        await app.state.gateway_client.stop()
        client_task.cancel()
        try:
            await client_task
        except asyncio.CancelledError:
            pass
    await scheduler.close()
    await bus.close()
    await store_group.conn.close()
    log.info("gateway_stopped")


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="OfficeFlow Gateway",
        version="0.1.0",
        description="OfficeFlow 工作流编排与实时事件流 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire()

    # stream 先于 workflow 注册，/api/workflow/stream 不会被其他路由遮挡
    app.include_router(stream.router, tags=["stream"])
    app.include_router(workflow.router, tags=["workflow"])
    app.include_router(requests.router, tags=["requests"])
    app.include_router(webhook.router, tags=["webhook"])
    app.include_router(runtime.router, tags=["runtime"])
    app.include_router(agents.router, tags=["config"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
