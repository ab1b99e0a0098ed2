"""SSE 工作流事件流路由

GET /api/workflow/stream:
1. 先推送 snapshot（最近事件、非终态或刚完成的 Request、active Task）
2. 随后每条总线通知作为同名 SSE 事件推送（activity / request / task / message）
3. 15 秒无通知发送心跳注释
4. 客户端断开或订阅被总线移除时结束
"""

import asyncio
import json
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import structlog
from fastapi import APIRouter, Depends
from officeflow.core.config import (
    SNAPSHOT_EVENT_LIMIT,
    SNAPSHOT_RECENT_WINDOW_S,
    SNAPSHOT_REQUEST_LIMIT,
    SNAPSHOT_TASK_LIMIT,
    SSE_HEARTBEAT_INTERVAL,
)
from officeflow.core.store import StoreGroup
from sse_starlette.sse import EventSourceResponse

from ..deps import get_event_bus, get_store_group
from ..services.event_bus import EventBus

log = structlog.get_logger()

router = APIRouter()


async def build_snapshot(store_group: StoreGroup) -> dict:
    """构造连接建立时的全量快照"""
    now = datetime.now(UTC)
    since = now - timedelta(seconds=SNAPSHOT_RECENT_WINDOW_S)
    events = await store_group.event_store.list_recent(SNAPSHOT_EVENT_LIMIT)
    requests = await store_group.request_store.list_requests_since(since, SNAPSHOT_REQUEST_LIMIT)
    tasks = await store_group.task_store.list_tasks(SNAPSHOT_TASK_LIMIT, active_only=True)
    return {
        "events": [e.model_dump(mode="json") for e in events],
        "requests": [r.model_dump(mode="json") for r in requests],
        "tasks": [t.model_dump(mode="json") for t in tasks],
        "ts": now.isoformat(),
    }


async def workflow_event_stream(
    store_group: StoreGroup,
    bus: EventBus,
    queue: asyncio.Queue,
    *,
    heartbeat_interval: float = SSE_HEARTBEAT_INTERVAL,
) -> AsyncGenerator[dict, None]:
    """SSE 生成器；queue 须已在 bus 上订阅，结束时取消订阅"""
    try:
        snapshot = await build_snapshot(store_group)
        yield {"event": "snapshot", "data": json.dumps(snapshot, ensure_ascii=False)}

        while True:
            try:
                notification = await asyncio.wait_for(queue.get(), timeout=heartbeat_interval)
            except TimeoutError:
                yield {"comment": "heartbeat"}
                continue
            if notification is None:
                # 订阅因队列溢出被移除，客户端重连后从新快照同步
                log.info("stream_subscription_dropped")
                return
            yield {
                "event": str(notification.kind),
                "data": json.dumps(notification.data, ensure_ascii=False),
            }
    finally:
        await bus.unsubscribe(queue)


@router.get("/api/workflow/stream")
async def stream_workflow(
    store_group=Depends(get_store_group),
    bus=Depends(get_event_bus),
):
    """SSE 事件流端点"""
    # 先订阅再读快照，快照与首批通知之间不会丢事件
    queue = await bus.subscribe()
    return EventSourceResponse(workflow_event_stream(store_group, bus, queue))
