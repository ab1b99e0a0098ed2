"""SSE 工作流事件流测试

ASGITransport 会缓冲整个响应体，流式语义直接驱动生成器验证。
"""

import asyncio
import json

from officeflow.core.models import NotificationKind
from officeflow.gateway.routes.stream import build_snapshot, workflow_event_stream


class TestSnapshot:
    """连接快照"""

    async def test_snapshot_contents(self, coordinator, store_group):
        done = await coordinator.start_flow("已完成的事")
        await coordinator.complete_by_agent("main")
        active = await coordinator.start_flow("进行中的事")

        snapshot = await build_snapshot(store_group)
        assert {r["request_id"] for r in snapshot["requests"]} == {
            done.request_id,
            active.request_id,
        }
        assert [t["task_id"] for t in snapshot["tasks"]] == [active.task_id]
        assert len(snapshot["events"]) >= 3
        assert "ts" in snapshot


class TestEventStream:
    """workflow_event_stream 生成器"""

    async def test_snapshot_then_notifications(self, coordinator, store_group, bus):
        queue = await bus.subscribe()
        stream = workflow_event_stream(store_group, bus, queue, heartbeat_interval=5)

        first = await anext(stream)
        assert first["event"] == "snapshot"
        assert json.loads(first["data"])["events"] == []

        await coordinator.start_flow("推送测试")
        kinds = []
        for _ in range(4):
            message = await anext(stream)
            kinds.append(message["event"])
            json.loads(message["data"])
        assert kinds[:2] == ["activity", "request"]
        assert "task" in kinds

        await stream.aclose()
        assert not bus.is_subscribed(queue)

    async def test_heartbeat_comment(self, store_group, bus):
        queue = await bus.subscribe()
        stream = workflow_event_stream(store_group, bus, queue, heartbeat_interval=0.01)
        await anext(stream)
        assert await anext(stream) == {"comment": "heartbeat"}
        await stream.aclose()

    async def test_dropped_subscriber_ends_stream(self, store_group):
        from officeflow.gateway.services.event_bus import EventBus

        small_bus = EventBus(queue_maxsize=1)
        queue = await small_bus.subscribe()
        stream = workflow_event_stream(store_group, small_bus, queue, heartbeat_interval=5)
        await anext(stream)

        await small_bus.publish(NotificationKind.ACTIVITY, {"n": 1})
        await small_bus.publish(NotificationKind.ACTIVITY, {"n": 2})
        assert small_bus.subscriber_count == 0

        remaining = [message async for message in stream]
        assert remaining == []


class TestEventBus:
    """EventBus 扇出"""

    async def test_fanout_to_all_subscribers(self, bus):
        a = await bus.subscribe()
        b = await bus.subscribe()
        delivered = await bus.publish("request", {"request_id": "r1"})

        assert delivered == 2
        for queue in (a, b):
            notification = queue.get_nowait()
            assert notification.kind == NotificationKind.REQUEST
            assert notification.data == {"request_id": "r1"}

    async def test_unsubscribe_is_idempotent(self, bus):
        queue = await bus.subscribe()
        await bus.unsubscribe(queue)
        await bus.unsubscribe(queue)
        assert bus.subscriber_count == 0
        assert await bus.publish(NotificationKind.TASK, {}) == 0

    async def test_close_ends_all_subscriptions(self, bus):
        queue = await bus.subscribe()
        await bus.close()
        assert await asyncio.wait_for(queue.get(), timeout=1) is None
