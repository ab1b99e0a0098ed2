"""EventBus -- 进程内发布/订阅

每个订阅者持有一个 asyncio.Queue。由 lifespan 显式构造并注入生产者与消费者。
订阅者队列溢出即被移除：其队列被清空并写入结束标记 None，
对应的流随之结束，客户端重连后从新快照重新同步。
"""

import asyncio
from typing import Any

import structlog
from officeflow.core.config import SSE_QUEUE_MAXSIZE
from officeflow.core.models import NotificationKind
from pydantic import BaseModel, Field

log = structlog.get_logger()


class Notification(BaseModel):
    """总线通知：kind 同时作为 SSE 命名事件"""

    kind: NotificationKind = Field(description="通知类型")
    data: dict[str, Any] = Field(default_factory=dict, description="JSON 负载")


class EventBus:
    """事件总线 -- 至多一次、尽力而为的扇出"""

    def __init__(self, queue_maxsize: int = SSE_QUEUE_MAXSIZE) -> None:
        self._subscribers: set[asyncio.Queue] = set()
        self._queue_maxsize = queue_maxsize

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def is_subscribed(self, queue: asyncio.Queue) -> bool:
        return queue in self._subscribers

    async def subscribe(self) -> asyncio.Queue:
        """订阅全部通知

        Returns:
            asyncio.Queue 实例，元素为 Notification；None 表示订阅已被移除
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers.add(queue)
        log.debug("bus_subscribed", subscribers=len(self._subscribers))
        return queue

    async def unsubscribe(self, queue: asyncio.Queue) -> None:
        """取消订阅（重复调用无副作用）"""
        self._subscribers.discard(queue)

    async def publish(self, kind: NotificationKind | str, data: dict[str, Any]) -> int:
        """向所有订阅者广播一条通知

        Returns:
            成功投递的订阅者数
        """
        notification = Notification(kind=NotificationKind(kind), data=data)
        delivered = 0
        dead_queues = []
        for queue in self._subscribers:
            try:
                queue.put_nowait(notification)
                delivered += 1
            except asyncio.QueueFull:
                dead_queues.append(queue)

        # 清理已满的队列
        for queue in dead_queues:
            self._drop(queue)
        if dead_queues:
            log.warning(
                "bus_subscribers_dropped",
                dropped=len(dead_queues),
                remaining=len(self._subscribers),
            )
        return delivered

    async def close(self) -> None:
        """结束所有订阅（服务关闭时调用）"""
        for queue in list(self._subscribers):
            self._drop(queue)

    def _drop(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)
        while not queue.empty():
            queue.get_nowait()
        queue.put_nowait(None)
