"""Store Protocol 接口定义

定义 RequestStore、TaskStore、EventStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from datetime import datetime
from typing import Any, Protocol

from ..models.event import Event
from ..models.request import Request
from ..models.task import Task


class RequestStore(Protocol):
    """Request 存储接口"""

    async def create_request(self, request: Request) -> None:
        """创建 Request 记录"""
        ...

    async def get_request(self, request_id: str) -> Request | None:
        """根据 request_id 查询"""
        ...

    async def find_by_external_message_id(self, external_message_id: str) -> Request | None:
        """按外部消息 ID 精确查找"""
        ...

    async def find_oldest_pending(self) -> Request | None:
        """FIFO 兜底：最早的未认领 received/analyzing Request"""
        ...

    async def find_last_completed_in_chain(self, chain_id: str) -> Request | None:
        """链内最近完成的 Request"""
        ...

    async def update_request(self, request_id: str, **changes: Any) -> bool:
        """更新非终态 Request，返回是否命中"""
        ...

    async def complete_all_active(self, completed_at: datetime, reason: str) -> list[str]:
        """批量终态化"""
        ...


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        ...

    async def get_latest_task_for_request(self, request_id: str) -> Task | None:
        """Request 的 active Task"""
        ...

    async def get_active_task_by_agent(self, agent: str) -> Task | None:
        """指定 agent 的非终态 Task"""
        ...

    async def update_task(self, task_id: str, **changes: Any) -> bool:
        """更新非终态 Task，返回是否命中"""
        ...

    async def complete_all_active(self, completed_at: datetime, reason: str) -> list[str]:
        """批量终态化"""
        ...


class EventStore(Protocol):
    """Event 存储接口

    事件表 append-only：只允许插入；update_event_message 仅供占位符修复。
    """

    async def append_event(self, event: Event) -> None:
        """追加事件（append-only）"""
        ...

    async def list_recent(self, limit: int = 50, offset: int = 0) -> list[Event]:
        """最近的事件"""
        ...

    async def get_events_for_request(self, request_id: str) -> list[Event]:
        """查询指定 Request 的所有事件"""
        ...

    async def find_events_containing(
        self,
        fragment: str,
        request_id: str | None = None,
    ) -> list[Event]:
        """查询 message 包含指定片段的事件"""
        ...

    async def update_event_message(self, event_id: str, message: str) -> None:
        """改写事件 message"""
        ...
