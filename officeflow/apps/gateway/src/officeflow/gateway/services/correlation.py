"""CorrelationResolver -- 将入站信号映射到 Request

优先级：
1. 显式 request_id
2. external_message_id 精确匹配（确定性关联）
3. 适配器实例跟踪的 active Request
4. FIFO 兜底：最早的 received/analyzing 且尚未拥有 Task 的 Request
5. 新建 Request（received）并写入 received 事件

adopt 时保持原 created_at 与 request_id 不变；
真实内容替换占位符时同步修复该 Request 的历史事件。
"""

from datetime import UTC, datetime
from typing import Any

import aiosqlite
import structlog
from officeflow.core.agents import AgentRegistry
from officeflow.core.config import PREVIEW_LENGTH
from officeflow.core.models import Event, InboundSignal, Request, RequestState
from officeflow.core.repair import fix_placeholder_events
from officeflow.core.store import StoreGroup
from officeflow.core.store.transaction import create_request_with_event
from officeflow.core.text import clean_content, is_placeholder, preview
from pydantic import BaseModel, Field
from ulid import ULID

from .activity import build_event

log = structlog.get_logger()


class Resolution(BaseModel):
    """关联结果"""

    request: Request
    via: str = Field(description="命中的规则：explicit/external/active/fifo/created")
    adopted: bool = Field(default=False, description="是否复用已有 Request")
    created: bool = Field(default=False, description="是否新建 Request")
    events: list[Event] = Field(default_factory=list, description="本次写入的事件")
    repaired_event_ids: list[str] = Field(default_factory=list, description="被修复的事件")


class CorrelationResolver:
    """关联解析器

    不持有任何跨调用状态；active Request 由调用方（适配器实例）显式传入。
    调用方负责串行化（WorkflowCoordinator 的锁）与总线发布。
    """

    def __init__(
        self,
        store_group: StoreGroup,
        registry: AgentRegistry,
        orchestrator: str,
    ) -> None:
        self._stores = store_group
        self._registry = registry
        self._orchestrator = orchestrator

    async def resolve(
        self,
        signal: InboundSignal,
        active_request_id: str | None = None,
        *,
        allow_create: bool = True,
    ) -> Resolution | None:
        """按优先级解析信号对应的 Request

        Args:
            signal: 入站信号
            active_request_id: 适配器实例当前跟踪的 Request
            allow_create: False 时所有规则未命中返回 None

        Returns:
            Resolution；allow_create=False 且未命中时为 None
        """
        request_store = self._stores.request_store

        if signal.explicit_id:
            request = await request_store.get_request(signal.explicit_id)
            if request is not None:
                return await self._adopt(request, signal, via="explicit")

        if signal.external_message_id:
            request = await request_store.find_by_external_message_id(signal.external_message_id)
            if request is not None:
                return await self._adopt(request, signal, via="external")

        if active_request_id:
            request = await request_store.get_request(active_request_id)
            if request is not None and not request.is_terminal:
                return await self._adopt(request, signal, via="active")

        request = await request_store.find_oldest_pending()
        if request is not None:
            return await self._adopt(request, signal, via="fifo")

        if not allow_create:
            return None
        return await self.create(signal)

    async def create(
        self,
        signal: InboundSignal,
        *,
        event_message: str | None = None,
        emit_event: bool = True,
    ) -> Resolution:
        """新建 Request（received）并写入 received 事件

        external_message_id 并发冲突时回查并 adopt 已存在的 Request。
        """
        now = datetime.now(UTC)
        request = Request(
            request_id=str(ULID()),
            content=signal.content,
            sender=signal.sender,
            state=RequestState.RECEIVED,
            assigned_agent=signal.assigned_agent,
            external_message_id=signal.external_message_id,
            chain_id=signal.chain_id,
            source=signal.source,
            created_at=now,
        )
        event = None
        if emit_event:
            if event_message is None:
                text = preview(clean_content(signal.content), PREVIEW_LENGTH)
                event_message = f'📥 Request from {signal.sender}: "{text}"'
            event = build_event(
                self._registry,
                request_id=request.request_id,
                state=RequestState.RECEIVED,
                agent=self._orchestrator,
                message=event_message,
            )

        try:
            await create_request_with_event(
                self._stores.conn,
                self._stores.request_store,
                self._stores.event_store,
                request,
                event,
            )
        except aiosqlite.IntegrityError:
            if not signal.external_message_id:
                raise
            # 并发重复：回查并复用已存在的 Request
            existing = await self._stores.request_store.find_by_external_message_id(
                signal.external_message_id
            )
            if existing is None:
                raise
            return await self._adopt(existing, signal, via="external")

        log.info(
            "request_created",
            request_id=request.request_id,
            source=str(request.source),
            external_message_id=request.external_message_id,
        )
        return Resolution(
            request=request,
            via="created",
            created=True,
            events=[event] if event is not None else [],
        )

    async def _adopt(self, request: Request, signal: InboundSignal, *, via: str) -> Resolution:
        """复用已有 Request：更新负责 agent / 内容，保持 created_at 与 ID"""
        resolution = Resolution(request=request, via=via, adopted=True)
        if request.is_terminal:
            return resolution

        changes: dict[str, Any] = {}
        if signal.assigned_agent and signal.assigned_agent != request.assigned_agent:
            changes["assigned_agent"] = signal.assigned_agent
        real_content = signal.content if not is_placeholder(signal.content) else ""
        if real_content and real_content != request.content:
            changes["content"] = real_content
        if signal.chain_id and signal.chain_id != request.chain_id:
            changes["chain_id"] = signal.chain_id
        if signal.external_message_id and not request.external_message_id:
            changes["external_message_id"] = signal.external_message_id

        if not changes:
            return resolution

        conn = self._stores.conn
        try:
            if not await self._stores.request_store.update_request(request.request_id, **changes):
                await conn.rollback()
                return resolution
            if real_content and is_placeholder(request.content):
                resolution.repaired_event_ids = await fix_placeholder_events(
                    self._stores.event_store, request.request_id, real_content
                )
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise

        updated = await self._stores.request_store.get_request(request.request_id)
        resolution.request = updated or request
        log.info(
            "request_adopted",
            request_id=request.request_id,
            via=via,
            repaired_events=len(resolution.repaired_event_ids),
        )
        return resolution
