"""CorrelationResolver 测试 -- 关联优先级"""

from datetime import UTC, datetime, timedelta

from officeflow.core.models import InboundSignal, Request, RequestState
from officeflow.core.text import PLACEHOLDER
from officeflow.gateway.services.correlation import CorrelationResolver
from ulid import ULID


def _request(content: str, **overrides) -> Request:
    fields = {
        "request_id": str(ULID()),
        "content": content,
        "created_at": datetime.now(UTC),
    }
    fields.update(overrides)
    return Request(**fields)


async def _store(store_group, *requests: Request) -> None:
    for request in requests:
        await store_group.request_store.create_request(request)
    await store_group.conn.commit()


class TestResolvePriority:
    """解析优先级"""

    async def test_explicit_id_wins(self, store_group, registry):
        target = _request("显式目标")
        fifo = _request("更早的", created_at=datetime.now(UTC) - timedelta(seconds=30))
        await _store(store_group, target, fifo)
        resolver = CorrelationResolver(store_group, registry, "main")

        resolution = await resolver.resolve(InboundSignal(explicit_id=target.request_id))
        assert resolution.via == "explicit"
        assert resolution.request.request_id == target.request_id

    async def test_external_id_beats_fifo(self, store_group, registry):
        older = _request("较早", created_at=datetime.now(UTC) - timedelta(seconds=30))
        tagged = _request("带外部 ID", external_message_id="tg-5")
        await _store(store_group, older, tagged)
        resolver = CorrelationResolver(store_group, registry, "main")

        resolution = await resolver.resolve(InboundSignal(external_message_id="tg-5"))
        assert resolution.via == "external"
        assert resolution.request.request_id == tagged.request_id

    async def test_active_before_fifo(self, store_group, registry):
        older = _request("较早", created_at=datetime.now(UTC) - timedelta(seconds=30))
        active = _request("当前运行", state=RequestState.IN_PROGRESS)
        await _store(store_group, older, active)
        resolver = CorrelationResolver(store_group, registry, "main")

        resolution = await resolver.resolve(InboundSignal(), active.request_id)
        assert resolution.via == "active"

    async def test_completed_active_falls_through(self, store_group, registry):
        done = _request("已完成", state=RequestState.COMPLETED)
        await _store(store_group, done)
        resolver = CorrelationResolver(store_group, registry, "main")

        resolution = await resolver.resolve(InboundSignal(content="新的"), done.request_id)
        assert resolution.via == "created"
        assert resolution.created is True
        assert resolution.events[0].message == '📥 Request from Boss: "新的"'

    async def test_no_create_when_disallowed(self, store_group, registry):
        resolver = CorrelationResolver(store_group, registry, "main")
        assert await resolver.resolve(InboundSignal(), allow_create=False) is None


class TestAdopt:
    """adopt 语义"""

    async def test_adopt_keeps_identity_and_repairs_events(self, store_group, registry):
        created_at = datetime.now(UTC) - timedelta(minutes=1)
        pending = _request(PLACEHOLDER, created_at=created_at)
        await _store(store_group, pending)
        resolver = CorrelationResolver(store_group, registry, "main")
        # 占位事件
        from officeflow.gateway.services.activity import build_event

        event = build_event(
            registry,
            request_id=pending.request_id,
            state="received",
            agent="main",
            message=f'📥 Request from Boss: "{PLACEHOLDER}"',
        )
        await store_group.event_store.append_event(event)
        await store_group.conn.commit()

        resolution = await resolver.resolve(
            InboundSignal(content="真实的请求内容", assigned_agent="py")
        )
        assert resolution.via == "fifo"
        assert resolution.adopted is True
        assert resolution.repaired_event_ids == [event.event_id]
        assert resolution.request.request_id == pending.request_id
        assert resolution.request.created_at == created_at
        assert resolution.request.content == "真实的请求内容"
        assert resolution.request.assigned_agent == "py"

        repaired = await store_group.event_store.get_event(event.event_id)
        assert repaired.message == '📥 Request from Boss: "真实的请求内容"'

    async def test_placeholder_signal_does_not_overwrite(self, store_group, registry):
        pending = _request("原始内容")
        await _store(store_group, pending)
        resolver = CorrelationResolver(store_group, registry, "main")

        resolution = await resolver.resolve(InboundSignal(content=PLACEHOLDER))
        assert resolution.request.content == "原始内容"

    async def test_duplicate_external_id_on_create_adopts(self, store_group, registry):
        existing = _request("已存在", external_message_id="dup-1")
        await _store(store_group, existing)
        resolver = CorrelationResolver(store_group, registry, "main")

        resolution = await resolver.create(InboundSignal(external_message_id="dup-1"))
        assert resolution.adopted is True
        assert resolution.request.request_id == existing.request_id
