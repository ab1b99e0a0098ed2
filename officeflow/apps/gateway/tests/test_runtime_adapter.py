"""RuntimeAdapter 测试 -- 运行时事件序列到工作流操作"""

import pytest
from officeflow.core.models import RequestSource, RequestState, TaskStatus
from officeflow.core.text import PLACEHOLDER
from officeflow.gateway.services.runtime_adapter import RuntimeAdapter, is_noise, tool_label


@pytest.fixture
def adapter(coordinator) -> RuntimeAdapter:
    return RuntimeAdapter(coordinator, adapter_id="test-adapter")


def agent_frame(stream: str, run_id: str = "run-1", **data) -> dict:
    return {"stream": stream, "runId": run_id, "data": data}


class TestToolLabel:
    """工具调用文案"""

    def test_known_tools(self):
        assert tool_label("read", {"path": "/srv/app/config.yaml"}) == "📄 Reading: config.yaml"
        assert tool_label("exec", {"command": "ls -la"}) == "💻 Exec: ls -la"
        assert tool_label("web_search", {}) == "🔍 Searching: web"
        assert tool_label("sessions_spawn", {}) == "🚀 Spawning sub-agent..."

    def test_unknown_tool(self):
        assert tool_label("image_gen", None) == "🛠️ image_gen"
        assert tool_label(None, None) == "🛠️ Tool"

    def test_noise(self):
        assert is_noise("Read HEARTBEAT.md if it exists")
        assert is_noise("/status")
        assert not is_noise("帮我查天气")


class TestRuntimeRun:
    """一次完整运行"""

    async def test_lifecycle_start_then_user_adopts_placeholder(
        self, adapter, coordinator, store_group
    ):
        await adapter.handle_event("agent", agent_frame("lifecycle", phase="start"))
        request_id = adapter.active_request_id
        request = await store_group.request_store.get_request(request_id)
        assert request.content == PLACEHOLDER
        assert request.source == RequestSource.RUNTIME_LIFECYCLE
        # 占位 Request 静默创建，不写事件
        assert await store_group.event_store.get_events_for_request(request_id) == []

        await adapter.handle_event(
            "agent", agent_frame("user", text="[Telegram Boss id:9] 查一下明天的天气")
        )
        request = await store_group.request_store.get_request(request_id)
        assert request.content == "查一下明天的天气"
        assert adapter.last_user_message.startswith("[Telegram")

    async def test_tool_then_end_completes(self, adapter, coordinator, store_group):
        await adapter.handle_event("agent", agent_frame("user", text="统计上周销售额"))
        request_id = adapter.active_request_id
        assert request_id is not None

        await adapter.handle_event(
            "agent", agent_frame("tool", phase="start", name="exec", args={"command": "wc -l"})
        )
        request = await store_group.request_store.get_request(request_id)
        assert request.state == RequestState.IN_PROGRESS
        assert request.assigned_agent == "main"

        await adapter.handle_event("agent", agent_frame("lifecycle", phase="end"))
        await coordinator.scheduler.drain()

        request = await store_group.request_store.get_request(request_id)
        assert request.state == RequestState.COMPLETED
        events = await store_group.event_store.get_events_for_request(request_id)
        assert [e.message for e in events] == [
            '📥 Request from Boss: "统计上周销售额"',
            "⚡ Main working...",
            "💻 Exec: wc -l",
            '✅ Done: "统计上周销售额"',
        ]
        assert adapter.active_request_id is None
        assert adapter.run_id is None

    async def test_new_run_adopts_webhook_request(self, adapter, coordinator, store_group):
        inbound, _ = await coordinator.receive_message("整理会议纪要", sender="Alice")

        await adapter.handle_event("agent", agent_frame("lifecycle", phase="start", run_id="r-9"))
        assert adapter.run_id == "r-9"
        assert adapter.active_request_id == inbound.request_id

        await coordinator.scheduler.drain()

        # 8s 内没有工具调用：兜底推进到 in_progress，两路 analyzing 只生效一次
        events = await store_group.event_store.get_events_for_request(inbound.request_id)
        assert [e.state for e in events] == [
            "received",
            "analyzing",
            "task_created",
            "assigned",
            "in_progress",
        ]
        assert events[-1].message == "⚡ Main working..."

        await adapter.handle_event("agent", agent_frame("assistant", run_id="r-9", delta="好的"))
        assert len(await store_group.event_store.get_events_for_request(inbound.request_id)) == 5

        await adapter.handle_event("chat", {"state": "delivered", "runId": "r-9"})
        request = await store_group.request_store.get_request(inbound.request_id)
        assert request.state == RequestState.COMPLETED

    async def test_first_assistant_chunk_marks_responding(self, adapter, store_group):
        await adapter.handle_event("agent", agent_frame("user", text="给客户写一封感谢信"))
        request_id = adapter.active_request_id

        await adapter.handle_event("agent", agent_frame("assistant", delta="尊敬的"))
        await adapter.handle_event("agent", agent_frame("assistant", delta="客户"))

        request = await store_group.request_store.get_request(request_id)
        assert request.state == RequestState.IN_PROGRESS
        events = await store_group.event_store.get_events_for_request(request_id)
        assert [e.message for e in events] == [
            '📥 Request from Boss: "给客户写一封感谢信"',
            '✍️ Responding: "给客户写一封感谢信"',
        ]
        assert adapter.streaming_started is True

    async def test_spawn_delegates_and_end_is_guarded(self, adapter, coordinator, store_group):
        flow = await coordinator.start_flow("生成数据报表")
        await coordinator.scheduler.drain()
        adapter.active_request_id = flow.request_id
        adapter.run_id = "run-1"

        await adapter.handle_event(
            "agent",
            agent_frame(
                "tool",
                phase="start",
                name="sessions_spawn",
                args={"agentId": "py", "task": "用 pandas 汇总数据"},
            ),
        )
        await coordinator.scheduler.drain()

        task = await store_group.task_store.get_task(flow.task_id)
        assert task.assigned_agent == "py"
        request = await store_group.request_store.get_request(flow.request_id)
        assert request.assigned_agent == "py"

        # 编排者运行结束不得关闭 worker 的 Task
        await adapter.handle_event("agent", agent_frame("lifecycle", phase="end"))
        request = await store_group.request_store.get_request(flow.request_id)
        assert request.state != RequestState.COMPLETED
        task = await store_group.task_store.get_task(flow.task_id)
        assert task.status == TaskStatus.IN_PROGRESS

        events = await store_group.event_store.get_events_for_request(flow.request_id)
        messages = [e.message for e in events]
        assert '📋 Task: "用 pandas 汇总数据" → Py' in messages
        assert "📧 Delegated to 🐍 Py" in messages

    async def test_disconnect_cancels_pacing_and_tracking(
        self, adapter, coordinator, store_group
    ):
        inbound, _ = await coordinator.receive_message("核对发票", sender="Alice")
        await adapter.handle_event("agent", agent_frame("lifecycle", phase="start", run_id="r-2"))
        assert adapter.active_request_id == inbound.request_id
        assert coordinator.scheduler.pending(adapter.group) == 1

        adapter.handle_disconnect()
        assert adapter.run_id is None
        assert adapter.active_request_id is None
        await coordinator.scheduler.drain()

        # 断线后运行兜底序列不再推进，只剩 webhook 自身的 analyzing
        assert [e.state for e in await store_group.event_store.get_events_for_request(
            inbound.request_id
        )] == ["received", "analyzing"]
        request = await store_group.request_store.get_request(inbound.request_id)
        assert request.state == RequestState.ANALYZING

    async def test_system_user_messages_ignored(self, adapter, store_group):
        await adapter.handle_event("agent", agent_frame("user", text="HEARTBEAT_OK"))
        await adapter.handle_event("agent", agent_frame("user", text="System: cron fired"))
        await adapter.handle_event("agent", agent_frame("user", text="x"))
        assert await store_group.request_store.list_requests() == []

    async def test_invalid_payload_ignored(self, adapter, store_group):
        await adapter.handle_event("agent", {"stream": ["not", "a", "string"]})
        await adapter.handle_event("presence", {"online": True})
        assert await store_group.request_store.list_requests() == []

    async def test_snapshot(self, adapter):
        assert adapter.snapshot() == {
            "adapterId": "test-adapter",
            "runId": None,
            "activeRequestId": None,
            "streaming": False,
        }
