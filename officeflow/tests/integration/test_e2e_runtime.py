"""端到端：网关帧 -> GatewayClient -> RuntimeAdapter -> 持久化"""

import json

from officeflow.agentlink import AgentLinkConfig, GatewayClient
from officeflow.gateway.services.runtime_adapter import RuntimeAdapter


def _agent(stream: str, **data) -> str:
    return json.dumps(
        {
            "type": "event",
            "event": "agent",
            "payload": {"stream": stream, "runId": "run-42", "data": data},
        }
    )


class TestRuntimeFrames:
    """一次编排者运行的完整帧序列"""

    async def test_run_lifecycle(self, integration_app):
        coordinator = integration_app.state.coordinator
        store_group = integration_app.state.store_group
        adapter = RuntimeAdapter(coordinator)
        client = GatewayClient(AgentLinkConfig(), adapter.handle_event)

        frames = [
            _agent("lifecycle", phase="start"),
            _agent("user", text="[Telegram Boss id:1] 总结今天的会议 [message_id: 77]"),
            json.dumps({"type": "event", "event": "tick", "payload": {}}),
            _agent("tool", phase="start", name="read", args={"path": "/notes/meeting.md"}),
            _agent("assistant", delta="今天的会议"),
            _agent("lifecycle", phase="end"),
            "{malformed",
        ]
        for raw in frames:
            await client.handle_raw(raw)
        await coordinator.scheduler.drain()

        requests = await store_group.request_store.list_requests()
        assert len(requests) == 1
        request = requests[0]
        assert request.content == "总结今天的会议"
        assert request.state == "completed"

        events = await store_group.event_store.get_events_for_request(request.request_id)
        messages = [e.message for e in events]
        assert "⚡ Main working..." in messages
        assert "📄 Reading: meeting.md" in messages
        assert messages[-1] == '✅ Done: "总结今天的会议"'
        assert not any("Processing..." in m for m in messages)
        assert client.snapshot()["frames_dropped"] == 1
