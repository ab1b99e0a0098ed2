"""Domain Models 单元测试

测试内容：
1. Request / Task 终态属性
2. 枚举取值
3. 结果模型 camelCase 序列化
"""

from datetime import UTC, datetime

from officeflow.core.models import (
    ClearResult,
    CompletionResult,
    Event,
    FlowResult,
    InboundSignal,
    NotificationKind,
    RequestSource,
    RequestState,
    TaskStatus,
)


class TestEntities:
    """实体模型"""

    def test_request_terminal(self, make_request):
        assert not make_request().is_terminal
        assert make_request(state=RequestState.COMPLETED).is_terminal

    def test_task_terminal(self, make_task):
        assert not make_task("req").is_terminal
        assert make_task("req", status=TaskStatus.FAILED).is_terminal

    def test_request_json_is_snake_case(self, make_request):
        data = make_request(external_message_id="42").model_dump(mode="json")
        assert data["external_message_id"] == "42"
        assert data["state"] == "received"
        assert data["source"] == "api"

    def test_event_defaults(self):
        event = Event(
            event_id="01JEVENT0000000000000000001",
            state="received",
            agent="main",
            message="hello",
            ts=datetime.now(UTC),
        )
        assert event.request_id is None
        assert event.agent_color == "#888"

    def test_inbound_signal_defaults(self):
        signal = InboundSignal(content="hi")
        assert signal.sender == "Boss"
        assert signal.source == RequestSource.API
        assert signal.explicit_id is None


class TestEnums:
    """枚举值"""

    def test_request_states(self):
        assert [s.value for s in RequestState] == [
            "received",
            "analyzing",
            "reviewing",
            "task_created",
            "assigned",
            "in_progress",
            "completed",
        ]

    def test_notification_kinds(self):
        assert {k.value for k in NotificationKind} == {"activity", "request", "task", "message"}


class TestResults:
    """结果模型"""

    def test_flow_result_camel_case(self):
        result = FlowResult(
            request_id="r1",
            task_id="t1",
            chain_id="chain_1",
            agent="py",
            delegated=True,
            chain_continuation=True,
            previous_agent="writer",
        )
        data = result.to_response()
        assert data["requestId"] == "r1"
        assert data["taskId"] == "t1"
        assert data["chainContinuation"] is True
        assert data["previousAgent"] == "writer"
        assert "alreadyCompleted" not in data

    def test_completion_mutated(self):
        assert CompletionResult(task_id="t1").mutated
        assert not CompletionResult(already_completed=True).mutated
        assert not CompletionResult(noop=True).mutated
        assert not CompletionResult(skipped_delegated=True).mutated
        assert not CompletionResult(success=False, error_code="TASK_NOT_FOUND").mutated

    def test_clear_result(self):
        data = ClearResult(cleared=2, cleared_tasks=1).to_response()
        assert data == {"success": True, "cleared": 2, "clearedTasks": 1}
