"""Task 状态机与 Request 流水线顺序单元测试

测试内容：
1. Task 合法/非法流转
2. 终态不可再流转
3. Task -> Request 规范映射
4. 节奏步骤的 "只向前" 判定
"""

import pytest
from officeflow.core.models import (
    STATUS_TO_STATE,
    TERMINAL_STATUSES,
    RequestState,
    TaskStatus,
    is_behind,
    validate_transition,
)


class TestTaskTransitions:
    """Task 状态流转"""

    @pytest.mark.parametrize(
        ("from_status", "to_status"),
        [
            (TaskStatus.PENDING, TaskStatus.ASSIGNED),
            (TaskStatus.PENDING, TaskStatus.IN_PROGRESS),
            (TaskStatus.PENDING, TaskStatus.COMPLETED),
            (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS),
            (TaskStatus.ASSIGNED, TaskStatus.FAILED),
            (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED),
            (TaskStatus.IN_PROGRESS, TaskStatus.FAILED),
        ],
    )
    def test_valid_transitions(self, from_status, to_status):
        assert validate_transition(from_status, to_status)

    def test_no_backwards_transition(self):
        """in_progress 不能退回 assigned / pending"""
        assert not validate_transition(TaskStatus.IN_PROGRESS, TaskStatus.ASSIGNED)
        assert not validate_transition(TaskStatus.IN_PROGRESS, TaskStatus.PENDING)
        assert not validate_transition(TaskStatus.ASSIGNED, TaskStatus.PENDING)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES))
    def test_terminal_is_final(self, terminal):
        """终态不接受任何流转（包括重复完成）"""
        for target in TaskStatus:
            assert not validate_transition(terminal, target)


class TestStatusMapping:
    """Task.status -> Request.state"""

    def test_mapping(self):
        assert STATUS_TO_STATE[TaskStatus.PENDING] == RequestState.RECEIVED
        assert STATUS_TO_STATE[TaskStatus.ASSIGNED] == RequestState.ASSIGNED
        assert STATUS_TO_STATE[TaskStatus.IN_PROGRESS] == RequestState.IN_PROGRESS
        assert STATUS_TO_STATE[TaskStatus.COMPLETED] == RequestState.COMPLETED
        assert STATUS_TO_STATE[TaskStatus.FAILED] == RequestState.COMPLETED

    def test_every_status_mapped(self):
        assert set(STATUS_TO_STATE) == set(TaskStatus)


class TestPipelineOrder:
    """节奏推进只允许向前"""

    def test_forward(self):
        assert is_behind(RequestState.RECEIVED, RequestState.ANALYZING)
        assert is_behind(RequestState.ANALYZING, RequestState.IN_PROGRESS)

    def test_not_backwards(self):
        assert not is_behind(RequestState.IN_PROGRESS, RequestState.ANALYZING)
        assert not is_behind(RequestState.IN_PROGRESS, RequestState.IN_PROGRESS)
        assert not is_behind(RequestState.COMPLETED, RequestState.ASSIGNED)

    def test_reviewing_precedes_analyzing(self):
        """链式续接先复核再重新分析"""
        assert is_behind(RequestState.RECEIVED, RequestState.REVIEWING)
        assert is_behind(RequestState.REVIEWING, RequestState.ANALYZING)
