"""officeflow Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    CHAIN_RETURN_EVENT_STATE,
    DELIVERING_EVENT_STATE,
    PENDING_STATES,
    STATUS_TO_STATE,
    SYSTEM_EVENT_STATE,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    NotificationKind,
    RequestSource,
    RequestState,
    TaskStatus,
    is_behind,
    validate_transition,
)
from .event import Event
from .message import InboundSignal
from .request import Request
from .results import ClearResult, CompletionResult, FlowResult, RepairResult
from .task import Task

__all__ = [
    # 枚举
    "RequestState",
    "TaskStatus",
    "RequestSource",
    "NotificationKind",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATUSES",
    "STATUS_TO_STATE",
    "PENDING_STATES",
    "validate_transition",
    "is_behind",
    # 事件状态
    "SYSTEM_EVENT_STATE",
    "CHAIN_RETURN_EVENT_STATE",
    "DELIVERING_EVENT_STATE",
    # 实体
    "Request",
    "Task",
    "Event",
    "InboundSignal",
    # 结果
    "FlowResult",
    "CompletionResult",
    "ClearResult",
    "RepairResult",
]
