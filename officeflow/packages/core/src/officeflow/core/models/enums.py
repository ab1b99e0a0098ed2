"""枚举定义 -- Request 流水线状态、Task 状态机与通知类型

包含 RequestState、TaskStatus、RequestSource、NotificationKind 枚举，
以及 Task 合法流转映射 VALID_TRANSITIONS、终态集合 TERMINAL_STATUSES，
和 Task -> Request 的规范同步映射 STATUS_TO_STATE。
"""

from enum import StrEnum


class RequestState(StrEnum):
    """Request 流水线状态

    reviewing 仅在链式续接（chain continuation）时进入，随后回到 analyzing。
    """

    RECEIVED = "received"
    ANALYZING = "analyzing"
    REVIEWING = "reviewing"
    TASK_CREATED = "task_created"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskStatus(StrEnum):
    """Task 状态机"""

    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"

    # 终态
    COMPLETED = "completed"
    FAILED = "failed"


# 合法状态流转；pending 可直接完成（显式完成动作可跳过 UI 节奏步骤）
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {
        TaskStatus.ASSIGNED,
        TaskStatus.IN_PROGRESS,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
    },
    TaskStatus.ASSIGNED: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
    },
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    # 终态不可再流转
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}

TERMINAL_STATUSES: set[TaskStatus] = {
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
}

# Task.status -> Request.state 规范映射，每次 Task 状态变更后应用
STATUS_TO_STATE: dict[TaskStatus, RequestState] = {
    TaskStatus.PENDING: RequestState.RECEIVED,
    TaskStatus.ASSIGNED: RequestState.ASSIGNED,
    TaskStatus.IN_PROGRESS: RequestState.IN_PROGRESS,
    TaskStatus.COMPLETED: RequestState.COMPLETED,
    TaskStatus.FAILED: RequestState.COMPLETED,
}

# FIFO 兜底关联可认领的 Request 状态
PENDING_STATES: tuple[RequestState, ...] = (
    RequestState.RECEIVED,
    RequestState.ANALYZING,
)

# 流水线推进顺序（节奏步骤不得让 Request.state 倒退）
# reviewing 排在 analyzing 之前：链式续接先复核再重新分析
STATE_ORDER: tuple[RequestState, ...] = (
    RequestState.RECEIVED,
    RequestState.REVIEWING,
    RequestState.ANALYZING,
    RequestState.TASK_CREATED,
    RequestState.ASSIGNED,
    RequestState.IN_PROGRESS,
    RequestState.COMPLETED,
)


class RequestSource(StrEnum):
    """Request 来源渠道"""

    API = "api"
    TELEGRAM_WEBHOOK = "telegram_webhook"
    RUNTIME_LIFECYCLE = "runtime_lifecycle"
    RUNTIME_USER = "runtime_user"


class NotificationKind(StrEnum):
    """事件总线通知类型，同时作为 SSE 命名事件"""

    ACTIVITY = "activity"
    REQUEST = "request"
    TASK = "task"
    MESSAGE = "message"


# Event.state 中除 RequestState 外的取值
SYSTEM_EVENT_STATE = "system"
CHAIN_RETURN_EVENT_STATE = "chain_return"
DELIVERING_EVENT_STATE = "delivering"


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证 Task 状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed


def is_behind(current: RequestState, target: RequestState) -> bool:
    """判断 current 是否仍在 target 之前（节奏步骤只允许向前推进）"""
    return STATE_ORDER.index(current) < STATE_ORDER.index(target)
