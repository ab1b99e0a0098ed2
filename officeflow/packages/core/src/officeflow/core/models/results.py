"""操作结果模型

核心操作返回结构化结果而不是抛出终态失败；
边界层（HTTP 路由、适配器帧处理）负责映射为传输响应。
对外序列化使用 camelCase（alreadyCompleted、clearedTasks 等）。
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _ResultModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_response(self) -> dict:
        """序列化为 API 响应体（camelCase，省略 None）"""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class FlowResult(_ResultModel):
    """start_flow 结果"""

    success: bool = True
    request_id: str
    task_id: str | None = None
    chain_id: str
    adopted: bool = Field(default=False, description="是否复用已有 Request")
    already_completed: bool | None = Field(
        default=None,
        description="关联到的 Request 已完成，未创建 Task",
    )
    agent: str
    delegated: bool = False
    chain_continuation: bool = False
    previous_agent: str | None = None
    message: str = ""


class CompletionResult(_ResultModel):
    """完成类操作结果（agent_complete / delegate_complete / manual_complete / 被动完成）

    already_completed 与 noop 表示本次调用未产生任何持久化变更。
    """

    success: bool = True
    request_id: str | None = None
    task_id: str | None = None
    already_completed: bool | None = None
    noop: bool | None = None
    skipped_delegated: bool | None = Field(
        default=None,
        description="被动完成命中委派保护",
    )
    task_time_ms: int | None = None
    message: str | None = None
    error_code: str | None = Field(
        default=None,
        description="失败时的错误码：TASK_NOT_FOUND / REQUEST_NOT_FOUND",
    )

    @property
    def mutated(self) -> bool:
        if not self.success:
            return False
        return not (self.already_completed or self.noop or self.skipped_delegated)


class ClearResult(_ResultModel):
    """clear_pipeline 结果"""

    success: bool = True
    cleared: int = Field(description="被终态化的 Request 数")
    cleared_tasks: int = Field(description="被终态化的 Task 数")


class RepairResult(_ResultModel):
    """repair_events 结果"""

    success: bool = True
    fixed: int = 0
