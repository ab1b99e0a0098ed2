"""Request Domain Model

一个入站工作单元。state 至多一次到达 completed；
到达后不再接受任何 Request/Task 变更（幂等边界）。
Request 从不删除，批量重置只会将其终态化。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import RequestSource, RequestState


class Request(BaseModel):
    """Request 数据模型"""

    request_id: str = Field(description="唯一标识，ULID 格式")
    content: str = Field(default="", description="请求文本（可能为占位符）")
    sender: str = Field(default="Boss", description="发送者显示名")
    state: RequestState = Field(default=RequestState.RECEIVED, description="流水线状态")
    assigned_agent: str | None = Field(default=None, description="当前负责的 agent")
    external_message_id: str | None = Field(
        default=None,
        description="外部消息 ID（唯一关联键）",
    )
    chain_id: str | None = Field(default=None, description="链式交接标识")
    source: RequestSource = Field(default=RequestSource.API, description="来源渠道")
    created_at: datetime = Field(description="创建时间，adopt 时保持不变")
    work_started_at: datetime | None = Field(default=None, description="开始执行时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")
    result: str | None = Field(default=None, description="执行结果摘要")

    @property
    def is_terminal(self) -> bool:
        return self.state == RequestState.COMPLETED
