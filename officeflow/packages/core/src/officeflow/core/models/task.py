"""Task Domain Model

Task 是绑定在 Request 上的一次委派/执行。
同一 Request 任意时刻至多一个非终态 Task；链式交接会产生多个 Task，
但只有最新的一个是 "active"。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import TERMINAL_STATUSES, TaskStatus


class Task(BaseModel):
    """Task 数据模型"""

    task_id: str = Field(description="唯一标识，ULID 格式")
    request_id: str = Field(description="所属 Request ID")
    title: str = Field(default="", description="任务标题（内容摘要）")
    detail: str = Field(default="", description="任务详情")
    assigned_agent: str = Field(description="负责执行的 agent")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="当前状态")
    created_at: datetime = Field(description="创建时间")
    started_at: datetime | None = Field(default=None, description="开始执行时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")
    result: str | None = Field(default=None, description="执行结果")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
