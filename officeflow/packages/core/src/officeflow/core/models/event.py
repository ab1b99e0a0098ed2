"""Event Domain Model

事件表 append-only。唯一例外是占位符修复（placeholder repair）：
真实内容到达后改写 message 文本，但不改变 event_id 与顺序。
event_id 使用 ULID 格式，时间有序。
"""

from datetime import datetime

from pydantic import BaseModel, Field


class Event(BaseModel):
    """Event 数据模型（活动日志条目）"""

    event_id: str = Field(description="唯一标识，ULID 格式，时间有序")
    request_id: str | None = Field(default=None, description="关联 Request，系统事件为空")
    task_id: str | None = Field(default=None, description="关联 Task")
    state: str = Field(description="事件状态：RequestState 值或 system/chain_return/delivering")
    agent: str = Field(description="事件归属 agent")
    agent_name: str = Field(default="", description="agent 显示名")
    agent_color: str = Field(default="#888", description="agent 颜色")
    message: str = Field(description="面向观察者的描述文本")
    target_agent: str | None = Field(default=None, description="交接目标 agent")
    ts: datetime = Field(description="事件时间戳")
    result: str | None = Field(default=None, description="附带结果")
