"""InboundSignal Domain Model

三个入站渠道（动作 API、webhook、外部运行时适配器）的统一关联输入。
"""

from pydantic import BaseModel, Field

from .enums import RequestSource


class InboundSignal(BaseModel):
    """InboundSignal -- 关联解析器的输入

    explicit_id / external_message_id 均为空时走 active -> FIFO -> 新建 兜底链。
    """

    explicit_id: str | None = Field(default=None, description="显式 Request ID")
    external_message_id: str | None = Field(
        default=None,
        description="外部消息 ID（确定性关联键）",
    )
    content: str = Field(default="", description="文本内容")
    chain_id: str | None = Field(default=None, description="链式交接标识")
    sender: str = Field(default="Boss", description="发送者显示名")
    assigned_agent: str | None = Field(default=None, description="adopt 时写入的负责 agent")
    source: RequestSource = Field(default=RequestSource.API, description="来源渠道")
