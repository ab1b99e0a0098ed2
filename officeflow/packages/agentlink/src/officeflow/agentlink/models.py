"""网关帧模型 -- GatewayFrame + AgentEventPayload + ChatEventPayload

帧格式：
  {"type": "event", "event": "agent", "payload": {...}}
  {"type": "res", "id": "connect-1", "ok": true}
"""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import MalformedFrameError

# 握手请求 ID
CONNECT_REQUEST_ID = "connect-1"

# 不携带业务信号的保活帧
KEEPALIVE_EVENTS = frozenset({"tick", "health"})


class GatewayFrame(BaseModel):
    """网关原始帧"""

    model_config = ConfigDict(extra="allow")

    type: str = Field(description="帧类型：event / res / req")
    event: str | None = Field(default=None, description="事件名（type=event）")
    id: str | None = Field(default=None, description="请求 ID（type=res）")
    method: str | None = Field(default=None, description="方法名（type=res/req）")
    ok: bool | None = Field(default=None, description="响应是否成功")
    payload: dict[str, Any] | None = Field(default=None, description="事件负载")
    result: Any = Field(default=None, description="响应结果")
    error: Any = Field(default=None, description="响应错误")

    @property
    def is_challenge(self) -> bool:
        return self.type == "event" and self.event == "connect.challenge"

    @property
    def is_connect_response(self) -> bool:
        return self.id == CONNECT_REQUEST_ID or (self.type == "res" and self.method == "connect")

    @property
    def is_keepalive(self) -> bool:
        return self.type == "event" and self.event in KEEPALIVE_EVENTS

    @property
    def handshake_ok(self) -> bool:
        """connect 响应是否表示成功"""
        if self.ok is False and not self.result:
            return False
        return bool(self.ok or self.result or not self.error)


class AgentEventPayload(BaseModel):
    """agent 事件负载

    stream 取值：lifecycle / tool / user / assistant / job
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    stream: str = Field(default="", description="事件流名")
    run_id: str | None = Field(default=None, alias="runId", description="运行 ID")
    session_key: str | None = Field(default=None, alias="sessionKey", description="会话 key")
    data: dict[str, Any] = Field(default_factory=dict, description="流数据")


class ChatEventPayload(BaseModel):
    """chat 事件负载"""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    state: str = Field(default="", description="聊天状态：delivered / idle / ...")
    run_id: str | None = Field(default=None, alias="runId", description="运行 ID")


def parse_frame(raw: str | bytes) -> GatewayFrame:
    """解析一条网关帧

    Raises:
        MalformedFrameError: JSON 无效或结构不符
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedFrameError(raw, f"invalid json: {e}") from e
    if not isinstance(data, dict):
        raise MalformedFrameError(raw, "frame is not an object")
    try:
        return GatewayFrame.model_validate(data)
    except ValidationError as e:
        raise MalformedFrameError(raw, f"invalid frame: {e.error_count()} error(s)") from e


def build_connect_request(config_token: str, client_id: str, protocol_version: int) -> dict:
    """构造 connect 握手请求"""
    return {
        "type": "req",
        "id": CONNECT_REQUEST_ID,
        "method": "connect",
        "params": {
            "minProtocol": protocol_version,
            "maxProtocol": protocol_version,
            "client": {
                "id": client_id,
                "version": "0.1.0",
                "platform": "python",
                "mode": "ui",
            },
            "role": "operator",
            "scopes": ["operator.read"],
            "caps": [],
            "commands": [],
            "permissions": {},
            "auth": {"token": config_token},
            "locale": "en-US",
            "userAgent": "officeflow/0.1.0",
        },
    }
