"""officeflow AgentLink -- 运行时网关传输层

packages/agentlink 的公开接口导出。
"""

from .client import DisconnectHandler, EventHandler, GatewayClient, LinkStatus
from .config import AgentLinkConfig, load_agentlink_config
from .exceptions import (
    AgentLinkError,
    HandshakeRejectedError,
    MalformedFrameError,
    UpstreamUnavailableError,
)
from .models import (
    CONNECT_REQUEST_ID,
    AgentEventPayload,
    ChatEventPayload,
    GatewayFrame,
    build_connect_request,
    parse_frame,
)

__all__ = [
    "GatewayClient",
    "LinkStatus",
    "EventHandler",
    "DisconnectHandler",
    "AgentLinkConfig",
    "load_agentlink_config",
    "AgentLinkError",
    "UpstreamUnavailableError",
    "MalformedFrameError",
    "HandshakeRejectedError",
    "GatewayFrame",
    "AgentEventPayload",
    "ChatEventPayload",
    "CONNECT_REQUEST_ID",
    "build_connect_request",
    "parse_frame",
]
