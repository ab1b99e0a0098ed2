"""AgentLinkConfig -- 运行时网关连接配置

优先级：环境变量 > 办公室配置文件 gateway 段 > 默认值。
"""

import os
from typing import Any

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


class AgentLinkConfig(BaseModel):
    """网关连接配置

    环境变量:
        OFFICEFLOW_GATEWAY_URL: 网关 WebSocket 地址（默认 ws://127.0.0.1:18789）
        OFFICEFLOW_GATEWAY_TOKEN: 网关访问 token
        OFFICEFLOW_GATEWAY_ENABLED: 是否启动网关监听（true/false）
        OFFICEFLOW_GATEWAY_MAX_BACKOFF_S: 重连退避上限（秒）
    """

    url: str = Field(
        default="ws://127.0.0.1:18789",
        description="运行时网关 WebSocket 地址",
    )
    token: SecretStr = Field(
        default=SecretStr(""),
        description="网关访问 token（Bearer 头与 connect 参数共用）",
    )
    enabled: bool = Field(default=False, description="是否启动网关监听")
    origin: str = Field(
        default="http://localhost:4200",
        description="握手时携带的 Origin 头",
    )
    client_id: str = Field(default="openclaw-control-ui", description="connect 请求中的客户端 ID")
    protocol_version: int = Field(default=3, ge=1, description="协议版本")
    initial_backoff_s: float = Field(default=1.0, gt=0, description="首次重连等待（秒）")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="退避倍数")
    max_backoff_s: float = Field(default=30.0, gt=0, description="退避上限（秒）")
    handshake_timeout_s: float = Field(default=10.0, gt=0, description="等待 challenge / res 的超时（秒）")


_TRUTHY = {"1", "true", "yes", "on"}


def load_agentlink_config(gateway_section: dict[str, Any] | None = None) -> AgentLinkConfig:
    """加载网关连接配置

    Args:
        gateway_section: 办公室配置文件中的 gateway 段（url / token / enabled）

    Returns:
        AgentLinkConfig 实例
    """
    section = gateway_section or {}
    kwargs: dict = {}

    if val := section.get("url"):
        kwargs["url"] = str(val)
    if val := section.get("token"):
        kwargs["token"] = SecretStr(str(val))
    if "enabled" in section:
        kwargs["enabled"] = bool(section["enabled"])

    if val := os.environ.get("OFFICEFLOW_GATEWAY_URL"):
        kwargs["url"] = val
    if val := os.environ.get("OFFICEFLOW_GATEWAY_TOKEN"):
        kwargs["token"] = SecretStr(val)
    if val := os.environ.get("OFFICEFLOW_GATEWAY_ENABLED"):
        kwargs["enabled"] = val.strip().lower() in _TRUTHY

    if val := os.environ.get("OFFICEFLOW_GATEWAY_MAX_BACKOFF_S"):
        try:
            kwargs["max_backoff_s"] = float(val)
        except ValueError:
            log.warning(
                "invalid_backoff_config",
                env_var="OFFICEFLOW_GATEWAY_MAX_BACKOFF_S",
                value=val,
                fallback=30.0,
            )

    return AgentLinkConfig(**kwargs)
