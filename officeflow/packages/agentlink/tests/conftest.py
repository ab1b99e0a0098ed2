"""AgentLink 包测试 fixtures"""

import pytest

_GATEWAY_ENV = (
    "OFFICEFLOW_GATEWAY_URL",
    "OFFICEFLOW_GATEWAY_TOKEN",
    "OFFICEFLOW_GATEWAY_ENABLED",
    "OFFICEFLOW_GATEWAY_MAX_BACKOFF_S",
)


@pytest.fixture
def clean_gateway_env(monkeypatch):
    """清除网关相关环境变量"""
    for name in _GATEWAY_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def agent_frame() -> dict:
    """标准 agent 事件帧"""
    return {
        "type": "event",
        "event": "agent",
        "payload": {
            "stream": "lifecycle",
            "runId": "run-0001",
            "data": {"phase": "start"},
        },
    }
