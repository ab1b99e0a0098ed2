"""活动日志事件构造 -- 用 AgentRegistry 富化 agent 显示信息"""

from datetime import UTC, datetime

from officeflow.core.agents import AgentRegistry
from officeflow.core.models import Event
from ulid import ULID


def build_event(
    registry: AgentRegistry,
    *,
    request_id: str | None,
    state: str,
    agent: str,
    message: str,
    task_id: str | None = None,
    target_agent: str | None = None,
    result: str | None = None,
) -> Event:
    """构造一条活动事件（未落盘）

    agent 未配置时显示名退化为 agent ID，颜色为 #888。
    """
    return Event(
        event_id=str(ULID()),
        request_id=request_id,
        task_id=task_id,
        state=str(state),
        agent=agent,
        agent_name=registry.display_name(agent),
        agent_color=registry.color(agent),
        message=message,
        target_agent=target_agent,
        ts=datetime.now(UTC),
        result=result,
    )


def agent_badge(registry: AgentRegistry, agent: str) -> str:
    """返回 "{emoji} {name}" 形式的 agent 标识"""
    return f"{registry.emoji(agent)} {registry.display_name(agent)}"
