"""AgentRegistry -- agent 信息注册表

显式的 lookup(agent_id) -> AgentInfo | None 接口，
背后是一份可重新加载的配置快照（而不是全局可变状态）。
"""

from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from .config import OfficeConfig, load_office_config

log = structlog.get_logger()

# 未配置 agent 的兜底颜色
DEFAULT_AGENT_COLOR = "#888"
DEFAULT_AGENT_EMOJI = "🤖"


class AgentInfo(BaseModel):
    """单个 agent 的展示信息"""

    agent_id: str = Field(description="agent ID")
    name: str = Field(description="显示名")
    color: str = Field(default=DEFAULT_AGENT_COLOR, description="颜色")
    emoji: str = Field(default=DEFAULT_AGENT_EMOJI, description="emoji")
    role: str = Field(default="", description="职责描述")


class AgentRegistry:
    """Agent 注册表 -- 不可变快照 + 显式 reload

    查询接口供 Coordinator 富化事件（agent_name / agent_color）与文案使用。
    """

    def __init__(
        self,
        agents: list[AgentInfo] | None = None,
        config_path: str | Path | None = None,
    ) -> None:
        """初始化注册表

        Args:
            agents: agent 列表，None 时为空注册表
            config_path: reload() 读取的配置文件路径
        """
        self._config_path = config_path
        self._snapshot: dict[str, AgentInfo] = {}
        for agent in agents or []:
            self._snapshot[agent.agent_id] = agent

    @classmethod
    def from_config(
        cls,
        config: OfficeConfig,
        config_path: str | Path | None = None,
    ) -> "AgentRegistry":
        """从办公室配置构建注册表"""
        return cls(_agents_from_config(config), config_path=config_path)

    def lookup(self, agent_id: str | None) -> AgentInfo | None:
        """按 ID 查询 agent；未配置时返回 None"""
        if not agent_id:
            return None
        return self._snapshot.get(agent_id)

    def display_name(self, agent_id: str | None) -> str:
        """显示名，未配置时退化为 agent ID 本身"""
        info = self.lookup(agent_id)
        return info.name if info else (agent_id or "")

    def color(self, agent_id: str | None) -> str:
        info = self.lookup(agent_id)
        return info.color if info else DEFAULT_AGENT_COLOR

    def emoji(self, agent_id: str | None) -> str:
        info = self.lookup(agent_id)
        return info.emoji if info else DEFAULT_AGENT_EMOJI

    def list_all(self) -> list[AgentInfo]:
        """列出所有已注册的 agent（按 ID 排序）"""
        return sorted(self._snapshot.values(), key=lambda a: a.agent_id)

    def reload(self, config: OfficeConfig | None = None) -> int:
        """重新加载快照（原子替换整个字典）

        Args:
            config: 新配置；None 时从 config_path 重新读取

        Returns:
            新快照中的 agent 数量
        """
        if config is None:
            config = load_office_config(self._config_path)
        snapshot = {a.agent_id: a for a in _agents_from_config(config)}
        self._snapshot = snapshot
        log.info("agent_registry_reloaded", agent_count=len(snapshot))
        return len(snapshot)


def _agents_from_config(config: OfficeConfig) -> list[AgentInfo]:
    return [
        AgentInfo(
            agent_id=agent_id,
            name=entry.name or agent_id,
            color=entry.color,
            emoji=entry.emoji,
            role=entry.role,
        )
        for agent_id, entry in config.agents.items()
    ]
