"""配置模块 -- 可通过环境变量覆盖

包含数据库路径、办公室配置文件（agents / gateway / telegram）、
编排者 agent、UI 节奏缩放、SSE 心跳与快照大小等可配置项。
优先级：环境变量 > 配置文件 > 默认值。
"""

import json
import os
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("OFFICEFLOW_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "OFFICEFLOW_DB_PATH",
        str(_get_base_dir() / "sqlite" / "officeflow.db"),
    )


def get_config_file() -> Path:
    """获取办公室配置文件路径"""
    return Path(os.environ.get("OFFICEFLOW_CONFIG_FILE", "officeflow.config.json"))


def get_orchestrator() -> str:
    """编排者 agent ID（被动完成只允许关闭它自己的 Task）"""
    return os.environ.get("OFFICEFLOW_ORCHESTRATOR", "main")


def get_pacing_scale() -> float:
    """UI 节奏延迟缩放系数；0 表示压缩为立即执行（无头/测试场景）"""
    val = os.environ.get("OFFICEFLOW_PACING_SCALE", "1.0")
    try:
        scale = float(val)
    except ValueError:
        log.warning(
            "invalid_pacing_scale_config",
            env_var="OFFICEFLOW_PACING_SCALE",
            value=val,
            fallback=1.0,
        )
        return 1.0
    return max(scale, 0.0)


# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("OFFICEFLOW_SSE_HEARTBEAT_INTERVAL", "15")
)

# 订阅者静默超过此时长（秒）必须强制重连
SSE_SILENCE_TIMEOUT: int = int(
    os.environ.get("OFFICEFLOW_SSE_SILENCE_TIMEOUT", "30")
)

# SSE 订阅者队列容量，溢出即断开该订阅者
SSE_QUEUE_MAXSIZE: int = int(os.environ.get("OFFICEFLOW_SSE_QUEUE_MAXSIZE", "256"))

# 快照大小
SNAPSHOT_EVENT_LIMIT: int = 50
SNAPSHOT_REQUEST_LIMIT: int = 20
SNAPSHOT_TASK_LIMIT: int = 20
# 快照中保留最近完成的 Request 的时间窗口（秒）
SNAPSHOT_RECENT_WINDOW_S: int = 120

# 文本预览截断长度
PREVIEW_LENGTH: int = 60
SHORT_PREVIEW_LENGTH: int = 50
TITLE_LENGTH: int = 80
# webhook 入站内容截断长度
WEBHOOK_CONTENT_LENGTH: int = 120
# 运行时 user 流内容截断长度
RUNTIME_CONTENT_LENGTH: int = 200


class AgentEntry(BaseModel):
    """配置文件中的单个 agent"""

    name: str = Field(default="", description="显示名")
    color: str = Field(default="#888", description="颜色")
    emoji: str = Field(default="🤖", description="emoji")
    role: str = Field(default="", description="职责描述")
    keywords: list[str] = Field(default_factory=list, description="路由关键词（外部策略使用）")


class OfficeConfig(BaseModel):
    """办公室配置文件模型

    gateway 段保持原样，由 agentlink 包解析。
    """

    office: dict[str, Any] = Field(default_factory=lambda: {"name": "My AI Office"})
    gateway: dict[str, Any] = Field(default_factory=dict)
    agents: dict[str, AgentEntry] = Field(default_factory=dict)
    telegram: dict[str, Any] = Field(default_factory=dict)

    @property
    def webhook_secret(self) -> str:
        """webhook 密钥：TELEGRAM_WEBHOOK_SECRET 覆盖配置文件"""
        if val := os.environ.get("TELEGRAM_WEBHOOK_SECRET"):
            return val
        return str(self.telegram.get("webhookSecret") or "")


def load_office_config(path: str | Path | None = None) -> OfficeConfig:
    """加载办公室配置文件

    文件不存在或解析失败时返回默认配置并记录 warning，不阻塞启动。
    """
    config_path = Path(path) if path is not None else get_config_file()
    if not config_path.exists():
        return OfficeConfig()

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
        return OfficeConfig.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        log.warning(
            "office_config_invalid",
            path=str(config_path),
            error_type=type(e).__name__,
        )
        return OfficeConfig()
