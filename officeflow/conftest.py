"""全局 pytest 配置 -- 临时 SQLite 数据库、Store 组与 agent 注册表 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from officeflow.core.agents import AgentInfo, AgentRegistry
from officeflow.core.store import StoreGroup, create_store_group


@pytest.fixture(autouse=True)
def _fast_pacing(monkeypatch: pytest.MonkeyPatch) -> None:
    """UI 节奏延迟压缩为 0，日志只写本地"""
    monkeypatch.setenv("OFFICEFLOW_PACING_SCALE", "0")
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    monkeypatch.delenv("TELEGRAM_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("OFFICEFLOW_ORCHESTRATOR", raising=False)


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from officeflow.core.store.sqlite_init import init_db

    tmp_db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(tmp_db_path))
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """提供共享连接的 Store 实例组"""
    group = await create_store_group(str(tmp_db_path))
    yield group
    await group.conn.close()


@pytest.fixture
def registry() -> AgentRegistry:
    """编排者 main + 两个 worker"""
    return AgentRegistry(
        [
            AgentInfo(agent_id="main", name="Main", color="#6366f1", emoji="🧠"),
            AgentInfo(agent_id="py", name="Py", color="#22c55e", emoji="🐍"),
            AgentInfo(agent_id="writer", name="Writer", color="#f59e0b", emoji="✍️"),
        ]
    )
