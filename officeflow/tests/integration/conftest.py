"""集成测试共享 fixture -- 走真实 lifespan 的完整应用"""

import json
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

OFFICE_CONFIG = {
    "office": {"name": "Test Office"},
    "agents": {
        "main": {"name": "Main", "emoji": "🧠", "color": "#6366f1"},
        "py": {"name": "Py", "emoji": "🐍", "color": "#22c55e"},
    },
}


@pytest.fixture
def integration_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """数据库路径与办公室配置文件（外部运行时关闭）"""
    db_path = tmp_path / "sqlite" / "officeflow.db"
    config_path = tmp_path / "officeflow.config.json"
    config_path.write_text(json.dumps(OFFICE_CONFIG, ensure_ascii=False), encoding="utf-8")
    monkeypatch.setenv("OFFICEFLOW_DB_PATH", str(db_path))
    monkeypatch.setenv("OFFICEFLOW_CONFIG_FILE", str(config_path))
    return db_path


@pytest_asyncio.fixture
async def integration_app(integration_db: Path) -> AsyncGenerator[FastAPI, None]:
    """集成测试用 FastAPI app"""
    from officeflow.gateway.main import create_app

    app = create_app()
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def client(integration_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
