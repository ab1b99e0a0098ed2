"""FastAPI lifespan 测试

测试内容：
1. 启动时构造 Store / EventBus / Coordinator 并可处理请求
2. 外部运行时启用时挂载适配器与网关客户端
3. 关闭时连接与订阅清理
"""

import json
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient


@pytest_asyncio.fixture
async def gateway_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("OFFICEFLOW_DB_PATH", str(tmp_path / "sqlite" / "test.db"))
    config_path = tmp_path / "officeflow.config.json"
    monkeypatch.setenv("OFFICEFLOW_CONFIG_FILE", str(config_path))
    return config_path


class TestLifespan:
    """Lifespan 测试"""

    async def test_app_starts_and_serves_requests(self, gateway_env: Path):
        gateway_env.write_text(
            json.dumps({"agents": {"main": {"name": "Main", "emoji": "🧠"}}}),
            encoding="utf-8",
        )
        from officeflow.gateway.main import create_app

        app = create_app()
        async with app.router.lifespan_context(app):
            assert app.state.gateway_client is None
            assert app.state.coordinator.orchestrator == "main"

            async with AsyncClient(
                transport=ASGITransport(app=app), base_url="http://test"
            ) as ac:
                resp = await ac.post(
                    "/api/workflow", json={"action": "start_flow", "content": "启动检查"}
                )
                assert resp.status_code == 200
                agents = (await ac.get("/api/config/agents")).json()
                assert [a["agent_id"] for a in agents["agents"]] == ["main"]

            bus = app.state.event_bus
            queue = await bus.subscribe()

        assert queue.get_nowait() is None
        assert bus.subscriber_count == 0

    async def test_runtime_link_enabled(self, gateway_env: Path):
        gateway_env.write_text(
            json.dumps({"gateway": {"enabled": True, "url": "ws://127.0.0.1:9"}}),
            encoding="utf-8",
        )
        from officeflow.gateway.main import create_app

        app = create_app()
        async with app.router.lifespan_context(app):
            assert app.state.runtime_adapter is not None
            async with AsyncClient(
                transport=ASGITransport(app=app), base_url="http://test"
            ) as ac:
                data = (await ac.get("/api/runtime")).json()
            assert data["enabled"] is True
            assert data["link"]["url"] == "ws://127.0.0.1:9"
