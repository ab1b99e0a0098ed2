"""Telegram webhook 测试"""

import pytest
from httpx import AsyncClient
from officeflow.core.config import OfficeConfig
from officeflow.gateway.services.webhook import (
    SECRET_HEADER,
    TelegramUpdate,
    external_message_id,
    should_record,
)


def _update(text: str | None = "你好", *, message_id: int = 101, **sender) -> dict:
    message: dict = {"message_id": message_id, "from": {"id": 7, "first_name": "Alice", **sender}}
    if text is not None:
        message["text"] = text
    return {"update_id": 1, "message": message}


class TestUpdateParsing:
    """update 解析与过滤"""

    def test_text_and_sender(self):
        update = TelegramUpdate.model_validate(_update("帮我查快递"))
        assert update.text == "帮我查快递"
        assert update.sender_name == "Alice"
        assert external_message_id(update) == "101"
        assert should_record(update)

    def test_media_fallbacks(self):
        photo = _update(None)
        photo["message"]["photo"] = [{"file_id": "x"}]
        assert TelegramUpdate.model_validate(photo).text == "[Photo]"

        doc = _update(None)
        doc["message"]["document"] = {"file_name": "report.pdf"}
        assert TelegramUpdate.model_validate(doc).text == "[Document: report.pdf]"

    def test_sender_name_fallbacks(self):
        update = TelegramUpdate.model_validate(
            {"message": {"message_id": 1, "text": "hi", "from": {"id": 99}}}
        )
        assert update.sender_name == "User 99"
        assert TelegramUpdate.model_validate({"message": {"text": "hi"}}).sender_name == "Unknown"

    @pytest.mark.parametrize(
        "payload",
        [
            _update("/start"),
            _update("HEARTBEAT check"),
            _update("机器人回复", is_bot=True),
            _update(None),
            {"update_id": 5, "callback_query": {"data": "approve", "from": {"id": 7}}},
        ],
    )
    def test_filtered(self, payload):
        assert not should_record(TelegramUpdate.model_validate(payload))


class TestWebhookRoute:
    """POST/GET /api/telegram/webhook"""

    async def test_creates_request_once(self, client: AsyncClient, store_group):
        first = await client.post("/api/telegram/webhook", json=_update("帮我订会议室"))
        assert first.status_code == 200
        assert first.text == "OK"
        await client.post("/api/telegram/webhook", json=_update("帮我订会议室"))

        requests = await store_group.request_store.list_requests()
        assert len(requests) == 1
        assert requests[0].external_message_id == "101"
        assert requests[0].sender == "Alice"
        assert requests[0].source == "telegram_webhook"

    async def test_filtered_update_returns_ok(self, client: AsyncClient, store_group):
        resp = await client.post("/api/telegram/webhook", json=_update("/help"))
        assert resp.text == "OK"
        assert await store_group.request_store.list_requests() == []

    async def test_invalid_body_returns_ok(self, client: AsyncClient):
        resp = await client.post(
            "/api/telegram/webhook",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 200

    async def test_secret_enforced_when_configured(
        self, client: AsyncClient, store_group, monkeypatch
    ):
        monkeypatch.setenv("TELEGRAM_WEBHOOK_SECRET", "s3cret")

        rejected = await client.post("/api/telegram/webhook", json=_update("hi there"))
        assert rejected.status_code == 401

        accepted = await client.post(
            "/api/telegram/webhook",
            json=_update("hi there"),
            headers={SECRET_HEADER: "s3cret"},
        )
        assert accepted.status_code == 200
        assert len(await store_group.request_store.list_requests()) == 1

    async def test_status(self, client: AsyncClient):
        data = (await client.get("/api/telegram/webhook")).json()
        assert data["status"] == "ok"
        assert data["service"] == "OfficeFlow Telegram Webhook"


class TestConfiguredSecret:
    """配置文件中的 webhook 密钥"""

    @pytest.fixture
    def office_config(self) -> OfficeConfig:
        return OfficeConfig(telegram={"webhookSecret": "from-file"})

    async def test_file_secret(self, client: AsyncClient):
        resp = await client.post(
            "/api/telegram/webhook",
            json=_update("hi"),
            headers={SECRET_HEADER: "wrong"},
        )
        assert resp.status_code == 401
        assert resp.text == "Unauthorized"
