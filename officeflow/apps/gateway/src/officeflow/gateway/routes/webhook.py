"""Telegram webhook 路由

POST /api/telegram/webhook: 只为真实用户消息创建 Request（仪表盘展示用）。
    配置了密钥时校验 X-Telegram-Bot-Api-Secret-Token；
    其余情况（包括被过滤、重复或无法解析的 update）一律返回 200 "OK"，避免上游重投。
GET /api/telegram/webhook: 服务状态。
"""

from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends, Request
from officeflow.core.models import RequestSource
from starlette.responses import PlainTextResponse

from ..deps import get_coordinator, get_office_config
from ..services.webhook import (
    SECRET_HEADER,
    TelegramUpdate,
    external_message_id,
    should_record,
)

log = structlog.get_logger()

router = APIRouter()


@router.post("/api/telegram/webhook")
async def telegram_webhook(
    request: Request,
    coordinator=Depends(get_coordinator),
    office_config=Depends(get_office_config),
):
    secret = office_config.webhook_secret
    if secret and request.headers.get(SECRET_HEADER) != secret:
        log.warning("webhook_secret_rejected")
        return PlainTextResponse("Unauthorized", status_code=401)

    try:
        # JSONDecodeError 与 pydantic ValidationError 都是 ValueError
        update = TelegramUpdate.model_validate(await request.json())
    except ValueError as e:
        log.warning("webhook_payload_invalid", error_type=type(e).__name__)
        return PlainTextResponse("OK")

    if not should_record(update):
        log.debug("webhook_update_filtered", update_id=update.update_id)
        return PlainTextResponse("OK")

    inbound, created = await coordinator.receive_message(
        update.text,
        sender=update.sender_name,
        external_message_id=external_message_id(update),
        source=RequestSource.TELEGRAM_WEBHOOK,
    )
    log.info(
        "webhook_message_received",
        request_id=inbound.request_id,
        created=created,
        update_id=update.update_id,
    )
    return PlainTextResponse("OK")


@router.get("/api/telegram/webhook")
async def webhook_status():
    return {
        "status": "ok",
        "service": "OfficeFlow Telegram Webhook",
        "timestamp": datetime.now(UTC).isoformat(),
    }
