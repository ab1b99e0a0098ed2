"""Telegram 形态的 webhook 负载解析

只负责从 update 中提取文本、发送者与消息 ID，并过滤非用户消息；
落库与节奏推进由 WorkflowCoordinator.receive_message 完成。
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


class TelegramUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    is_bot: bool = False
    first_name: str | None = None
    username: str | None = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    message_id: int | None = None
    sender: TelegramUser | None = Field(default=None, alias="from")
    text: str | None = None
    caption: str | None = None
    photo: list[Any] | None = None
    video: dict[str, Any] | None = None
    document: dict[str, Any] | None = None
    voice: dict[str, Any] | None = None
    sticker: dict[str, Any] | None = None


class TelegramCallbackQuery(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    data: str | None = None
    sender: TelegramUser | None = Field(default=None, alias="from")
    message: TelegramMessage | None = None


class TelegramUpdate(BaseModel):
    """Telegram update（只保留用到的字段）"""

    model_config = ConfigDict(extra="ignore")

    update_id: int | None = None
    message: TelegramMessage | None = None
    edited_message: TelegramMessage | None = None
    callback_query: TelegramCallbackQuery | None = None

    @property
    def text(self) -> str | None:
        """消息文本；非文本消息退化为 [Photo] 之类的描述"""
        if self.message and self.message.text:
            return self.message.text
        if self.edited_message and self.edited_message.text:
            return self.edited_message.text
        if self.callback_query and self.callback_query.data:
            return f"callback: {self.callback_query.data}"
        message = self.message
        if message is None:
            return None
        if message.caption:
            return message.caption
        if message.photo:
            return "[Photo]"
        if message.video is not None:
            return "[Video]"
        if message.document is not None:
            return f"[Document: {message.document.get('file_name') or 'file'}]"
        if message.voice is not None:
            return "[Voice message]"
        if message.sticker is not None:
            return f"[Sticker: {message.sticker.get('emoji') or ''}]"
        return None

    @property
    def message_id(self) -> int | None:
        for message in (self.message, self.edited_message):
            if message and message.message_id is not None:
                return message.message_id
        if self.callback_query and self.callback_query.message:
            return self.callback_query.message.message_id
        return None

    @property
    def sender(self) -> TelegramUser | None:
        for message in (self.message, self.edited_message):
            if message and message.sender is not None:
                return message.sender
        if self.callback_query:
            return self.callback_query.sender
        return None

    @property
    def sender_name(self) -> str:
        sender = self.sender
        if sender is None:
            return "Unknown"
        return sender.first_name or sender.username or f"User {sender.id}"

    @property
    def from_bot(self) -> bool:
        for message in (self.message, self.edited_message):
            if message and message.sender is not None:
                return message.sender.is_bot
        return False


def is_system_text(text: str) -> bool:
    return text.startswith("callback:") or "HEARTBEAT" in text


def should_record(update: TelegramUpdate) -> bool:
    """只为真实用户消息创建 Request：排除 bot、命令与系统消息"""
    text = update.text
    if not text or update.from_bot:
        return False
    return not (text.startswith("/") or is_system_text(text))


def external_message_id(update: TelegramUpdate) -> str | None:
    """外部消息 ID 以字符串形式存储"""
    message_id = update.message_id
    return str(message_id) if message_id is not None else None
