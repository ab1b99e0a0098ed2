"""文本处理工具 -- 内容清洗、预览截断与占位符替换"""

import re

# 内容未知时写入的占位符，真实内容到达后由占位符修复替换
PLACEHOLDER = "Processing..."

# 早期版本在内容未知时写入的通用兜底文案
GENERIC_DONE_FRAGMENT = 'Done: "task"'
GENERIC_RESPONDING_FRAGMENT = 'Responding: "response"'

_TELEGRAM_PREFIX_RE = re.compile(r"^\[Telegram[^\]]*\]\s*", re.DOTALL)
_MESSAGE_ID_SUFFIX_RE = re.compile(r"\[message_id:\s*\d+\]\s*$")


def clean_content(content: str | None) -> str:
    """去掉渠道前缀 "[Telegram ...]" 与结尾的 "[message_id: N]" 标记"""
    text = _TELEGRAM_PREFIX_RE.sub("", content or "")
    text = _MESSAGE_ID_SUFFIX_RE.sub("", text)
    return text.strip()


def preview(text: str | None, length: int) -> str:
    """截断到 length 字符，超长时追加 "..." """
    text = text or ""
    if len(text) > length:
        return text[:length] + "..."
    return text


def is_placeholder(content: str | None) -> bool:
    return not content or content == PLACEHOLDER


def replace_placeholder(message: str, replacement: str) -> str:
    """将 message 中的占位符（带引号或不带引号）替换为真实内容预览"""
    quoted = f'"{PLACEHOLDER}"'
    return message.replace(quoted, f'"{replacement}"').replace(PLACEHOLDER, replacement)
