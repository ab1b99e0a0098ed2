"""事件占位符修复模块

内容未知时写入的事件 message 会带占位符 "Processing..."（或早期版本的
通用兜底文案）。真实内容到达后就地改写 message，使审计日志不再向观察者暴露占位符。
这是 append-only 事件表唯一允许的改写，不改变事件 ID 与顺序。
"""

import time
from datetime import UTC, datetime

import aiosqlite
import structlog

from .config import PREVIEW_LENGTH
from .store.protocols import EventStore, RequestStore
from .store.transaction import reconcile_terminal_pairs
from .text import (
    GENERIC_DONE_FRAGMENT,
    GENERIC_RESPONDING_FRAGMENT,
    PLACEHOLDER,
    clean_content,
    is_placeholder,
    preview,
    replace_placeholder,
)

log = structlog.get_logger()

# 早期兜底文案 -> 被替换的带引号片段
_GENERIC_FRAGMENTS: dict[str, str] = {
    GENERIC_DONE_FRAGMENT: '"task"',
    GENERIC_RESPONDING_FRAGMENT: '"response"',
}


async def fix_placeholder_events(
    event_store: EventStore,
    request_id: str,
    real_content: str,
) -> list[str]:
    """改写指定 Request 所有带占位符的事件

    注意：此方法不自动提交事务。

    Returns:
        被改写的 event_id 列表
    """
    short = preview(clean_content(real_content), PREVIEW_LENGTH)
    if not short:
        return []
    fixed: list[str] = []
    for event in await event_store.find_events_containing(PLACEHOLDER, request_id):
        await event_store.update_event_message(
            event.event_id,
            replace_placeholder(event.message, short),
        )
        fixed.append(event.event_id)
    return fixed


async def find_broken_events(
    event_store: EventStore,
    limit: int = 50,
) -> tuple[int, list[dict]]:
    """在最近 limit 条事件中找出仍带占位符或通用兜底文案的事件

    Returns:
        (检查的事件数, 有问题的事件摘要列表)
    """
    events = await event_store.list_recent(limit)
    markers = (PLACEHOLDER, '"task"', '"response"')
    broken = [
        {
            "id": e.event_id,
            "requestId": e.request_id,
            "message": e.message,
            "ts": e.ts.isoformat(),
        }
        for e in events
        if any(marker in e.message for marker in markers)
    ]
    return len(events), broken


async def repair_all_placeholder_events(
    conn: aiosqlite.Connection,
    event_store: EventStore,
    request_store: RequestStore,
) -> int:
    """全量修复：用各 Request 的真实内容替换事件中的占位符与通用兜底文案

    Returns:
        被改写的事件总数
    """
    start_time = time.monotonic()
    fixed = 0
    contents: dict[str, str | None] = {}

    async def real_content(request_id: str) -> str | None:
        if request_id not in contents:
            request = await request_store.get_request(request_id)
            contents[request_id] = (
                None if request is None or is_placeholder(request.content) else request.content
            )
        return contents[request_id]

    try:
        for event in await event_store.find_events_containing(PLACEHOLDER):
            content = await real_content(event.request_id)
            if content is None:
                continue
            short = preview(clean_content(content), PREVIEW_LENGTH)
            await event_store.update_event_message(
                event.event_id,
                replace_placeholder(event.message, short),
            )
            fixed += 1

        for fragment, quoted in _GENERIC_FRAGMENTS.items():
            for event in await event_store.find_events_containing(fragment):
                content = await real_content(event.request_id)
                if content is None:
                    continue
                short = preview(clean_content(content), PREVIEW_LENGTH)
                await event_store.update_event_message(
                    event.event_id,
                    event.message.replace(quoted, f'"{short}"', 1),
                )
                fixed += 1

        await conn.commit()
    except BaseException:
        await conn.rollback()
        raise

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    await log.ainfo(
        "placeholder_repair_completed",
        fixed=fixed,
        elapsed_ms=elapsed_ms,
    )
    return fixed


async def reconcile(conn: aiosqlite.Connection) -> int:
    """离线一致性检查：修正 Request/Task 终态不一致

    Returns:
        被修正的行数
    """
    try:
        fixed = await reconcile_terminal_pairs(conn, datetime.now(UTC))
        await conn.commit()
    except BaseException:
        await conn.rollback()
        raise
    await log.ainfo("terminal_pairs_reconciled", fixed=fixed)
    return fixed
