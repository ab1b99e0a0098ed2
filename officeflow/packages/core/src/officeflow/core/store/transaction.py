"""Request/Task/Event 事务封装

状态变更与事件写入在同一 SQLite 事务内提交。
带前置条件的写入（非终态才更新）只要有一处未命中，整个事务回滚，
调用方据此判定本次变更是否为过期写入（stale write）。
"""

from datetime import datetime
from typing import Any

import aiosqlite

from ..models.enums import TERMINAL_STATUSES, RequestState, TaskStatus
from ..models.event import Event
from ..models.request import Request
from ..models.task import Task
from .event_store import SqliteEventStore
from .request_store import SqliteRequestStore
from .task_store import SqliteTaskStore

_TERMINAL_VALUES = tuple(s.value for s in TERMINAL_STATUSES)


async def create_request_with_event(
    conn: aiosqlite.Connection,
    request_store: SqliteRequestStore,
    event_store: SqliteEventStore,
    request: Request,
    event: Event | None = None,
) -> None:
    """单事务写入新 Request 与其 received 事件

    Raises:
        aiosqlite.IntegrityError: external_message_id 冲突等约束错误，自动回滚
    """
    try:
        await request_store.create_request(request)
        if event is not None:
            await event_store.append_event(event)
        await conn.commit()
    except BaseException:
        await conn.rollback()
        raise


async def create_task_for_request(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    request_store: SqliteRequestStore,
    task: Task,
    request_changes: dict[str, Any],
) -> bool:
    """单事务创建 Task 并同步所属 Request

    Returns:
        False 如果 Request 已 completed（不创建 Task）
    """
    try:
        if not await request_store.update_request(task.request_id, **request_changes):
            await conn.rollback()
            return False
        await task_store.create_task(task)
        await conn.commit()
    except BaseException:
        await conn.rollback()
        raise
    return True


async def apply_transition(
    conn: aiosqlite.Connection,
    request_store: SqliteRequestStore,
    task_store: SqliteTaskStore,
    event_store: SqliteEventStore,
    *,
    request_id: str | None = None,
    request_changes: dict[str, Any] | None = None,
    task_id: str | None = None,
    task_changes: dict[str, Any] | None = None,
    event: Event | None = None,
) -> bool:
    """在同一事务内应用 Task/Request 变更并追加事件

    Task 变更先于 Request 变更执行；任一带前置条件的更新未命中即回滚。

    Returns:
        True 如果变更已提交；False 表示目标已终态，本次写入被丢弃
    """
    try:
        if task_id is not None and task_changes:
            if not await task_store.update_task(task_id, **task_changes):
                await conn.rollback()
                return False
        if request_id is not None and request_changes:
            if not await request_store.update_request(request_id, **request_changes):
                await conn.rollback()
                return False
        if event is not None:
            await event_store.append_event(event)
        await conn.commit()
    except BaseException:
        await conn.rollback()
        raise
    return True


async def reconcile_terminal_pairs(conn: aiosqlite.Connection, completed_at: datetime) -> int:
    """一致性检查：消除 Request/Task 终态不一致

    1. Request 已 completed 但仍有非终态 Task -> 完成这些 Task
    2. Request 未完成但其最新 Task 已终态 -> 完成该 Request

    注意：此方法不自动提交事务。

    Returns:
        被修正的行数
    """
    terminal_placeholders = ", ".join("?" for _ in _TERMINAL_VALUES)
    ts = completed_at.isoformat()

    cursor = await conn.execute(
        f"""
        UPDATE tasks SET status = ?, completed_at = COALESCE(completed_at, ?)
        WHERE status NOT IN ({terminal_placeholders})
          AND request_id IN (SELECT request_id FROM requests WHERE state = ?)
        """,
        (TaskStatus.COMPLETED.value, ts, *_TERMINAL_VALUES, RequestState.COMPLETED.value),
    )
    fixed = max(cursor.rowcount, 0)

    cursor = await conn.execute(
        f"""
        UPDATE requests SET state = ?, completed_at = COALESCE(completed_at, ?)
        WHERE state != ?
          AND (
            SELECT t.status FROM tasks t
            WHERE t.request_id = requests.request_id
            ORDER BY t.created_at DESC, t.task_id DESC
            LIMIT 1
          ) IN ({terminal_placeholders})
        """,
        (
            RequestState.COMPLETED.value,
            ts,
            RequestState.COMPLETED.value,
            *_TERMINAL_VALUES,
        ),
    )
    fixed += max(cursor.rowcount, 0)
    return fixed


async def complete_all_active(
    conn: aiosqlite.Connection,
    request_store: SqliteRequestStore,
    task_store: SqliteTaskStore,
    event_store: SqliteEventStore,
    completed_at: datetime,
    reason: str,
    event: Event | None = None,
) -> tuple[list[str], list[str]]:
    """流水线重置：逐表终态化所有非终态 Request 与 Task，再做一致性检查

    不要求跨表原子性，但在同一事务内提交以避免中间态被观察者读到。
    event 仅在确有记录被终态化时写入。

    Returns:
        (被终态化的 request_id 列表, 被终态化的 task_id 列表)
    """
    try:
        request_ids = await request_store.complete_all_active(completed_at, reason)
        task_ids = await task_store.complete_all_active(completed_at, reason)
        await reconcile_terminal_pairs(conn, completed_at)
        if event is not None and (request_ids or task_ids):
            await event_store.append_event(event)
        await conn.commit()
    except BaseException:
        await conn.rollback()
        raise
    return request_ids, task_ids
