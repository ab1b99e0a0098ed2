"""RequestStore SQLite 实现

所有状态写入都带前置条件（compare-and-set）：
已 completed 的 Request 不再接受任何更新，更新是否生效以 rowcount 判定。
此处仅提供数据库操作，不自动提交事务。
"""

from datetime import datetime
from enum import Enum
from typing import Any

import aiosqlite

from ..models.enums import PENDING_STATES, RequestState
from ..models.request import Request

_COLUMNS = (
    "request_id, content, sender, state, assigned_agent, external_message_id, "
    "chain_id, source, created_at, work_started_at, completed_at, result"
)

# 允许通过 update_request 修改的列
_MUTABLE_COLUMNS = {
    "content",
    "sender",
    "state",
    "assigned_agent",
    "external_message_id",
    "chain_id",
    "work_started_at",
    "completed_at",
    "result",
}


def _to_db(value: Any) -> Any:
    """将模型字段值转换为 SQLite 存储值"""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteRequestStore:
    """RequestStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_request(self, request: Request) -> None:
        """创建 Request 记录"""
        await self._conn.execute(
            f"""
            INSERT INTO requests ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                request.request_id,
                request.content,
                request.sender,
                request.state.value,
                request.assigned_agent,
                request.external_message_id,
                request.chain_id,
                request.source.value,
                request.created_at.isoformat(),
                _to_db(request.work_started_at),
                _to_db(request.completed_at),
                request.result,
            ),
        )

    async def get_request(self, request_id: str) -> Request | None:
        """根据 request_id 查询"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM requests WHERE request_id = ?",
            (request_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_request(row)

    async def list_requests(self, limit: int = 20, active_only: bool = False) -> list[Request]:
        """查询最近的 Request，按 created_at 倒序"""
        if active_only:
            cursor = await self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM requests
                WHERE state != ?
                ORDER BY created_at DESC, request_id DESC
                LIMIT ?
                """,
                (RequestState.COMPLETED.value, limit),
            )
        else:
            cursor = await self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM requests
                ORDER BY created_at DESC, request_id DESC
                LIMIT ?
                """,
                (limit,),
            )
        rows = await cursor.fetchall()
        return [self._row_to_request(row) for row in rows]

    async def list_requests_since(self, since: datetime, limit: int = 20) -> list[Request]:
        """查询非终态或在 since 之后完成的 Request（快照用）"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM requests
            WHERE state != ? OR completed_at >= ?
            ORDER BY created_at DESC, request_id DESC
            LIMIT ?
            """,
            (RequestState.COMPLETED.value, since.isoformat(), limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_request(row) for row in rows]

    async def find_by_external_message_id(self, external_message_id: str) -> Request | None:
        """按外部消息 ID 精确查找（唯一索引，确定性关联）"""
        if not external_message_id:
            return None
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM requests WHERE external_message_id = ?",
            (external_message_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_request(row) if row else None

    async def find_oldest_pending(self) -> Request | None:
        """FIFO 兜底：最早创建、状态为 received/analyzing 且尚未拥有 Task 的 Request

        "尚未拥有 Task" 是认领条件：已被某次 start_flow 认领的 Request
        不会被后续无关联信号再次 adopt。
        """
        placeholders = ", ".join("?" for _ in PENDING_STATES)
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM requests r
            WHERE r.state IN ({placeholders})
              AND NOT EXISTS (SELECT 1 FROM tasks t WHERE t.request_id = r.request_id)
            ORDER BY r.created_at ASC, r.request_id ASC
            LIMIT 1
            """,
            tuple(s.value for s in PENDING_STATES),
        )
        row = await cursor.fetchone()
        return self._row_to_request(row) if row else None

    async def find_oldest_incomplete(self) -> Request | None:
        """最早创建的非终态 Request"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM requests
            WHERE state != ?
            ORDER BY created_at ASC, request_id ASC
            LIMIT 1
            """,
            (RequestState.COMPLETED.value,),
        )
        row = await cursor.fetchone()
        return self._row_to_request(row) if row else None

    async def find_last_completed_in_chain(self, chain_id: str) -> Request | None:
        """链内最近完成的 Request（查询，不持锁）"""
        if not chain_id:
            return None
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM requests
            WHERE chain_id = ? AND state = ?
            ORDER BY completed_at DESC
            LIMIT 1
            """,
            (chain_id, RequestState.COMPLETED.value),
        )
        row = await cursor.fetchone()
        return self._row_to_request(row) if row else None

    async def update_request(self, request_id: str, **changes: Any) -> bool:
        """更新非终态 Request 的字段

        Returns:
            True 如果确有一行被更新；Request 不存在或已 completed 时返回 False
        """
        if not changes:
            return False
        unknown = set(changes) - _MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown request columns: {sorted(unknown)}")
        assignments = ", ".join(f"{name} = ?" for name in changes)
        cursor = await self._conn.execute(
            f"""
            UPDATE requests SET {assignments}
            WHERE request_id = ? AND state != ?
            """,
            (
                *(_to_db(v) for v in changes.values()),
                request_id,
                RequestState.COMPLETED.value,
            ),
        )
        return cursor.rowcount > 0

    async def complete_all_active(self, completed_at: datetime, reason: str) -> list[str]:
        """批量终态化所有非 completed 的 Request

        Returns:
            被终态化的 request_id 列表
        """
        cursor = await self._conn.execute(
            "SELECT request_id FROM requests WHERE state != ?",
            (RequestState.COMPLETED.value,),
        )
        request_ids = [row[0] for row in await cursor.fetchall()]
        if request_ids:
            await self._conn.execute(
                """
                UPDATE requests SET state = ?, completed_at = ?, result = ?
                WHERE state != ?
                """,
                (
                    RequestState.COMPLETED.value,
                    completed_at.isoformat(),
                    reason,
                    RequestState.COMPLETED.value,
                ),
            )
        return request_ids

    @staticmethod
    def _row_to_request(row: aiosqlite.Row) -> Request:
        """将数据库行转换为 Request 模型（列顺序见 _COLUMNS）"""
        return Request(
            request_id=row[0],
            content=row[1],
            sender=row[2],
            state=row[3],
            assigned_agent=row[4],
            external_message_id=row[5],
            chain_id=row[6],
            source=row[7] or "api",
            created_at=datetime.fromisoformat(row[8]),
            work_started_at=_parse_ts(row[9]),
            completed_at=_parse_ts(row[10]),
            result=row[11],
        )
