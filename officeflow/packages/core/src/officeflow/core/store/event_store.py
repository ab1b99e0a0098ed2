"""EventStore SQLite 实现

事件表 append-only：只允许插入。
唯一例外是 update_event_message，仅供占位符修复改写 message 文本。
"""

from datetime import datetime

import aiosqlite

from ..models.event import Event

_COLUMNS = (
    "event_id, request_id, task_id, state, agent, agent_name, agent_color, "
    "message, target_agent, ts, result"
)


class SqliteEventStore:
    """EventStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_event(self, event: Event) -> None:
        """追加事件（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            f"""
            INSERT INTO events ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.request_id,
                event.task_id,
                event.state,
                event.agent,
                event.agent_name,
                event.agent_color,
                event.message,
                event.target_agent,
                event.ts.isoformat(),
                event.result,
            ),
        )

    async def get_event(self, event_id: str) -> Event | None:
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM events WHERE event_id = ?",
            (event_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_event(row) if row else None

    async def list_recent(self, limit: int = 50, offset: int = 0) -> list[Event]:
        """最近的事件，按时间倒序（event_id 为 ULID，同时间戳内保持写入顺序）"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM events
            ORDER BY ts DESC, event_id DESC
            LIMIT ? OFFSET ?
            """,
            (limit, offset),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def count_events(self) -> int:
        cursor = await self._conn.execute("SELECT COUNT(*) FROM events")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def get_events_for_request(self, request_id: str) -> list[Event]:
        """查询指定 Request 的所有事件，按写入顺序"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM events
            WHERE request_id = ?
            ORDER BY ts ASC, event_id ASC
            """,
            (request_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def find_events_containing(
        self,
        fragment: str,
        request_id: str | None = None,
    ) -> list[Event]:
        """查询 message 中包含 fragment 的事件（占位符修复用）"""
        if request_id is None:
            cursor = await self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM events
                WHERE request_id IS NOT NULL AND instr(message, ?) > 0
                ORDER BY ts ASC, event_id ASC
                """,
                (fragment,),
            )
        else:
            cursor = await self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM events
                WHERE request_id = ? AND instr(message, ?) > 0
                ORDER BY ts ASC, event_id ASC
                """,
                (request_id, fragment),
            )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def update_event_message(self, event_id: str, message: str) -> None:
        """改写事件 message（仅限占位符修复，不改变 ID 与顺序）"""
        await self._conn.execute(
            "UPDATE events SET message = ? WHERE event_id = ?",
            (message, event_id),
        )

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> Event:
        """将数据库行转换为 Event 模型（列顺序见 _COLUMNS）"""
        return Event(
            event_id=row[0],
            request_id=row[1],
            task_id=row[2],
            state=row[3],
            agent=row[4],
            agent_name=row[5],
            agent_color=row[6],
            message=row[7],
            target_agent=row[8],
            ts=datetime.fromisoformat(row[9]),
            result=row[10],
        )
