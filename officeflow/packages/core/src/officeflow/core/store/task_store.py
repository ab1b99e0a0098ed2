"""TaskStore SQLite 实现

状态写入为 compare-and-set：WHERE status NOT IN 终态。
同一 Task 的两次完成调用中只有一次能命中，另一次 rowcount 为 0。
此处仅提供数据库操作，不自动提交事务。
"""

from datetime import datetime
from typing import Any

import aiosqlite

from ..models.enums import TERMINAL_STATUSES, TaskStatus
from ..models.task import Task
from .request_store import _parse_ts, _to_db

_COLUMNS = (
    "task_id, request_id, title, detail, assigned_agent, status, "
    "created_at, started_at, completed_at, result"
)

_MUTABLE_COLUMNS = {
    "title",
    "detail",
    "assigned_agent",
    "status",
    "started_at",
    "completed_at",
    "result",
}

_TERMINAL_VALUES = tuple(s.value for s in TERMINAL_STATUSES)
_TERMINAL_PLACEHOLDERS = ", ".join("?" for _ in _TERMINAL_VALUES)


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        await self._conn.execute(
            f"""
            INSERT INTO tasks ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.task_id,
                task.request_id,
                task.title,
                task.detail,
                task.assigned_agent,
                task.status.value,
                task.created_at.isoformat(),
                _to_db(task.started_at),
                _to_db(task.completed_at),
                task.result,
            ),
        )

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def get_latest_task_for_request(self, request_id: str) -> Task | None:
        """Request 最新的 Task（链式交接时即 active Task）"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM tasks
            WHERE request_id = ?
            ORDER BY created_at DESC, task_id DESC
            LIMIT 1
            """,
            (request_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_task(row) if row else None

    async def list_tasks_for_request(self, request_id: str) -> list[Task]:
        """Request 的全部 Task，按创建顺序"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM tasks
            WHERE request_id = ?
            ORDER BY created_at ASC, task_id ASC
            """,
            (request_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def get_active_task_by_agent(self, agent: str) -> Task | None:
        """指定 agent 最近的非终态 Task"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM tasks
            WHERE assigned_agent = ? AND status NOT IN ({_TERMINAL_PLACEHOLDERS})
            ORDER BY created_at DESC, task_id DESC
            LIMIT 1
            """,
            (agent, *_TERMINAL_VALUES),
        )
        row = await cursor.fetchone()
        return self._row_to_task(row) if row else None

    async def list_tasks(
        self,
        limit: int = 20,
        active_only: bool = False,
        status: str | None = None,
    ) -> list[Task]:
        """查询任务列表，按 created_at 倒序"""
        if active_only:
            cursor = await self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM tasks
                WHERE status NOT IN ({_TERMINAL_PLACEHOLDERS})
                ORDER BY created_at DESC, task_id DESC
                LIMIT ?
                """,
                (*_TERMINAL_VALUES, limit),
            )
        elif status:
            cursor = await self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM tasks
                WHERE status = ?
                ORDER BY created_at DESC, task_id DESC
                LIMIT ?
                """,
                (status, limit),
            )
        else:
            cursor = await self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM tasks
                ORDER BY created_at DESC, task_id DESC
                LIMIT ?
                """,
                (limit,),
            )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def update_task(self, task_id: str, **changes: Any) -> bool:
        """更新非终态 Task

        Returns:
            True 如果确有一行被更新；Task 不存在或已终态时返回 False
        """
        if not changes:
            return False
        unknown = set(changes) - _MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown task columns: {sorted(unknown)}")
        assignments = ", ".join(f"{name} = ?" for name in changes)
        cursor = await self._conn.execute(
            f"""
            UPDATE tasks SET {assignments}
            WHERE task_id = ? AND status NOT IN ({_TERMINAL_PLACEHOLDERS})
            """,
            (*(_to_db(v) for v in changes.values()), task_id, *_TERMINAL_VALUES),
        )
        return cursor.rowcount > 0

    async def complete_all_active(self, completed_at: datetime, reason: str) -> list[str]:
        """批量终态化所有非终态 Task

        Returns:
            被终态化的 task_id 列表
        """
        cursor = await self._conn.execute(
            f"SELECT task_id FROM tasks WHERE status NOT IN ({_TERMINAL_PLACEHOLDERS})",
            _TERMINAL_VALUES,
        )
        task_ids = [row[0] for row in await cursor.fetchall()]
        if task_ids:
            await self._conn.execute(
                f"""
                UPDATE tasks SET status = ?, completed_at = ?, result = ?
                WHERE status NOT IN ({_TERMINAL_PLACEHOLDERS})
                """,
                (
                    TaskStatus.COMPLETED.value,
                    completed_at.isoformat(),
                    reason,
                    *_TERMINAL_VALUES,
                ),
            )
        return task_ids

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型（列顺序见 _COLUMNS）"""
        return Task(
            task_id=row[0],
            request_id=row[1],
            title=row[2],
            detail=row[3],
            assigned_agent=row[4],
            status=row[5],
            created_at=datetime.fromisoformat(row[6]),
            started_at=_parse_ts(row[7]),
            completed_at=_parse_ts(row[8]),
            result=row[9],
        )
