"""SQLite 数据库初始化

PRAGMA 配置 + 三张表 DDL + 增量列迁移 + 索引创建。
Schema 演进只做加法：新列一律可空，启动时由 ensure_columns 补齐，
旧版本数据库无需停机即可升级。
"""

import aiosqlite

# requests 表 DDL
_REQUESTS_DDL = """
CREATE TABLE IF NOT EXISTS requests (
    request_id           TEXT PRIMARY KEY,
    content              TEXT NOT NULL DEFAULT '',
    sender               TEXT NOT NULL DEFAULT 'Boss',
    state                TEXT NOT NULL DEFAULT 'received',
    assigned_agent       TEXT,
    external_message_id  TEXT,
    chain_id             TEXT,
    source               TEXT,
    created_at           TEXT NOT NULL,
    work_started_at      TEXT,
    completed_at         TEXT,
    result               TEXT
);
"""

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id         TEXT PRIMARY KEY,
    request_id      TEXT NOT NULL,
    title           TEXT NOT NULL DEFAULT '',
    detail          TEXT NOT NULL DEFAULT '',
    assigned_agent  TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'pending',
    created_at      TEXT NOT NULL,
    started_at      TEXT,
    completed_at    TEXT,
    result          TEXT,

    FOREIGN KEY (request_id) REFERENCES requests(request_id)
);
"""

# events 表 DDL
_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    event_id      TEXT PRIMARY KEY,
    request_id    TEXT,
    task_id       TEXT,
    state         TEXT NOT NULL,
    agent         TEXT NOT NULL,
    agent_name    TEXT NOT NULL DEFAULT '',
    agent_color   TEXT NOT NULL DEFAULT '#888',
    message       TEXT NOT NULL DEFAULT '',
    target_agent  TEXT,
    ts            TEXT NOT NULL,
    result        TEXT
);
"""

# 后续版本新增的列（表名 -> [(列名, 列定义)]），必须可空
_ADDITIVE_COLUMNS: dict[str, list[tuple[str, str]]] = {
    "requests": [
        ("external_message_id", "TEXT"),
        ("chain_id", "TEXT"),
        ("source", "TEXT"),
        ("work_started_at", "TEXT"),
        ("result", "TEXT"),
    ],
    "tasks": [
        ("result", "TEXT"),
    ],
    "events": [
        ("task_id", "TEXT"),
        ("target_agent", "TEXT"),
        ("result", "TEXT"),
    ],
}

_REQUESTS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_requests_state ON requests(state);",
    "CREATE INDEX IF NOT EXISTS idx_requests_created_at ON requests(created_at);",
    "CREATE INDEX IF NOT EXISTS idx_requests_assigned_agent ON requests(assigned_agent);",
    "CREATE INDEX IF NOT EXISTS idx_requests_chain_id ON requests(chain_id);",
    # 外部消息 ID 唯一约束（仅对非 NULL 值生效）
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_requests_external_message_id "
        "ON requests(external_message_id) WHERE external_message_id IS NOT NULL;"
    ),
]

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_assigned_agent ON tasks(assigned_agent);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_request_id ON tasks(request_id, created_at);",
]

_EVENTS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_events_request_id ON events(request_id);",
    "CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts DESC);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 增量迁移 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    await conn.execute(_REQUESTS_DDL)
    await conn.execute(_TASKS_DDL)
    await conn.execute(_EVENTS_DDL)

    # 旧库补列，索引依赖这些列，必须先于索引执行
    await ensure_columns(conn)

    # 创建索引
    for idx_sql in _REQUESTS_INDEXES + _TASKS_INDEXES + _EVENTS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def ensure_columns(conn: aiosqlite.Connection) -> list[str]:
    """为旧版本表补齐缺失的可空列

    Returns:
        新增的列（"table.column" 形式）
    """
    added: list[str] = []
    for table, columns in _ADDITIVE_COLUMNS.items():
        cursor = await conn.execute(f"PRAGMA table_info({table});")
        existing = {row[1] for row in await cursor.fetchall()}
        for name, decl in columns:
            if name in existing:
                continue
            await conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl};")
            added.append(f"{table}.{name}")
    return added


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
