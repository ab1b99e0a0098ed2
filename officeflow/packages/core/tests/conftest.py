"""packages/core 测试配置 -- 核心层 fixture"""

from datetime import UTC, datetime

import pytest
from officeflow.core.models import Request, RequestState, Task, TaskStatus
from ulid import ULID


@pytest.fixture
def make_request():
    """构造未落盘的 Request"""

    def _make(content: str = "整理本周报表", **overrides) -> Request:
        fields = {
            "request_id": str(ULID()),
            "content": content,
            "state": RequestState.RECEIVED,
            "created_at": datetime.now(UTC),
        }
        fields.update(overrides)
        return Request(**fields)

    return _make


@pytest.fixture
def make_task():
    """构造未落盘的 Task"""

    def _make(request_id: str, assigned_agent: str = "main", **overrides) -> Task:
        fields = {
            "task_id": str(ULID()),
            "request_id": request_id,
            "title": "整理本周报表",
            "detail": "整理本周报表",
            "assigned_agent": assigned_agent,
            "status": TaskStatus.PENDING,
            "created_at": datetime.now(UTC),
        }
        fields.update(overrides)
        return Task(**fields)

    return _make
