"""工作流动作路由

POST /api/workflow: JSON 动作 API（start_flow / agent_complete / delegate_complete /
    manual_complete / clear_pipeline / debug_events / repair_events / cleanup_stale）
GET /api/workflow: 事件分页、active Request、Task 列表与默认概览

请求体与响应体使用 camelCase；实体（Request / Task / Event）保持 snake_case。
"""

from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request
from officeflow.core.models import CompletionResult
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from starlette.responses import JSONResponse

from ..deps import get_coordinator, get_store_group
from ..services.coordinator import WorkflowCoordinator

log = structlog.get_logger()

router = APIRouter()


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


class ActionBody(BaseModel):
    """动作请求体基类"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    action: str


class StartFlowBody(ActionBody):
    content: str = Field(min_length=1, description="请求内容")
    sender: str = Field(default="Boss", alias="from", description="发送者")
    agent: str | None = Field(default=None, description="处理 agent，默认编排者")
    message_id: str | None = Field(default=None, description="外部消息 ID")
    delegated_to: str | None = Field(default=None, description="委派目标 worker")
    chain_id: str | None = Field(default=None, description="链式交接标识")

    @field_validator("message_id", mode="before")
    @classmethod
    def _coerce_message_id(cls, value: Any) -> Any:
        # Telegram message_id 为整数
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class AgentCompleteBody(ActionBody):
    agent: str = Field(min_length=1)
    result: str | None = None
    success: bool = True


class DelegateCompleteBody(ActionBody):
    request_id: str | None = None
    task_id: str | None = None
    agent: str | None = None
    result: str | None = None
    success: bool = True


class ManualCompleteBody(ActionBody):
    request_id: str = Field(min_length=1)
    result: str | None = None


class ClearPipelineBody(ActionBody):
    reason: str = "Session reset"


class DebugEventsBody(ActionBody):
    limit: int = Field(default=50, ge=1, le=500)


def _completion_response(result: CompletionResult) -> JSONResponse | dict:
    if result.error_code:
        return error_response(404, result.error_code, result.message or "Not found")
    return result.to_response()


async def _start_flow(coordinator: WorkflowCoordinator, body: StartFlowBody) -> dict:
    result = await coordinator.start_flow(
        body.content,
        sender=body.sender,
        agent=body.agent,
        external_message_id=body.message_id,
        delegated_to=body.delegated_to,
        chain_id=body.chain_id,
    )
    return result.to_response()


async def _agent_complete(coordinator: WorkflowCoordinator, body: AgentCompleteBody):
    result = await coordinator.complete_by_agent(
        body.agent,
        result=body.result,
        success=body.success,
    )
    return _completion_response(result)


async def _delegate_complete(coordinator: WorkflowCoordinator, body: DelegateCompleteBody):
    if not body.task_id and not body.request_id:
        return error_response(400, "INVALID_PAYLOAD", "taskId or requestId is required")
    result = await coordinator.complete_task(
        task_id=body.task_id,
        request_id=body.request_id,
        agent=body.agent,
        result=body.result,
        success=body.success,
    )
    return _completion_response(result)


async def _manual_complete(coordinator: WorkflowCoordinator, body: ManualCompleteBody):
    result = await coordinator.complete_request(body.request_id, result=body.result)
    return _completion_response(result)


async def _clear_pipeline(coordinator: WorkflowCoordinator, body: ClearPipelineBody) -> dict:
    result = await coordinator.clear_pipeline(body.reason)
    return result.to_response()


async def _debug_events(coordinator: WorkflowCoordinator, body: DebugEventsBody) -> dict:
    return await coordinator.find_placeholder_events(body.limit)


async def _repair_events(coordinator: WorkflowCoordinator, body: ActionBody) -> dict:
    result = await coordinator.repair_placeholder_events()
    return result.to_response()


async def _cleanup_stale(coordinator: WorkflowCoordinator, body: ActionBody) -> dict:
    # 已废弃：Task 只通过显式完成动作关闭
    return {
        "success": True,
        "cleaned": 0,
        "message": "Timer-based cleanup removed. Use agent_complete or delegate_complete.",
    }


_ACTIONS: dict[str, tuple[type[ActionBody], Callable[..., Awaitable[Any]]]] = {
    "start_flow": (StartFlowBody, _start_flow),
    "agent_complete": (AgentCompleteBody, _agent_complete),
    "delegate_complete": (DelegateCompleteBody, _delegate_complete),
    "manual_complete": (ManualCompleteBody, _manual_complete),
    "clear_pipeline": (ClearPipelineBody, _clear_pipeline),
    "debug_events": (DebugEventsBody, _debug_events),
    "repair_events": (ActionBody, _repair_events),
    "cleanup_stale": (ActionBody, _cleanup_stale),
}


@router.post("/api/workflow")
async def workflow_action(
    request: Request,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
):
    """执行工作流动作

    - 未知 action 返回 400 INVALID_ACTION
    - 请求体校验失败返回 400 INVALID_PAYLOAD
    - Task / Request 不存在返回 404
    """
    try:
        data = await request.json()
    except ValueError:
        return error_response(400, "INVALID_PAYLOAD", "Request body must be valid JSON")
    if not isinstance(data, dict):
        return error_response(400, "INVALID_PAYLOAD", "Request body must be a JSON object")

    action = data.get("action")
    entry = _ACTIONS.get(action) if isinstance(action, str) else None
    if entry is None:
        return error_response(400, "INVALID_ACTION", f"Unknown action: {action}")

    body_model, handler = entry
    try:
        body = body_model.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        return error_response(400, "INVALID_PAYLOAD", f"Invalid fields: {fields}")

    log.info("workflow_action", action=action)
    return await handler(coordinator, body)


@router.get("/api/workflow")
async def workflow_overview(
    type: str | None = Query(default=None, description="events / active / tasks"),
    limit: int | None = Query(default=None, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    active: bool = Query(default=False, description="type=tasks 时只返回非终态 Task"),
    store_group=Depends(get_store_group),
):
    """查询工作流数据"""
    if type == "events":
        page_size = limit or 50
        events = await store_group.event_store.list_recent(page_size, offset)
        total = await store_group.event_store.count_events()
        return {
            "events": [e.model_dump(mode="json") for e in events],
            "total": total,
            "limit": page_size,
            "offset": offset,
            "hasMore": offset + len(events) < total,
        }

    if type == "active":
        requests = await store_group.request_store.list_requests(limit or 10, active_only=True)
        return {"requests": [r.model_dump(mode="json") for r in requests]}

    if type == "tasks":
        tasks = await store_group.task_store.list_tasks(limit or 20, active_only=active)
        return {"tasks": [t.model_dump(mode="json") for t in tasks]}

    requests = await store_group.request_store.list_requests(20)
    events = await store_group.event_store.list_recent(30)
    tasks = await store_group.task_store.list_tasks(10)
    return {
        "requests": [r.model_dump(mode="json") for r in requests],
        "events": [e.model_dump(mode="json") for e in events],
        "tasks": [t.model_dump(mode="json") for t in tasks],
    }
