"""Request 查询路由

GET /api/requests: Request 列表，按 created_at 倒序，可只看非终态。
GET /api/requests/{request_id}: Request 详情，含 Task 与事件。
"""

from fastapi import APIRouter, Depends, Query
from starlette.responses import JSONResponse

from ..deps import get_store_group

router = APIRouter()


@router.get("/api/requests")
async def list_requests(
    limit: int = Query(default=20, ge=1, le=500),
    active: bool = Query(default=False, description="只返回非终态 Request"),
    store_group=Depends(get_store_group),
):
    requests = await store_group.request_store.list_requests(limit, active_only=active)
    return {"requests": [r.model_dump(mode="json") for r in requests]}


@router.get("/api/requests/{request_id}")
async def get_request_detail(
    request_id: str,
    store_group=Depends(get_store_group),
):
    """查询 Request 详情，包含其全部 Task（链式交接时多个）与事件"""
    request = await store_group.request_store.get_request(request_id)
    if request is None:
        return JSONResponse(
            status_code=404,
            content={
                "error": {
                    "code": "REQUEST_NOT_FOUND",
                    "message": f"Request with id {request_id} does not exist",
                }
            },
        )

    tasks = await store_group.task_store.list_tasks_for_request(request_id)
    events = await store_group.event_store.get_events_for_request(request_id)
    return {
        "request": request.model_dump(mode="json"),
        "tasks": [t.model_dump(mode="json") for t in tasks],
        "events": [e.model_dump(mode="json") for e in events],
    }
