"""TraceMiddleware -- 为单个工作流 Request 的查询绑定 trace_id"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ULID 长度
_ID_LENGTH = 26


def extract_trace_id(path: str) -> str | None:
    """从 /api/requests/{request_id} 提取 trace_id"""
    parts = path.strip("/").split("/")
    if len(parts) >= 3 and parts[0] == "api" and parts[1] == "requests":
        request_id = parts[2]
        if len(request_id) == _ID_LENGTH:
            return f"trace-{request_id}"
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """工作流追踪中间件"""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = extract_trace_id(request.url.path)
        if trace_id:
            structlog.contextvars.bind_contextvars(trace_id=trace_id)
        return await call_next(request)
