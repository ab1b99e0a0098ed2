"""LoggingMiddleware -- 每个 HTTP 请求一个 request_id

注意这里的 request_id 是 HTTP 请求标识，写入日志上下文与 X-Request-ID 响应头，
与工作流中的 Request 实体无关。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

# 健康检查不记录请求日志
_QUIET_PATHS = ("/health",)


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = str(ULID())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        log = structlog.get_logger()
        quiet = request.url.path in _QUIET_PATHS
        if not quiet:
            await log.ainfo("http_request_started")

        response = await call_next(request)

        if not quiet:
            await log.ainfo("http_request_completed", status_code=response.status_code)
        response.headers["X-Request-ID"] = request_id
        return response
