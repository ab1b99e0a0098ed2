"""structlog 配置

dev 模式：控制台可读输出；json 模式：结构化 JSON 输出。
Logfire 由 LOGFIRE_SEND_TO_LOGFIRE 控制，未启用时只输出本地日志。
"""

import logging
import os

import structlog


def setup_logging() -> None:
    """初始化 structlog

    OFFICEFLOW_LOG_FORMAT: "json" 或 "dev"（默认）
    OFFICEFLOW_LOG_LEVEL: 日志级别，默认 INFO
    """
    log_format = os.environ.get("OFFICEFLOW_LOG_FORMAT", "dev")
    log_level = os.environ.get("OFFICEFLOW_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # 标准库 logging（uvicorn / websockets）也走同一个 renderer
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def setup_logfire() -> bool:
    """可选启用 Logfire APM（需要 officeflow[logfire] 与 LOGFIRE_TOKEN）

    Returns:
        True 如果 Logfire 已启用
    """
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return False
    try:
        import logfire

        logfire.configure()
        logfire.instrument_fastapi()
    except Exception as e:
        structlog.get_logger().warning("logfire_init_failed", error_type=type(e).__name__)
        return False
    return True
