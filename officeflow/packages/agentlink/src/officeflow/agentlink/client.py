"""GatewayClient -- 运行时网关 WebSocket 客户端

握手：等待 connect.challenge -> 发送 connect 请求 -> 等待 connect-1 响应，
之后把 event 帧交给回调分发。连接失败或断开时链路状态置为 disconnected，
并按指数退避重连；永远不向调用方抛出。
"""

import asyncio
import json
import random
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import WebSocketException

from .config import AgentLinkConfig
from .exceptions import (
    HandshakeRejectedError,
    MalformedFrameError,
    UpstreamUnavailableError,
)
from .models import GatewayFrame, build_connect_request, parse_frame

log = structlog.get_logger()

# 事件回调：(event 名, payload)
EventHandler = Callable[[str, dict[str, Any]], Awaitable[None]]

# 断线回调：已建立的连接结束时调用
DisconnectHandler = Callable[[], None]

# 连接类异常类型集合（触发退避重连）
_CONNECTION_ERROR_TYPES = (
    OSError,
    TimeoutError,
    WebSocketException,
)


class LinkStatus(StrEnum):
    """链路状态"""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class GatewayClient:
    """运行时网关客户端

    用法：lifespan 中 create_task(client.run())，关闭时 await client.stop()。
    """

    def __init__(
        self,
        config: AgentLinkConfig,
        on_event: EventHandler,
        *,
        on_disconnect: DisconnectHandler | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """
        Args:
            config: 网关连接配置
            on_event: event 帧回调（tick/health 不会送达）
            on_disconnect: 已建立的连接断开时调用（含 stop）
            rng: 退避抖动使用的随机源
        """
        self._config = config
        self._on_event = on_event
        self._on_disconnect = on_disconnect
        self._rng = rng or random.Random()
        self._status = LinkStatus.DISCONNECTED
        self._stopping = asyncio.Event()
        self._ws: ClientConnection | None = None
        self._attempt = 0
        self._last_error: str | None = None
        self._connected_at: datetime | None = None
        self._frames_received = 0
        self._frames_dropped = 0

    @property
    def status(self) -> LinkStatus:
        return self._status

    @property
    def url(self) -> str:
        return self._config.url

    def snapshot(self) -> dict[str, Any]:
        """链路状态快照（供 /api/runtime 与 /ready 使用）"""
        return {
            "status": str(self._status),
            "url": self._config.url,
            "connected_at": self._connected_at.isoformat() if self._connected_at else None,
            "reconnect_attempt": self._attempt,
            "last_error": self._last_error,
            "frames_received": self._frames_received,
            "frames_dropped": self._frames_dropped,
        }

    def next_backoff(self, attempt: int) -> float:
        """第 attempt 次重连前的等待时长（秒），带 [0.5, 1.0] 倍随机抖动"""
        base = self._config.initial_backoff_s * (self._config.backoff_multiplier ** max(attempt, 0))
        delay = min(base, self._config.max_backoff_s)
        return delay * (0.5 + self._rng.random() / 2)

    async def run(self) -> None:
        """连接主循环，直到 stop() 被调用"""
        log.info("agentlink_started", url=self._config.url)
        while not self._stopping.is_set():
            try:
                await self._connect_once()
            except (UpstreamUnavailableError, HandshakeRejectedError) as e:
                self._last_error = str(e)
                log.warning(
                    "agentlink_connection_lost",
                    url=self._config.url,
                    error_type=type(e).__name__,
                    error=str(e),
                    attempt=self._attempt,
                )
            finally:
                was_connected = self._status == LinkStatus.CONNECTED
                self._ws = None
                self._status = LinkStatus.DISCONNECTED
                self._connected_at = None
                if was_connected and self._on_disconnect is not None:
                    self._on_disconnect()

            if self._stopping.is_set():
                break

            delay = self.next_backoff(self._attempt)
            self._attempt += 1
            log.info("agentlink_reconnect_scheduled", delay_s=round(delay, 2), attempt=self._attempt)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            except TimeoutError:
                pass
        log.info("agentlink_stopped", url=self._config.url)

    async def stop(self) -> None:
        """停止主循环并关闭当前连接"""
        self._stopping.set()
        if self._ws is not None:
            await self._ws.close()

    async def _connect_once(self) -> None:
        self._status = LinkStatus.CONNECTING
        token = self._config.token.get_secret_value()
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            async with connect(
                self._config.url,
                additional_headers=headers,
                origin=self._config.origin,
                open_timeout=self._config.handshake_timeout_s,
            ) as ws:
                self._ws = ws
                await self._handshake(ws)
                self._status = LinkStatus.CONNECTED
                self._connected_at = datetime.now(UTC)
                self._attempt = 0
                self._last_error = None
                log.info("agentlink_connected", url=self._config.url)

                async for raw in ws:
                    await self.handle_raw(raw)
        except HandshakeRejectedError:
            raise
        except _CONNECTION_ERROR_TYPES as e:
            if self._stopping.is_set():
                return
            raise UpstreamUnavailableError(self._config.url, e) from e

        if not self._stopping.is_set():
            raise UpstreamUnavailableError(
                self._config.url, ConnectionError("connection closed by gateway")
            )

    async def _handshake(self, ws: ClientConnection) -> None:
        """challenge -> connect -> res"""
        async with asyncio.timeout(self._config.handshake_timeout_s):
            while True:
                frame = self._parse(await ws.recv())
                if frame is None:
                    continue
                if frame.is_challenge:
                    request = build_connect_request(
                        self._config.token.get_secret_value(),
                        self._config.client_id,
                        self._config.protocol_version,
                    )
                    await ws.send(json.dumps(request))
                    log.debug("agentlink_connect_sent")
                    continue
                if frame.is_connect_response:
                    if not frame.handshake_ok:
                        raise HandshakeRejectedError(frame.error)
                    return
                await self._dispatch(frame)

    async def handle_raw(self, raw: str | bytes) -> None:
        """处理一条已握手连接上的原始帧"""
        frame = self._parse(raw)
        if frame is None:
            return
        if frame.is_keepalive or frame.type != "event":
            return
        await self._dispatch(frame)

    def _parse(self, raw: str | bytes) -> GatewayFrame | None:
        self._frames_received += 1
        try:
            return parse_frame(raw)
        except MalformedFrameError as e:
            self._frames_dropped += 1
            log.warning("agentlink_frame_dropped", reason=e.reason)
            return None

    async def _dispatch(self, frame: GatewayFrame) -> None:
        if frame.type != "event" or not frame.event or frame.is_keepalive:
            return
        try:
            await self._on_event(frame.event, frame.payload or {})
        except Exception as e:
            # 单帧处理失败只影响该信号
            log.error(
                "agentlink_event_handler_failed",
                frame_event=frame.event,
                error_type=type(e).__name__,
                error=str(e),
            )
