"""WorkflowStreamWatcher -- /api/workflow/stream 的参考订阅者

逐行解析 SSE，按命名事件回调。
连接断开、HTTP 错误或静默超过 silence_timeout（心跳注释也算活动）时强制重连。

既可作为库使用，也可在命令行订阅并打印事件：
  officeflow-watch [URL]
  python -m officeflow.gateway.services.watcher [URL]
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable

import httpx
import structlog
from officeflow.core.config import SSE_SILENCE_TIMEOUT
from pydantic import BaseModel, Field

log = structlog.get_logger()

DEFAULT_STREAM_URL = "http://127.0.0.1:8000/api/workflow/stream"


class SSEMessage(BaseModel):
    """一条完整的 SSE 消息"""

    event: str = Field(default="message", description="事件名")
    data: str = Field(default="", description="数据（多行以换行拼接）")
    id: str | None = Field(default=None, description="事件 ID")


class SSEParser:
    """增量 SSE 行解析器，空行结束一条消息"""

    def __init__(self) -> None:
        self._event: str | None = None
        self._data: list[str] = []
        self._id: str | None = None

    def feed(self, line: str) -> SSEMessage | None:
        line = line.rstrip("\r")
        if not line:
            return self._flush()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            self._id = value
        return None

    def _flush(self) -> SSEMessage | None:
        if self._event is None and not self._data:
            return None
        message = SSEMessage(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._id,
        )
        self._event, self._data, self._id = None, [], None
        return message


MessageHandler = Callable[[SSEMessage], Awaitable[None]]


class WorkflowStreamWatcher:
    """SSE 订阅客户端"""

    def __init__(
        self,
        url: str,
        on_message: MessageHandler,
        *,
        silence_timeout: float = SSE_SILENCE_TIMEOUT,
        reconnect_delay_s: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._on_message = on_message
        self._silence_timeout = silence_timeout
        self._reconnect_delay_s = reconnect_delay_s
        self._client = client
        self._stopping = asyncio.Event()
        self.connections = 0
        self.messages_received = 0
        self.silence_reconnects = 0

    def stop(self) -> None:
        self._stopping.set()

    async def run(self) -> None:
        """订阅主循环，直到 stop() 被调用"""
        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))
        try:
            while not self._stopping.is_set():
                try:
                    await self._watch_once(client)
                except TimeoutError:
                    self.silence_reconnects += 1
                    log.warning(
                        "stream_silence_reconnect",
                        url=self._url,
                        silence_timeout=self._silence_timeout,
                    )
                except httpx.HTTPError as e:
                    log.warning(
                        "stream_connection_failed",
                        url=self._url,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                if self._stopping.is_set():
                    break
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self._reconnect_delay_s)
                except TimeoutError:
                    pass
        finally:
            if owns_client:
                await client.aclose()

    async def _watch_once(self, client: httpx.AsyncClient) -> None:
        async with client.stream(
            "GET",
            self._url,
            headers={"Accept": "text/event-stream"},
        ) as response:
            response.raise_for_status()
            self.connections += 1
            log.info("stream_connected", url=self._url, connections=self.connections)
            parser = SSEParser()
            lines = response.aiter_lines()
            while not self._stopping.is_set():
                try:
                    async with asyncio.timeout(self._silence_timeout):
                        line = await anext(lines)
                except StopAsyncIteration:
                    log.info("stream_closed_by_server", url=self._url)
                    return
                message = parser.feed(line)
                if message is None:
                    continue
                self.messages_received += 1
                await self._on_message(message)


async def print_message(message: SSEMessage) -> None:
    """命令行回调：逐条打印事件"""
    print(f"[{message.event}] {message.data}")


def main() -> None:
    """CLI 主入口"""
    url = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_STREAM_URL
    print(f"订阅: {url}")
    watcher = WorkflowStreamWatcher(url, print_message)
    try:
        asyncio.run(watcher.run())
    except KeyboardInterrupt:
        watcher.stop()


if __name__ == "__main__":
    main()
