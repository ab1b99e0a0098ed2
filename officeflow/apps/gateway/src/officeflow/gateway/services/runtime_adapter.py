"""RuntimeAdapter -- 外部 agent 运行时事件 -> 工作流操作

GatewayClient 的事件回调。帧按到达顺序串行处理，
跟踪状态（run_id / active Request 等）属于适配器实例，不是进程全局变量。
所有持久化变更都经由 WorkflowCoordinator 完成。
"""

import posixpath
from typing import Any

import structlog
from officeflow.agentlink import AgentEventPayload, ChatEventPayload
from officeflow.core.config import PREVIEW_LENGTH
from officeflow.core.text import clean_content, is_placeholder
from pydantic import ValidationError
from ulid import ULID

from .coordinator import WorkflowCoordinator

log = structlog.get_logger()

SPAWN_TOOL = "sessions_spawn"
FINISHED_JOB_STATES = frozenset({"done", "error", "aborted"})
IDLE_CHAT_STATES = frozenset({"delivered", "idle"})


def tool_label(name: str | None, args: dict[str, Any] | None) -> str:
    """工具调用的活动日志文案"""
    args = args or {}
    tool = (name or "").lower()
    if tool in ("read", "write", "edit"):
        path = args.get("path") or args.get("file_path") or "file"
        verb = {"read": "📄 Reading", "write": "✍️ Writing", "edit": "📝 Editing"}[tool]
        return f"{verb}: {posixpath.basename(str(path))}"[:PREVIEW_LENGTH]
    if tool == "exec":
        return f"💻 Exec: {str(args.get('command') or '')[:40]}"
    if tool == "web_search":
        return f"🔍 Searching: {str(args.get('query') or 'web')[:40]}"
    if tool == "web_fetch":
        return f"🌐 Fetching: {str(args.get('url') or 'URL')[:40]}"
    if tool == "browser":
        return f"🖥️ Browser: {args.get('action') or 'action'}"
    if tool == SPAWN_TOOL:
        return "🚀 Spawning sub-agent..."
    if tool == "cron":
        return f"⏰ Cron: {args.get('action') or 'action'}"
    if tool == "message":
        return "💬 Messaging..."
    if tool == "gateway":
        return f"⚙️ Gateway: {args.get('action') or 'action'}"
    return f"🛠️ {name or 'Tool'}"


def is_noise(text: str) -> bool:
    """心跳、命令与系统注入消息不是用户请求"""
    return text.startswith("Read HEARTBEAT") or "HEARTBEAT_OK" in text or text.startswith("/")


class RuntimeAdapter:
    """外部运行时适配器"""

    def __init__(self, coordinator: WorkflowCoordinator, *, adapter_id: str | None = None) -> None:
        self._coordinator = coordinator
        self.adapter_id = adapter_id or str(ULID())
        self.run_id: str | None = None
        self.active_request_id: str | None = None
        self.first_tool_seen = False
        self.streaming_started = False
        self.last_user_message: str | None = None

    @property
    def group(self) -> str:
        """本适配器节奏步骤的取消分组"""
        return f"runtime:{self.adapter_id}"

    def snapshot(self) -> dict[str, Any]:
        return {
            "adapterId": self.adapter_id,
            "runId": self.run_id,
            "activeRequestId": self.active_request_id,
            "streaming": self.streaming_started,
        }

    def handle_disconnect(self) -> None:
        """GatewayClient 断线回调：取消节奏步骤，清空本次运行的关联状态"""
        self._cancel_pacing()
        self._reset()
        log.info("runtime_tracking_cleared", adapter_id=self.adapter_id)

    async def handle_event(self, name: str, payload: dict[str, Any]) -> None:
        """GatewayClient 事件回调"""
        try:
            if name == "agent":
                await self._on_agent(AgentEventPayload.model_validate(payload))
            elif name == "chat":
                await self._on_chat(ChatEventPayload.model_validate(payload))
            else:
                log.debug("runtime_event_ignored", frame_event=name)
        except ValidationError as e:
            log.warning("runtime_payload_invalid", frame_event=name, errors=e.error_count())

    # ============================================================
    # agent 事件
    # ============================================================

    async def _on_agent(self, payload: AgentEventPayload) -> None:
        if payload.run_id and payload.run_id != self.run_id:
            await self._start_run(payload.run_id)

        data = payload.data
        if payload.stream == "lifecycle":
            phase = data.get("phase")
            if phase == "start":
                await self._on_lifecycle_start()
            elif phase == "end":
                await self._on_lifecycle_end()
        elif payload.stream == "job":
            state = data.get("state")
            if state == "started":
                await self._ensure_request()
            elif state in FINISHED_JOB_STATES:
                await self._finish_active(reason=f"job:{state}")
        elif payload.stream == "tool":
            if data.get("phase") == "start":
                await self._on_tool_start(data.get("name"), data.get("args") or {})
        elif payload.stream == "user":
            await self._on_user(str(data.get("text") or data.get("content") or ""))
        elif payload.stream == "assistant":
            await self._on_assistant()

    async def _start_run(self, run_id: str) -> None:
        """新 runId：重置跟踪状态，并预先关联最早的待处理 Request"""
        self._cancel_pacing()
        self.run_id = run_id
        self.active_request_id = None
        self.first_tool_seen = False
        self.streaming_started = False

        pending = await self._coordinator.peek_pending()
        if pending is not None:
            self.active_request_id = pending.request_id
        log.info("runtime_run_started", run_id=run_id, request_id=self.active_request_id)

    async def _on_lifecycle_start(self) -> None:
        request, created = await self._coordinator.open_placeholder_request(self.active_request_id)
        self.active_request_id = request.request_id
        if created:
            log.info("runtime_placeholder_created", request_id=request.request_id)
            return
        self._coordinator.begin_run(
            request.request_id,
            group=self.group,
            fallback_text=self.last_user_message,
        )

    async def _on_lifecycle_end(self) -> None:
        self._cancel_pacing()
        request_id = self.active_request_id
        if request_id is None:
            oldest = await self._coordinator.oldest_incomplete()
            request_id = oldest.request_id if oldest else None
        await self._coordinator.complete_passive(request_id, fallback_title=self.last_user_message)
        self._reset()

    async def _on_tool_start(self, name: str | None, args: dict[str, Any]) -> None:
        request_id = await self._ensure_request()
        if request_id is None:
            return

        worker = args.get("agentId")
        if name == SPAWN_TOOL and worker:
            self._cancel_pacing()
            self.first_tool_seen = True
            await self._coordinator.delegate_to_worker(
                request_id, str(worker), str(args.get("task") or "task")
            )
            return

        if not self.first_tool_seen:
            self.first_tool_seen = True
            self._cancel_pacing()
        if await self._coordinator.mark_working(request_id):
            self._cancel_pacing()
        await self._coordinator.record_activity(request_id, tool_label(name, args))

    async def _on_user(self, text: str) -> None:
        if not text or is_noise(text):
            return
        self.last_user_message = text
        clean = clean_content(text)
        if len(clean) < 2 or clean.startswith("System:") or "[Queued" in clean:
            return
        if self.active_request_id is not None:
            # lifecycle:start 先于 user 流到达时，active Request 仍是占位符
            await self._coordinator.adopt_content(self.active_request_id, clean)
            return

        pending = await self._coordinator.peek_pending()
        if pending is not None:
            self.active_request_id = pending.request_id
            if is_placeholder(pending.content):
                await self._coordinator.adopt_content(pending.request_id, clean)
            return
        request = await self._coordinator.create_from_user(clean)
        self.active_request_id = request.request_id

    async def _on_assistant(self) -> None:
        if self.streaming_started:
            return
        self.streaming_started = True
        request_id = await self._ensure_request()
        if request_id is None:
            return
        if await self._coordinator.mark_working(
            request_id,
            responding=True,
            fallback_text=self.last_user_message,
        ):
            self._cancel_pacing()

    # ============================================================
    # chat 事件
    # ============================================================

    async def _on_chat(self, payload: ChatEventPayload) -> None:
        if payload.state in IDLE_CHAT_STATES:
            await self._finish_active(reason=f"chat:{payload.state}")

    # ============================================================
    # 内部
    # ============================================================

    async def _ensure_request(self) -> str | None:
        request = await self._coordinator.track_request(self.active_request_id)
        self.active_request_id = request.request_id if request else None
        return self.active_request_id

    async def _finish_active(self, *, reason: str) -> None:
        self._cancel_pacing()
        if self.active_request_id is None:
            return
        outcome = await self._coordinator.complete_passive(
            self.active_request_id,
            fallback_title=self.last_user_message,
        )
        log.info(
            "runtime_run_finished",
            request_id=self.active_request_id,
            reason=reason,
            skipped_delegated=bool(outcome.skipped_delegated),
        )
        self._reset()

    def _cancel_pacing(self) -> None:
        self._coordinator.scheduler.cancel_group(self.group)

    def _reset(self) -> None:
        self.active_request_id = None
        self.run_id = None
        self.streaming_started = False
