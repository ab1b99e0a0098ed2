"""WorkflowCoordinator -- Request/Task 状态流转协调器

实现三个入站渠道共享的编排流程：
1. 关联解析（CorrelationResolver）后创建/复用 Request
2. 创建 Task，并按规范映射同步 Request.state
3. 每次状态变更：落盘 + 追加事件 + 发布到 EventBus
4. UI 节奏步骤交给 DelayedScheduler，写入前重新读取持久化状态

并发约束：单个 asyncio.Lock 串行化每个 "读取-检查-写入" 单元，
延迟等待期间不持锁；终态判定由 CAS 更新兜底。
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from functools import partial
from typing import Any

import structlog
from officeflow.core.agents import AgentRegistry
from officeflow.core.config import (
    PREVIEW_LENGTH,
    RUNTIME_CONTENT_LENGTH,
    SHORT_PREVIEW_LENGTH,
    TITLE_LENGTH,
    WEBHOOK_CONTENT_LENGTH,
    get_orchestrator,
)
from officeflow.core.models import (
    CHAIN_RETURN_EVENT_STATE,
    DELIVERING_EVENT_STATE,
    STATUS_TO_STATE,
    SYSTEM_EVENT_STATE,
    ClearResult,
    CompletionResult,
    Event,
    FlowResult,
    InboundSignal,
    NotificationKind,
    RepairResult,
    Request,
    RequestSource,
    RequestState,
    Task,
    TaskStatus,
    is_behind,
    validate_transition,
)
from officeflow.core.repair import (
    find_broken_events,
    fix_placeholder_events,
    repair_all_placeholder_events,
)
from officeflow.core.scheduler import DelayedScheduler
from officeflow.core.store import StoreGroup
from officeflow.core.store.transaction import (
    apply_transition,
    complete_all_active,
    create_task_for_request,
)
from officeflow.core.text import PLACEHOLDER, clean_content, is_placeholder, preview
from ulid import ULID

from .activity import agent_badge, build_event
from .correlation import CorrelationResolver, Resolution
from .event_bus import EventBus

log = structlog.get_logger()

# start_flow 节奏偏移（秒）
ANALYZE_DELAY_S = 0.5
TASK_CREATED_DELAY_S = 1.2
ASSIGNED_DELAY_S = 1.8
IN_PROGRESS_DELAY_S = 3.5
# 链式续接：复核步骤与整体后移
CHAIN_REVIEW_DELAY_S = 1.5
CHAIN_OFFSET_S = 2.5
# agent_complete 后的回传动画
RETURN_DELAY_S = 0.5
DELIVERING_DELAY_S = 2.5
# webhook 入站自动进入 analyzing
WEBHOOK_ANALYZE_DELAY_S = 0.8
# 运行时 lifecycle:start 后的推进
RUN_ANALYZE_DELAY_S = 0.8
RUN_FALLBACK_DELAY_S = 8.0
RUN_FALLBACK_STEP_S = 0.8
# sessions_spawn 委派
SPAWN_ASSIGN_DELAY_S = 0.5
SPAWN_WORK_DELAY_S = 1.0

MessageFactory = str | Callable[[Request], str]


def _now() -> datetime:
    return datetime.now(UTC)


def _elapsed_ms(start: datetime | None, end: datetime) -> int | None:
    if start is None:
        return None
    return max(int((end - start).total_seconds() * 1000), 0)


class WorkflowCoordinator:
    """工作流协调器 -- 所有状态变更的唯一入口"""

    def __init__(
        self,
        store_group: StoreGroup,
        bus: EventBus,
        registry: AgentRegistry,
        scheduler: DelayedScheduler,
        *,
        orchestrator: str | None = None,
    ) -> None:
        self._stores = store_group
        self._bus = bus
        self._registry = registry
        self._scheduler = scheduler
        self._orchestrator = orchestrator or get_orchestrator()
        self._resolver = CorrelationResolver(store_group, registry, self._orchestrator)
        self._lock = asyncio.Lock()

    @property
    def orchestrator(self) -> str:
        return self._orchestrator

    @property
    def scheduler(self) -> DelayedScheduler:
        return self._scheduler

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    @property
    def resolver(self) -> CorrelationResolver:
        return self._resolver

    def is_delegated(self, agent: str | None) -> bool:
        """agent 是否为编排者以外的 worker"""
        return bool(agent) and agent != self._orchestrator

    # ============================================================
    # 入站
    # ============================================================

    async def receive_message(
        self,
        content: str,
        *,
        sender: str,
        external_message_id: str | None = None,
        source: RequestSource = RequestSource.TELEGRAM_WEBHOOK,
    ) -> tuple[Request, bool]:
        """webhook 入口：按外部消息 ID 去重后创建 Request

        Returns:
            (request, created) -- created=False 表示重复消息
        """
        text = preview(content, WEBHOOK_CONTENT_LENGTH)
        async with self._lock:
            if external_message_id:
                existing = await self._stores.request_store.find_by_external_message_id(
                    external_message_id
                )
                if existing is not None:
                    log.info(
                        "inbound_duplicate_skipped",
                        request_id=existing.request_id,
                        external_message_id=external_message_id,
                    )
                    return existing, False

            resolution = await self._resolver.create(
                InboundSignal(
                    external_message_id=external_message_id,
                    content=text,
                    sender=sender,
                    source=source,
                ),
                event_message=f'📥 Message from {sender}: "{preview(text, PREVIEW_LENGTH)}"',
            )
            await self._publish_resolution(resolution)
            request = resolution.request
            await self._bus.publish(
                NotificationKind.MESSAGE,
                {
                    "request_id": request.request_id,
                    "sender": sender,
                    "content": text,
                    "external_message_id": external_message_id,
                    "source": str(source),
                },
            )

        short = preview(clean_content(text), SHORT_PREVIEW_LENGTH)
        self._scheduler.schedule(
            WEBHOOK_ANALYZE_DELAY_S,
            partial(
                self._advance,
                request.request_id,
                RequestState.ANALYZING,
                agent=self._orchestrator,
                message=f'🔍 Analyzing: "{short}"',
                require_behind=True,
            ),
            group=request.request_id,
        )
        return request, True

    async def start_flow(
        self,
        content: str,
        *,
        sender: str = "Boss",
        agent: str | None = None,
        external_message_id: str | None = None,
        delegated_to: str | None = None,
        chain_id: str | None = None,
    ) -> FlowResult:
        """开始处理：关联/创建 Request 并创建 Task

        自处理：Task 立即 in_progress，稍后补一条 analyzing 事件。
        委派：Task 为 pending，随后 analyzing -> task_created -> assigned -> in_progress，
        后三步归属 worker。链式续接先写入 chain_return 事件并插入 reviewing。
        """
        agent = agent or self._orchestrator
        final_agent = delegated_to or agent
        delegated = self.is_delegated(delegated_to)
        clean = clean_content(content)
        fresh_chain_id = chain_id or f"chain_{ULID()}"

        async with self._lock:
            previous = (
                await self._stores.request_store.find_last_completed_in_chain(chain_id)
                if chain_id
                else None
            )
            resolution = await self._resolver.resolve(
                InboundSignal(
                    external_message_id=external_message_id,
                    content=content,
                    chain_id=chain_id,
                    sender=sender,
                    assigned_agent=final_agent,
                    source=RequestSource.API,
                )
            )
            await self._publish_resolution(resolution)
            request = resolution.request
            effective_chain_id = request.chain_id or fresh_chain_id

            if request.is_terminal:
                return FlowResult(
                    request_id=request.request_id,
                    chain_id=effective_chain_id,
                    adopted=resolution.adopted,
                    already_completed=True,
                    agent=final_agent,
                    delegated=delegated,
                    message="Request already completed",
                )

            existing = await self._stores.task_store.get_latest_task_for_request(
                request.request_id
            )
            if existing is not None and not existing.is_terminal:
                return FlowResult(
                    request_id=request.request_id,
                    task_id=existing.task_id,
                    chain_id=effective_chain_id,
                    adopted=True,
                    agent=existing.assigned_agent,
                    delegated=self.is_delegated(existing.assigned_agent),
                    message="Task already active",
                )

            # 新的权威信号取代该 Request 尚未执行的节奏步骤
            self._scheduler.cancel_group(request.request_id)

            now = _now()
            status = TaskStatus.PENDING if delegated else TaskStatus.IN_PROGRESS
            task = Task(
                task_id=str(ULID()),
                request_id=request.request_id,
                title=preview(clean, TITLE_LENGTH),
                detail=clean,
                assigned_agent=final_agent,
                status=status,
                created_at=now,
                started_at=None if delegated else now,
            )
            request_changes: dict[str, Any] = {"assigned_agent": final_agent}
            # webhook 节奏可能已推进到 analyzing，映射状态不倒退
            if is_behind(request.state, STATUS_TO_STATE[status]):
                request_changes["state"] = STATUS_TO_STATE[status]
            if not delegated:
                request_changes["work_started_at"] = now
            if request.chain_id is None:
                request_changes["chain_id"] = effective_chain_id

            created = await create_task_for_request(
                self._stores.conn,
                self._stores.task_store,
                self._stores.request_store,
                task,
                request_changes,
            )
            if not created:
                return FlowResult(
                    request_id=request.request_id,
                    chain_id=effective_chain_id,
                    adopted=resolution.adopted,
                    already_completed=True,
                    agent=final_agent,
                    delegated=delegated,
                    message="Request already completed",
                )
            await self._publish_task(task.task_id)
            await self._publish_request(request.request_id)

            previous_agent = previous.assigned_agent if previous else None
            if previous_agent:
                await self._transition(
                    event=build_event(
                        self._registry,
                        request_id=request.request_id,
                        state=CHAIN_RETURN_EVENT_STATE,
                        agent=previous_agent,
                        message=(
                            f"📨 {self._registry.display_name(previous_agent)} returning "
                            f"results to {self._registry.display_name(self._orchestrator)}"
                        ),
                        target_agent=self._orchestrator,
                    )
                )

        self._schedule_flow_pacing(
            request.request_id,
            task,
            worker=final_agent if delegated else None,
            chain_continuation=previous is not None,
            previous_agent=previous_agent,
        )

        log.info(
            "flow_started",
            request_id=request.request_id,
            task_id=task.task_id,
            adopted=resolution.adopted,
            via=resolution.via,
            agent=final_agent,
            delegated=delegated,
            chain_continuation=previous is not None,
        )
        return FlowResult(
            request_id=request.request_id,
            task_id=task.task_id,
            chain_id=effective_chain_id,
            adopted=resolution.adopted,
            agent=final_agent,
            delegated=delegated,
            chain_continuation=previous is not None,
            previous_agent=previous_agent,
            message=(
                f"Request created: {preview(content, SHORT_PREVIEW_LENGTH)} → "
                f"{self._registry.display_name(final_agent)}"
            ),
        )

    def _schedule_flow_pacing(
        self,
        request_id: str,
        task: Task,
        *,
        worker: str | None,
        chain_continuation: bool,
        previous_agent: str | None,
    ) -> None:
        short = preview(task.detail, SHORT_PREVIEW_LENGTH)
        offset = CHAIN_OFFSET_S if chain_continuation else 0.0
        step = partial(self._advance, request_id, task_id=task.task_id)

        steps = []
        if chain_continuation and previous_agent:
            steps.append(
                (
                    CHAIN_REVIEW_DELAY_S,
                    partial(
                        step,
                        RequestState.REVIEWING,
                        agent=self._orchestrator,
                        message=(
                            "🔄 Reviewing results from "
                            f"{self._registry.display_name(previous_agent)}..."
                        ),
                    ),
                )
            )
        steps.append(
            (
                offset + ANALYZE_DELAY_S,
                partial(
                    step,
                    RequestState.ANALYZING,
                    agent=self._orchestrator,
                    message=f'🔍 Analyzing: "{short}"',
                    require_behind=worker is not None,
                ),
            )
        )
        if worker:
            badge = agent_badge(self._registry, worker)
            name = self._registry.display_name(worker)
            steps.extend(
                [
                    (
                        offset + TASK_CREATED_DELAY_S,
                        partial(
                            step,
                            RequestState.TASK_CREATED,
                            agent=worker,
                            message=f'📋 Task → {badge}: "{task.title}"',
                        ),
                    ),
                    (
                        offset + ASSIGNED_DELAY_S,
                        partial(
                            step,
                            RequestState.ASSIGNED,
                            agent=worker,
                            message=f"📧 {badge} taking over",
                            task_status=TaskStatus.ASSIGNED,
                            assign_to=worker,
                        ),
                    ),
                    (
                        offset + IN_PROGRESS_DELAY_S,
                        partial(
                            step,
                            RequestState.IN_PROGRESS,
                            agent=worker,
                            message=f"⚡ {name} working...",
                            task_status=TaskStatus.IN_PROGRESS,
                        ),
                    ),
                ]
            )
        self._scheduler.schedule_sequence(steps, group=request_id)

    # ============================================================
    # 完成
    # ============================================================

    async def complete_by_agent(
        self,
        agent: str,
        *,
        result: str | None = None,
        success: bool = True,
    ) -> CompletionResult:
        """agent_complete：完成该 agent 当前的 active Task"""
        async with self._lock:
            task = await self._stores.task_store.get_active_task_by_agent(agent)
            if task is None:
                return CompletionResult(noop=True, message=f"No active task for {agent}")
            outcome = await self._finish_task(task, agent=agent, result=result, success=success)

        if outcome.mutated and self.is_delegated(agent):
            self._schedule_return(task.request_id, agent)
        return outcome

    async def complete_task(
        self,
        *,
        task_id: str | None = None,
        request_id: str | None = None,
        agent: str | None = None,
        result: str | None = None,
        success: bool = True,
    ) -> CompletionResult:
        """delegate_complete：按 task_id（优先）或 request_id 完成 Task"""
        async with self._lock:
            task = None
            if task_id:
                task = await self._stores.task_store.get_task(task_id)
            elif request_id:
                task = await self._stores.task_store.get_latest_task_for_request(request_id)
            if task is None:
                return CompletionResult(
                    success=False,
                    request_id=request_id,
                    task_id=task_id,
                    error_code="TASK_NOT_FOUND",
                    message="Task not found",
                )
            if task.is_terminal:
                return CompletionResult(
                    request_id=task.request_id,
                    task_id=task.task_id,
                    already_completed=True,
                    message="Task already completed",
                )
            return await self._finish_task(
                task,
                agent=agent or task.assigned_agent,
                result=result,
                success=success,
            )

    async def complete_request(
        self,
        request_id: str,
        *,
        result: str | None = None,
    ) -> CompletionResult:
        """manual_complete：直接完成 Request 及其 active Task"""
        async with self._lock:
            request = await self._stores.request_store.get_request(request_id)
            if request is None:
                return CompletionResult(
                    success=False,
                    request_id=request_id,
                    error_code="REQUEST_NOT_FOUND",
                    message="Request not found",
                )
            if request.is_terminal:
                return CompletionResult(
                    request_id=request_id,
                    already_completed=True,
                    message="Request already completed",
                )

            now = _now()
            task = await self._stores.task_store.get_latest_task_for_request(request_id)
            task_changes = None
            if task is not None and not task.is_terminal:
                task_changes = {
                    "status": TaskStatus.COMPLETED,
                    "completed_at": now,
                    "result": result,
                }
            title = task.title if task else preview(clean_content(request.content), SHORT_PREVIEW_LENGTH)
            agent = request.assigned_agent or self._orchestrator
            ok = await self._transition(
                request_id=request_id,
                request_changes={
                    "state": RequestState.COMPLETED,
                    "completed_at": now,
                    "result": result,
                },
                task_id=task.task_id if task_changes else None,
                task_changes=task_changes,
                event=build_event(
                    self._registry,
                    request_id=request_id,
                    task_id=task.task_id if task else None,
                    state=RequestState.COMPLETED,
                    agent=agent,
                    message=f'✅ Completed: "{title}" - {result or "Done"}',
                    result=result,
                ),
            )
            if not ok:
                return CompletionResult(request_id=request_id, already_completed=True)
            self._scheduler.cancel_group(request_id)

        log.info("request_completed_manually", request_id=request_id)
        return CompletionResult(
            request_id=request_id,
            task_id=task.task_id if task else None,
            task_time_ms=_elapsed_ms(request.work_started_at, now),
        )

    async def complete_passive(
        self,
        request_id: str | None,
        *,
        fallback_title: str | None = None,
    ) -> CompletionResult:
        """运行时被动完成（lifecycle:end / job 结束 / chat delivered）

        委派保护：Task（无 Task 时看 Request）的负责 agent 不是编排者时不做任何变更。
        """
        if not request_id:
            return CompletionResult(noop=True, message="No request to complete")

        async with self._lock:
            request = await self._stores.request_store.get_request(request_id)
            if request is None:
                return CompletionResult(
                    request_id=request_id,
                    noop=True,
                    message="No request to complete",
                )
            if request.is_terminal:
                return CompletionResult(request_id=request_id, already_completed=True)

            task = await self._stores.task_store.get_latest_task_for_request(request_id)
            owner = task.assigned_agent if task else request.assigned_agent
            if self.is_delegated(owner):
                log.info(
                    "passive_completion_skipped_delegated",
                    request_id=request_id,
                    task_id=task.task_id if task else None,
                    assigned_agent=owner,
                )
                return CompletionResult(
                    request_id=request_id,
                    task_id=task.task_id if task else None,
                    skipped_delegated=True,
                )

            now = _now()
            task_changes = None
            if task is not None and not task.is_terminal:
                task_changes = {"status": TaskStatus.COMPLETED, "completed_at": now}
            title = (
                (task.title if task else None)
                or (request.content if not is_placeholder(request.content) else None)
                or fallback_title
                or "task"
            )
            agent = request.assigned_agent or self._orchestrator
            ok = await self._transition(
                request_id=request_id,
                request_changes={"state": RequestState.COMPLETED, "completed_at": now},
                task_id=task.task_id if task_changes else None,
                task_changes=task_changes,
                event=build_event(
                    self._registry,
                    request_id=request_id,
                    task_id=task.task_id if task else None,
                    state=RequestState.COMPLETED,
                    agent=agent,
                    message=f'✅ Done: "{preview(clean_content(title), PREVIEW_LENGTH)}"',
                ),
            )
            if not ok:
                return CompletionResult(request_id=request_id, already_completed=True)
            self._scheduler.cancel_group(request_id)

        log.info("request_completed_passively", request_id=request_id)
        return CompletionResult(
            request_id=request_id,
            task_id=task.task_id if task else None,
            task_time_ms=_elapsed_ms(request.work_started_at, now),
        )

    async def _finish_task(
        self,
        task: Task,
        *,
        agent: str,
        result: str | None,
        success: bool,
    ) -> CompletionResult:
        """完成 Task 并同步 Request（调用方持锁）"""
        now = _now()
        status = TaskStatus.COMPLETED if success else TaskStatus.FAILED
        result_text = result or ("Completed" if success else "Failed")
        title = preview(clean_content(task.title or task.detail), SHORT_PREVIEW_LENGTH)
        mark = "✅" if success else "❌"

        request = await self._stores.request_store.get_request(task.request_id)
        request_changes = None
        if request is not None and not request.is_terminal:
            request_changes = {
                "state": STATUS_TO_STATE[status],
                "completed_at": now,
                "result": result_text,
                "assigned_agent": task.assigned_agent,
            }

        ok = await self._transition(
            request_id=task.request_id,
            request_changes=request_changes,
            task_id=task.task_id,
            task_changes={"status": status, "completed_at": now, "result": result_text},
            event=build_event(
                self._registry,
                request_id=task.request_id,
                task_id=task.task_id,
                state=RequestState.COMPLETED,
                agent=agent,
                message=f'{mark} {self._registry.display_name(agent)} completed: "{title}"',
                result=result_text,
            ),
        )
        if not ok:
            return CompletionResult(
                request_id=task.request_id,
                task_id=task.task_id,
                already_completed=True,
                message="Task already completed",
            )
        self._scheduler.cancel_group(task.request_id)

        log.info(
            "task_completed",
            task_id=task.task_id,
            request_id=task.request_id,
            agent=agent,
            status=str(status),
        )
        return CompletionResult(
            request_id=task.request_id,
            task_id=task.task_id,
            task_time_ms=_elapsed_ms(task.started_at, now),
        )

    def _schedule_return(self, request_id: str, worker: str) -> None:
        """worker 完成后：结果回传编排者（chain_return）与交付（delivering）事件"""
        worker_name = self._registry.display_name(worker)
        orchestrator_name = self._registry.display_name(self._orchestrator)
        self._scheduler.schedule_sequence(
            [
                (
                    RETURN_DELAY_S,
                    partial(
                        self._append,
                        request_id,
                        CHAIN_RETURN_EVENT_STATE,
                        worker,
                        f"📨 {worker_name} returning results to {orchestrator_name}",
                        target_agent=self._orchestrator,
                    ),
                ),
                (
                    DELIVERING_DELAY_S,
                    partial(
                        self._append,
                        request_id,
                        DELIVERING_EVENT_STATE,
                        self._orchestrator,
                        f"📬 {orchestrator_name} received results from {worker_name}",
                    ),
                ),
            ],
            group=f"return:{request_id}",
        )

    # ============================================================
    # 批量重置与修复
    # ============================================================

    async def clear_pipeline(self, reason: str = "Session reset") -> ClearResult:
        """终态化所有非终态 Request 与 Task，并取消全部节奏步骤"""
        async with self._lock:
            self._scheduler.cancel_all()
            request_ids, task_ids = await complete_all_active(
                self._stores.conn,
                self._stores.request_store,
                self._stores.task_store,
                self._stores.event_store,
                _now(),
                reason,
            )
            cleared, cleared_tasks = len(request_ids), len(task_ids)
            if cleared or cleared_tasks:
                await self._transition(
                    event=build_event(
                        self._registry,
                        request_id=None,
                        state=SYSTEM_EVENT_STATE,
                        agent=self._orchestrator,
                        message=(
                            f"🔄 Pipeline cleared: {cleared} request{'s' if cleared != 1 else ''}, "
                            f"{cleared_tasks} task{'s' if cleared_tasks != 1 else ''} "
                            f"completed ({reason})"
                        ),
                    )
                )
            for task_id in task_ids:
                await self._publish_task(task_id)
            for request_id in request_ids:
                await self._publish_request(request_id)

        log.info("pipeline_cleared", cleared=cleared, cleared_tasks=cleared_tasks, reason=reason)
        return ClearResult(cleared=cleared, cleared_tasks=cleared_tasks)

    async def repair_placeholder_events(self) -> RepairResult:
        """全量修复占位符与通用兜底文案"""
        async with self._lock:
            fixed = await repair_all_placeholder_events(
                self._stores.conn,
                self._stores.event_store,
                self._stores.request_store,
            )
        return RepairResult(fixed=fixed)

    async def find_placeholder_events(self, limit: int = 50) -> dict[str, Any]:
        """debug_events：列出最近 limit 条事件中仍带占位符的事件"""
        total = await self._stores.event_store.count_events()
        checked, broken = await find_broken_events(self._stores.event_store, limit)
        return {
            "total": total,
            "checked": checked,
            "brokenCount": len(broken),
            "broken": broken,
        }

    # ============================================================
    # 运行时适配器辅助操作
    # ============================================================

    async def peek_pending(self) -> Request | None:
        """FIFO 兜底候选（不做任何写入）"""
        async with self._lock:
            return await self._stores.request_store.find_oldest_pending()

    async def track_request(self, active_request_id: str | None) -> Request | None:
        """适配器跟踪的 Request：active -> FIFO -> 最早的非终态 Request"""
        async with self._lock:
            return await self._track(active_request_id)

    async def oldest_incomplete(self) -> Request | None:
        async with self._lock:
            return await self._stores.request_store.find_oldest_incomplete()

    async def _track(self, active_request_id: str | None) -> Request | None:
        request_store = self._stores.request_store
        if active_request_id:
            request = await request_store.get_request(active_request_id)
            if request is not None and not request.is_terminal:
                return request
        request = await request_store.find_oldest_pending()
        if request is not None:
            return request
        return await request_store.find_oldest_incomplete()

    async def open_placeholder_request(
        self,
        active_request_id: str | None,
    ) -> tuple[Request, bool]:
        """lifecycle:start：复用跟踪中的 Request，没有时静默创建占位 Request

        Returns:
            (request, created)
        """
        async with self._lock:
            request = await self._track(active_request_id)
            if request is not None:
                return request, False
            resolution = await self._resolver.create(
                InboundSignal(
                    content=PLACEHOLDER,
                    assigned_agent=self._orchestrator,
                    source=RequestSource.RUNTIME_LIFECYCLE,
                ),
                emit_event=False,
            )
            await self._publish_resolution(resolution)
            return resolution.request, True

    async def adopt_content(self, request_id: str, text: str) -> bool:
        """user 流：真实内容替换占位符，并修复历史事件

        Returns:
            True 如果内容被写入
        """
        content = preview(text, RUNTIME_CONTENT_LENGTH)
        conn = self._stores.conn
        async with self._lock:
            request = await self._stores.request_store.get_request(request_id)
            if request is None or not is_placeholder(request.content):
                return False
            try:
                if not await self._stores.request_store.update_request(
                    request_id, content=content
                ):
                    await conn.rollback()
                    return False
                repaired = await fix_placeholder_events(
                    self._stores.event_store, request_id, content
                )
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise
            await self._publish_request(request_id)

        log.info("placeholder_content_adopted", request_id=request_id, repaired_events=len(repaired))
        return True

    async def create_from_user(self, text: str) -> Request:
        """user 流：没有可复用的 Request 时新建"""
        content = preview(text, RUNTIME_CONTENT_LENGTH)
        async with self._lock:
            resolution = await self._resolver.create(
                InboundSignal(
                    content=content,
                    assigned_agent=self._orchestrator,
                    source=RequestSource.RUNTIME_USER,
                ),
                event_message=(
                    f'📥 Request from Boss: "{preview(content, SHORT_PREVIEW_LENGTH)}"'
                ),
            )
            await self._publish_resolution(resolution)
        return resolution.request

    def begin_run(self, request_id: str, *, group: str, fallback_text: str | None = None) -> None:
        """lifecycle:start 推进：0.8s 后 analyzing；8s 内无工具调用则兜底推进到 in_progress"""

        def analyzing_message(request: Request) -> str:
            text = request.content if not is_placeholder(request.content) else fallback_text
            return f'🔍 Analyzing: "{preview(clean_content(text), SHORT_PREVIEW_LENGTH)}"'

        def task_created_message(request: Request) -> str:
            return f'📋 Task created: "{preview(clean_content(request.content), 40)}"'

        def assigned_message(request: Request) -> str:
            assignee = request.assigned_agent or self._orchestrator
            return f"📧 Assigned to {agent_badge(self._registry, assignee)}"

        def working_message(request: Request) -> str:
            assignee = request.assigned_agent or self._orchestrator
            return f"⚡ {self._registry.display_name(assignee)} working..."

        step = partial(
            self._advance,
            request_id,
            follow_latest_task=True,
            respect_delegation=True,
            require_behind=True,
        )
        self._scheduler.schedule_sequence(
            [
                (
                    RUN_ANALYZE_DELAY_S,
                    partial(
                        step,
                        RequestState.ANALYZING,
                        agent=self._orchestrator,
                        message=analyzing_message,
                    ),
                ),
                (
                    RUN_FALLBACK_DELAY_S,
                    partial(
                        step,
                        RequestState.TASK_CREATED,
                        agent=self._orchestrator,
                        message=task_created_message,
                    ),
                ),
                (
                    RUN_FALLBACK_DELAY_S + RUN_FALLBACK_STEP_S,
                    partial(
                        step,
                        RequestState.ASSIGNED,
                        agent=self._orchestrator,
                        message=assigned_message,
                    ),
                ),
                (
                    RUN_FALLBACK_DELAY_S + 2 * RUN_FALLBACK_STEP_S,
                    partial(
                        step,
                        RequestState.IN_PROGRESS,
                        message=working_message,
                        task_status=TaskStatus.IN_PROGRESS,
                    ),
                ),
            ],
            group=group,
        )

    async def delegate_to_worker(self, request_id: str, worker: str, detail: str) -> bool:
        """sessions_spawn：把 active Task 交给 worker 并运行委派序列

        Returns:
            True 如果委派已生效
        """
        name = self._registry.display_name(worker)
        badge = agent_badge(self._registry, worker)
        async with self._lock:
            request = await self._stores.request_store.get_request(request_id)
            if request is None or request.is_terminal:
                return False
            task = await self._stores.task_store.get_latest_task_for_request(request_id)
            if task is not None and task.is_terminal:
                task = None

            request_changes: dict[str, Any] = {"assigned_agent": worker}
            if is_behind(request.state, RequestState.TASK_CREATED):
                request_changes["state"] = RequestState.TASK_CREATED
            ok = await self._transition(
                request_id=request_id,
                request_changes=request_changes,
                task_id=task.task_id if task else None,
                task_changes={"assigned_agent": worker} if task else None,
                event=build_event(
                    self._registry,
                    request_id=request_id,
                    task_id=task.task_id if task else None,
                    state=RequestState.TASK_CREATED,
                    agent=worker,
                    message=f'📋 Task: "{preview(detail, 40)}" → {name}',
                    target_agent=worker,
                ),
            )
            if not ok:
                return False

        step = partial(self._advance, request_id, follow_latest_task=True)
        self._scheduler.schedule_sequence(
            [
                (
                    SPAWN_ASSIGN_DELAY_S,
                    partial(
                        step,
                        RequestState.ASSIGNED,
                        agent=worker,
                        message=f"📧 Delegated to {badge}",
                        task_status=TaskStatus.ASSIGNED,
                        assign_to=worker,
                    ),
                ),
                (
                    SPAWN_WORK_DELAY_S,
                    partial(
                        step,
                        RequestState.IN_PROGRESS,
                        agent=worker,
                        message=f"⚡ {name} working...",
                        task_status=TaskStatus.IN_PROGRESS,
                    ),
                ),
            ],
            group=request_id,
        )
        log.info("delegation_detected", request_id=request_id, worker=worker)
        return True

    async def mark_working(
        self,
        request_id: str,
        *,
        responding: bool = False,
        fallback_text: str | None = None,
    ) -> bool:
        """首个工具调用 / 首个 assistant 输出：强制推进到 in_progress

        已委派的 Task 不受影响。

        Returns:
            True 如果状态被推进
        """
        async with self._lock:
            request = await self._stores.request_store.get_request(request_id)
            if request is None or not is_behind(request.state, RequestState.IN_PROGRESS):
                return False
            task = await self._stores.task_store.get_latest_task_for_request(request_id)
            if task is not None and task.is_terminal:
                task = None
            if task is not None and self.is_delegated(task.assigned_agent):
                return False

            now = _now()
            agent = request.assigned_agent or self._orchestrator
            if responding:
                title = (
                    (task.title if task else None)
                    or (request.content if not is_placeholder(request.content) else None)
                    or fallback_text
                    or "message"
                )
                message = f'✍️ Responding: "{preview(clean_content(title), PREVIEW_LENGTH)}"'
            else:
                message = f"⚡ {self._registry.display_name(agent)} working..."

            request_changes: dict[str, Any] = {"state": RequestState.IN_PROGRESS}
            if request.work_started_at is None:
                request_changes["work_started_at"] = now
            if request.assigned_agent is None:
                request_changes["assigned_agent"] = agent
            task_changes = None
            if task is not None and validate_transition(task.status, TaskStatus.IN_PROGRESS):
                task_changes = {"status": TaskStatus.IN_PROGRESS}
                if task.started_at is None:
                    task_changes["started_at"] = now

            return await self._transition(
                request_id=request_id,
                request_changes=request_changes,
                task_id=task.task_id if task_changes else None,
                task_changes=task_changes,
                event=build_event(
                    self._registry,
                    request_id=request_id,
                    task_id=task.task_id if task else None,
                    state=RequestState.IN_PROGRESS,
                    agent=agent,
                    message=message,
                ),
            )

    async def record_activity(self, request_id: str, label: str) -> bool:
        """追加一条不改变状态的描述性事件（工具调用等）"""
        async with self._lock:
            request = await self._stores.request_store.get_request(request_id)
            if request is None or request.is_terminal:
                return False
            return await self._transition(
                event=build_event(
                    self._registry,
                    request_id=request_id,
                    state=RequestState.IN_PROGRESS,
                    agent=request.assigned_agent or self._orchestrator,
                    message=label,
                )
            )

    # ============================================================
    # 内部：节奏步骤与写入
    # ============================================================

    async def _advance(
        self,
        request_id: str,
        target: RequestState,
        *,
        message: MessageFactory,
        agent: str | None = None,
        task_id: str | None = None,
        task_status: TaskStatus | None = None,
        assign_to: str | None = None,
        follow_latest_task: bool = False,
        respect_delegation: bool = False,
        require_behind: bool = False,
    ) -> bool:
        """节奏步骤：写入前重新读取持久化状态，已终态则丢弃

        Args:
            request_id: 目标 Request
            target: 目标 Request.state（只向前推进，不倒退）
            message: 事件文本，或基于最新 Request 生成文本的函数
            agent: 事件归属 agent，None 时取 Request 当前负责 agent
            task_id: 绑定的 Task；已终态时整步丢弃
            task_status: 同步推进的 Task 状态（仅在流转合法时写入）
            assign_to: 同步改写负责 agent
            follow_latest_task: 未指定 task_id 时跟随 Request 最新的非终态 Task
            respect_delegation: 最新 Task 已委派时整步丢弃（被动信号源）
            require_behind: Request 已到达或越过 target 时整步丢弃
        """
        async with self._lock:
            request = await self._stores.request_store.get_request(request_id)
            if request is None or request.is_terminal:
                log.debug("pacing_step_dropped", request_id=request_id, target=str(target))
                return False

            task = None
            if task_id is not None:
                task = await self._stores.task_store.get_task(task_id)
                if task is None or task.is_terminal:
                    log.debug("pacing_step_dropped", request_id=request_id, target=str(target))
                    return False
            elif follow_latest_task:
                task = await self._stores.task_store.get_latest_task_for_request(request_id)
                if task is not None and task.is_terminal:
                    task = None
            if respect_delegation and task is not None and self.is_delegated(task.assigned_agent):
                return False

            behind = is_behind(request.state, target)
            if require_behind and not behind:
                return False

            now = _now()
            request_changes: dict[str, Any] = {}
            if behind:
                request_changes["state"] = target
                if target == RequestState.IN_PROGRESS and request.work_started_at is None:
                    request_changes["work_started_at"] = now
            if assign_to and request.assigned_agent != assign_to:
                request_changes["assigned_agent"] = assign_to

            task_changes: dict[str, Any] = {}
            if task is not None and task_status is not None:
                if validate_transition(task.status, task_status):
                    task_changes["status"] = task_status
                    if task_status == TaskStatus.IN_PROGRESS and task.started_at is None:
                        task_changes["started_at"] = now
            if task is not None and assign_to and task.assigned_agent != assign_to:
                task_changes["assigned_agent"] = assign_to

            text = message(request) if callable(message) else message
            event_agent = agent or request.assigned_agent or self._orchestrator
            return await self._transition(
                request_id=request_id,
                request_changes=request_changes or None,
                task_id=task.task_id if task_changes else None,
                task_changes=task_changes or None,
                event=build_event(
                    self._registry,
                    request_id=request_id,
                    task_id=task.task_id if task else None,
                    state=target,
                    agent=event_agent,
                    message=text,
                    target_agent=assign_to,
                ),
            )

    async def _append(
        self,
        request_id: str,
        state: str,
        agent: str,
        message: str,
        *,
        target_agent: str | None = None,
    ) -> bool:
        """追加一条纯事件（Request 已完成也写入）"""
        async with self._lock:
            return await self._transition(
                event=build_event(
                    self._registry,
                    request_id=request_id,
                    state=state,
                    agent=agent,
                    message=message,
                    target_agent=target_agent,
                )
            )

    async def _transition(
        self,
        *,
        request_id: str | None = None,
        request_changes: dict[str, Any] | None = None,
        task_id: str | None = None,
        task_changes: dict[str, Any] | None = None,
        event: Event | None = None,
    ) -> bool:
        """单事务应用变更，成功后发布 task / request / activity 通知（调用方持锁）"""
        ok = await apply_transition(
            self._stores.conn,
            self._stores.request_store,
            self._stores.task_store,
            self._stores.event_store,
            request_id=request_id,
            request_changes=request_changes,
            task_id=task_id,
            task_changes=task_changes,
            event=event,
        )
        if not ok:
            log.debug("stale_write_dropped", request_id=request_id, task_id=task_id)
            return False
        if task_id is not None and task_changes:
            await self._publish_task(task_id)
        if request_id is not None and request_changes:
            await self._publish_request(request_id)
        if event is not None:
            await self._bus.publish(NotificationKind.ACTIVITY, event.model_dump(mode="json"))
        return True

    async def _publish_resolution(self, resolution: Resolution) -> None:
        for event in resolution.events:
            await self._bus.publish(NotificationKind.ACTIVITY, event.model_dump(mode="json"))
        await self._bus.publish(
            NotificationKind.REQUEST, resolution.request.model_dump(mode="json")
        )

    async def _publish_request(self, request_id: str) -> None:
        request = await self._stores.request_store.get_request(request_id)
        if request is not None:
            await self._bus.publish(NotificationKind.REQUEST, request.model_dump(mode="json"))

    async def _publish_task(self, task_id: str) -> None:
        task = await self._stores.task_store.get_task(task_id)
        if task is not None:
            await self._bus.publish(NotificationKind.TASK, task.model_dump(mode="json"))
