"""Coordinator - per-execution delegation state machine"""
import asyncio
import dataclasses
import logging
from collections import defaultdict, deque
from typing import Mapping, assert_never

from conductor.config.schema import ConductorConfig
from conductor.errors import (
    InvalidTransitionError,
    NoChangeError,
    PatchAmbiguousError,
    PatchNotFoundError,
    StuckLoopError,
    VersionConflictError,
    WorkerError,
)
from conductor.execution.channel import ChannelEvent, Completion, ToolChannel, Verdict
from conductor.execution.protocol import FileStore, Reviewer, Worker
from conductor.execution.runner import WorkerRunner
from conductor.orchestration.file_tracker import FileTracker
from conductor.orchestration.models import (
    AgentError,
    AgentResult,
    AgentTask,
    CodeChange,
    DelegationTask,
    ExecutionState,
    ExecutionStatus,
    FailureKind,
    FileError,
    FileSnapshot,
    PatchDivergence,
    ToolCallEvent,
    WorkerRole,
)
from conductor.orchestration.review import ReviewAggregator, ReviewDecision
from conductor.orchestration.stuck_detector import StuckDetection, StuckDetector

logger = logging.getLogger(__name__)

ESCALATION_MESSAGE = (
    "You are repeating yourself without making progress. "
    "Stop calling tools and return a summary of what you have."
)

FILE_ERROR_KINDS: dict[type[Exception], FailureKind] = {
    NoChangeError: FailureKind.NO_CHANGE,
    PatchNotFoundError: FailureKind.PATCH_NOT_FOUND,
    PatchAmbiguousError: FailureKind.PATCH_AMBIGUOUS,
    VersionConflictError: FailureKind.VERSION_CONFLICT,
    KeyError: FailureKind.FILE_NOT_FOUND,
}


class Coordinator:
    """Drives one execution from dispatch to a terminal status.

    All bookkeeping happens here and nowhere else: workers only see their
    ``ToolChannel``, and the coordinator answers every forwarded event with a
    ``Verdict``. Each worker gets its own stuck detector, so two healthy
    workers interleaving calls never look like an alternating loop.

    Failure policy:
        - a file-scoped patch failure is recorded and the rest of the work goes on
        - a recoverable worker error is retried with exponential backoff
        - an error or compaction loop fails the execution outright
        - other loops get one escalation per worker, after which the worker may only summarize
    """

    def __init__(
        self,
        state: ExecutionState,
        workers: Mapping[WorkerRole, Worker],
        reviewer: Reviewer | None = None,
        store: FileStore | None = None,
        config: ConductorConfig | None = None,
    ):
        self.state = state
        self.workers = dict(workers)
        self.reviewer = reviewer
        self.config = config or ConductorConfig.default()
        self.tracker = FileTracker(store)
        self.aggregator = ReviewAggregator()

        self.detectors: dict[str, StuckDetector] = {}
        self.diagnostics: list[Completion] = []
        self._tasks: dict[str, AgentTask] = {}
        self._attempts: dict[str, int] = defaultdict(int)
        self._stuck: dict[str, StuckDetection] = {}
        self._stuck_inputs: set[tuple] = set()
        self._escalations: dict[str, int] = defaultdict(int)

        self._pending: deque[AgentTask] = deque()
        self._running: dict[str, asyncio.Task] = {}
        self._events: asyncio.Queue = asyncio.Queue()
        self._completions: asyncio.Queue = asyncio.Queue()
        self._cancelled = asyncio.Event()

    @property
    def execution_id(self) -> str:
        return self.state.execution_id

    # -- dispatch ---------------------------------------------------------

    def dispatch(self, task: AgentTask) -> None:
        """Mark a worker active and queue its task."""
        self._require_open()
        self._resolve_worker(task.role)
        for delegation in task.delegations:
            self._resolve_worker(delegation.role)
        if task.worker_id in self.state.active_workers:
            raise ValueError(f"Worker {task.worker_id} is already active")

        self.state.transition(ExecutionStatus.IN_PROGRESS)
        self.state.active_workers.add(task.worker_id)
        self._tasks[task.worker_id] = task
        self.detectors.setdefault(task.worker_id, StuckDetector(self.config.stuck))
        if self.tracker.store is None:
            for snapshot in task.context.files:
                self.tracker.seed(snapshot.file_id, snapshot.content)

        self.state.add_message("coordinator", task.worker_id, "task", task.instruction)
        self._pending.append(task)
        logger.info("Dispatched %s (%s) for execution %s", task.worker_id, task.role.value, self.execution_id)

    def redispatch_narrowed(self, task: AgentTask) -> None:
        """Dispatch a replacement task after a detected loop.

        Raises:
            StuckLoopError: the task repeats the role, instruction and file scope that looped
        """
        if self._input_key(task) in self._stuck_inputs:
            raise StuckLoopError(
                f"{task.worker_id}: narrow the instruction or file scope before retrying a stuck task"
            )
        self.dispatch(task)

    def _resolve_worker(self, role: WorkerRole) -> Worker:
        match role:
            case WorkerRole.REVIEW:
                raise ValueError("Review runs during finalize and cannot be dispatched")
            case WorkerRole.PROJECT_MANAGER | WorkerRole.GENERAL:
                worker = self.workers.get(role)
            case WorkerRole.LIQUID | WorkerRole.JAVASCRIPT | WorkerRole.CSS | WorkerRole.JSON:
                worker = self.workers.get(role) or self.workers.get(WorkerRole.GENERAL)
            case _:
                assert_never(role)
        if worker is None:
            raise WorkerError(f"No worker registered for role {role.value}")
        return worker

    # -- liveness ---------------------------------------------------------

    def record_tool_call(self, worker_id: str, event: ToolCallEvent) -> Verdict:
        self._detector(worker_id).record_tool_call(
            event.name, event.input, event.result, event.is_error, event.is_edit
        )
        return self.check_liveness(worker_id)

    def record_assistant_message(self, worker_id: str, text: str) -> Verdict:
        self._detector(worker_id).record_assistant_message(text)
        return self.check_liveness(worker_id)

    def record_compaction(self, worker_id: str, edits_made: bool) -> Verdict:
        self._detector(worker_id).record_compaction(edits_made)
        return self.check_liveness(worker_id)

    def check_liveness(self, worker_id: str) -> Verdict:
        """Run stuck detection for one worker and decide what it may do next."""
        if self.state.is_terminal:
            return Verdict.HALT

        detection = self._detector(worker_id).detect()
        if not detection.is_stuck:
            return Verdict.CONTINUE

        self.state.stuck_detections.append({"worker_id": worker_id, **detection.to_dict()})
        self._stuck[worker_id] = detection
        if worker_id in self._tasks:
            self._stuck_inputs.add(self._input_key(self._tasks[worker_id]))
        reason = f"{worker_id} stuck ({detection.pattern.value}): {detection.details}"
        logger.warning(reason)

        if detection.pattern.is_fatal:
            self._fail(FailureKind.STUCK_LOOP, reason)
            return Verdict.HALT
        if self._escalations[worker_id] >= self.config.coordinator.max_stuck_escalations:
            self._fail(FailureKind.STUCK_LOOP, f"{reason} (still stuck after escalation)")
            return Verdict.HALT

        self._escalations[worker_id] += 1
        self.state.escalations.append(reason)
        self.state.add_message("coordinator", worker_id, "escalation", ESCALATION_MESSAGE)
        return Verdict.ESCALATE

    def _detector(self, worker_id: str) -> StuckDetector:
        if worker_id not in self.detectors:
            self.detectors[worker_id] = StuckDetector(self.config.stuck)
        return self.detectors[worker_id]

    @staticmethod
    def _input_key(task: AgentTask) -> tuple:
        return (task.role, task.instruction, task.file_scope)

    # -- results ----------------------------------------------------------

    async def record_result(self, worker_id: str, result: AgentResult) -> None:
        """Merge a finished worker's output into the execution."""
        if self.state.is_terminal:
            logger.info(
                "Discarding result from %s; execution %s is %s",
                worker_id, self.execution_id, self.state.status.value,
            )
            return
        if worker_id not in self.state.active_workers:
            raise ValueError(f"Worker {worker_id} is not active")

        task = self._tasks[worker_id]
        self.state.active_workers.discard(worker_id)
        self.state.completed_workers.append(worker_id)

        if result.success:
            self.state.add_message(worker_id, "coordinator", "result", result.analysis or "done")
            await self._merge_changes(worker_id, result.changes)
            self._fan_out(task, [*task.delegations, *result.delegations])
            return

        error = result.error or AgentError(
            code="UNKNOWN", message="Worker reported failure without an error", role=task.role
        )
        self.state.worker_errors.append(error)
        self.state.add_message(worker_id, "coordinator", "error", error.message)

        if worker_id in self._stuck:
            self._fail(
                FailureKind.STUCK_LOOP,
                f"{worker_id} failed after a detected {self._stuck[worker_id].pattern.value} loop",
            )
        elif error.recoverable and self._attempts[worker_id] < self.config.coordinator.max_worker_retries:
            self._attempts[worker_id] += 1
            delay = self.config.coordinator.retry_delay_ms * 2 ** (self._attempts[worker_id] - 1) / 1000
            logger.warning(
                "Retrying %s in %.2fs (attempt %d): %s",
                worker_id, delay, self._attempts[worker_id], error.message,
            )
            await asyncio.sleep(delay)
            if not self.state.is_terminal:
                self.dispatch(task)
        else:
            self._fail(FailureKind.WORKER_ERROR, f"{worker_id} failed: [{error.code}] {error.message}")

    async def _merge_changes(self, worker_id: str, changes: list[CodeChange]) -> None:
        for change in changes:
            try:
                applied = await self.tracker.apply(change)
            except tuple(FILE_ERROR_KINDS) as e:
                kind = next(k for exc, k in FILE_ERROR_KINDS.items() if isinstance(e, exc))
                message = str(e)
                if getattr(e, "patch_index", None) is not None:
                    message = f"patch {e.patch_index}: {message}"
                self.state.file_errors.append(FileError(change.file_name, kind, message, worker_id))
                logger.warning("Change to %s from %s rejected: %s", change.file_name, worker_id, message)
                continue

            if applied.diverged:
                self.state.divergences.append(
                    PatchDivergence(
                        file_name=change.file_name,
                        worker_id=worker_id,
                        asserted_length=len(change.proposed_content),
                        applied_length=len(applied.change.proposed_content),
                    )
                )
                logger.warning(
                    "Asserted content for %s from %s differs from its patches; using patch result",
                    change.file_name, worker_id,
                )
            stored = dataclasses.replace(applied.change, worker_id=worker_id)
            self.state.proposed_changes.setdefault(worker_id, []).append(stored)

    def _fan_out(self, parent: AgentTask, delegations: list[DelegationTask]) -> None:
        """Dispatch one child task per delegation, or none if any cannot be dispatched."""
        for delegation in delegations:
            try:
                self._resolve_worker(delegation.role)
            except (WorkerError, ValueError) as e:
                self.state.worker_errors.append(
                    AgentError(code="INVALID_DELEGATION", message=str(e), role=parent.role)
                )
                self._fail(
                    FailureKind.WORKER_ERROR,
                    f"{parent.worker_id} delegated to {delegation.role.value}: {e}",
                )
                return

        for delegation in delegations:
            self.dispatch(self._child_task(parent, delegation))

    def _child_task(self, parent: AgentTask, delegation: DelegationTask) -> AgentTask:
        worker_id = delegation.role.value
        n = 1
        while worker_id in self._tasks:
            n += 1
            worker_id = f"{delegation.role.value}#{n}"

        if delegation.affected_files:
            sources = [parent.context.file(name) for name in delegation.affected_files]
            missing = [name for name, s in zip(delegation.affected_files, sources) if s is None]
            if missing:
                logger.warning("Delegation to %s names unknown files: %s", worker_id, ", ".join(missing))
            sources = [s for s in sources if s is not None]
        else:
            sources = list(parent.context.files)

        files = []
        for snapshot in sources:
            current = self.tracker.peek(snapshot.file_id)
            content = current if current is not None else snapshot.content
            files.append(FileSnapshot(snapshot.file_id, snapshot.file_name, content))

        instruction = delegation.task
        if delegation.preferences:
            instruction += "\n\nPreferences:\n" + "\n".join(f"- {p}" for p in delegation.preferences)

        return AgentTask(
            execution_id=parent.execution_id,
            role=delegation.role,
            instruction=instruction,
            context=dataclasses.replace(parent.context, files=tuple(files)),
            worker_id=worker_id,
        )

    # -- termination ------------------------------------------------------

    async def finalize(self) -> ExecutionState:
        """Review the aggregate diff and settle on a terminal status."""
        if self.state.is_terminal:
            return self.state.snapshot()
        if self.state.active_workers:
            raise InvalidTransitionError(
                f"Cannot finalize {self.execution_id}: workers still active "
                f"({', '.join(sorted(self.state.active_workers))})"
            )
        if self.state.status is ExecutionStatus.PENDING:
            self.state.transition(ExecutionStatus.IN_PROGRESS)

        changes = self.state.all_changes()
        decision = await self._review(changes)

        threshold = self.config.coordinator.approval_confidence_threshold
        unsure = [c for c in changes if c.confidence < threshold]
        if unsure:
            names = ", ".join(sorted({c.file_name for c in unsure}))
            self.state.add_message(
                "coordinator", "user", "review", f"Low confidence (< {threshold}) changes to {names}"
            )

        if unsure or decision.needs_approval:
            self.state.transition(ExecutionStatus.AWAITING_APPROVAL)
        else:
            self.state.transition(ExecutionStatus.COMPLETED)
        logger.info("Execution %s finished: %s", self.execution_id, self.state.status.value)
        return self.state.snapshot()

    async def _review(self, changes: list[CodeChange]) -> ReviewDecision:
        if not changes or self.reviewer is None or not self.config.review.enabled:
            return self.aggregator.decide(None)

        try:
            review = await self.reviewer.review(changes)
        except Exception as e:
            logger.warning("Review failed for %s: %s", self.execution_id, e)
            self.state.worker_errors.append(
                AgentError(code="REVIEW_FAILED", message=str(e), role=WorkerRole.REVIEW, recoverable=True)
            )
            return ReviewDecision(decision="needs_approval", reason=f"Review failed: {e}")

        self.state.review_result = review
        self.state.add_message("review", "coordinator", "review", review.summary)
        return self.aggregator.decide(review)

    def cancel(self, reason: str = "Cancelled by user") -> None:
        """Stop issuing new calls; in-flight calls finish and are discarded."""
        self._fail(FailureKind.CANCELLED, reason)

    def _fail(self, kind: FailureKind, reason: str) -> None:
        if self.state.is_terminal:
            return
        self.state.termination_kind = kind
        self.state.termination_reason = reason
        for worker_id in sorted(self.state.active_workers):
            self.state.discarded_results.append(f"{worker_id}: still running at {kind.value}")
        self.state.active_workers.clear()
        self._pending.clear()
        self.state.transition(ExecutionStatus.FAILED)
        self._cancelled.set()
        logger.error("Execution %s failed (%s): %s", self.execution_id, kind.value, reason)

    def _require_open(self) -> None:
        if self.state.is_terminal:
            raise InvalidTransitionError(
                f"Execution {self.execution_id} is already {self.state.status.value}"
            )

    async def commit(self) -> dict[str, str]:
        """Write applied content back to the file store."""
        if self.state.status not in (ExecutionStatus.COMPLETED, ExecutionStatus.AWAITING_APPROVAL):
            raise InvalidTransitionError(
                f"Cannot commit execution {self.execution_id} in status {self.state.status.value}"
            )
        return await self.tracker.commit()

    # -- event loop -------------------------------------------------------

    async def run(self, task: AgentTask) -> ExecutionState:
        """Dispatch ``task`` and drive every worker it spawns to completion."""
        self.dispatch(task)
        timeout = self.config.coordinator.execution_timeout_s
        events = asyncio.create_task(self._consume_events())
        try:
            await asyncio.wait_for(self._consume_completions(), timeout=timeout)
        except asyncio.TimeoutError:
            self._fail(FailureKind.TIMEOUT, f"Execution exceeded {timeout}s")
        finally:
            for running in self._running.values():
                running.cancel()
            await asyncio.gather(*self._running.values(), return_exceptions=True)
            self._running.clear()
            events.cancel()
            await asyncio.gather(events, return_exceptions=True)

        if self.state.is_terminal:
            return self.state.snapshot()
        return await self.finalize()

    async def _consume_completions(self) -> None:
        while True:
            self._start_pending()
            if not self._running:
                return
            if self.state.is_terminal:
                await self._drain()
                return
            completion = await self._next_completion()
            if completion is None:
                continue
            self._running.pop(completion.worker_id, None)
            await self._on_completion(completion)

    async def _next_completion(self) -> Completion | None:
        """Wait for the next completion, or return None once the execution is stopped."""
        getter = asyncio.ensure_future(self._completions.get())
        stopper = asyncio.ensure_future(self._cancelled.wait())
        try:
            await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not getter.done():
                getter.cancel()
        if getter.done() and not getter.cancelled():
            return getter.result()
        return None

    async def _drain(self) -> None:
        """Give in-flight calls one tool timeout to land, then record them as diagnostics."""
        await asyncio.wait(list(self._running.values()), timeout=self.config.coordinator.tool_call_timeout_s)
        while not self._completions.empty():
            completion = self._completions.get_nowait()
            self._running.pop(completion.worker_id, None)
            await self._on_completion(completion)

    def _start_pending(self) -> None:
        while self._pending:
            task = self._pending.popleft()
            channel = ToolChannel(
                task.worker_id, self._events, self.config.coordinator.tool_call_timeout_s, self._cancelled
            )
            runner = WorkerRunner(self._resolve_worker(task.role), self._completions)
            self._running[task.worker_id] = asyncio.create_task(runner.run(task, channel))

    async def _on_completion(self, completion: Completion) -> None:
        if self.state.is_terminal:
            self.diagnostics.append(completion)
            logger.info("Discarding completion from %s after termination", completion.worker_id)
            return

        if completion.halted or completion.result is None:
            self.diagnostics.append(completion)
            if completion.worker_id in self._stuck:
                self._fail(
                    FailureKind.STUCK_LOOP,
                    f"{completion.worker_id} kept calling tools after escalation",
                )
                return
            self.state.active_workers.discard(completion.worker_id)
            self.state.completed_workers.append(completion.worker_id)
            self.state.discarded_results.append(f"{completion.worker_id}: {completion.error or 'halted'}")
            return
        await self.record_result(completion.worker_id, completion.result)

    async def _consume_events(self) -> None:
        while True:
            event: ChannelEvent = await self._events.get()
            try:
                verdict = self._handle_event(event)
            except Exception as e:
                logger.exception("Failed to handle %s event from %s", event.kind, event.worker_id)
                if not event.ack.done():
                    event.ack.set_exception(e)
                continue
            if not event.ack.done():
                event.ack.set_result(verdict)

    def _handle_event(self, event: ChannelEvent) -> Verdict:
        if event.kind == "tool_call":
            return self.record_tool_call(event.worker_id, event.payload)
        if event.kind == "message":
            return self.record_assistant_message(event.worker_id, event.payload)
        if event.kind == "compaction":
            return self.record_compaction(event.worker_id, event.payload)
        raise ValueError(f"Unknown channel event kind: {event.kind}")
