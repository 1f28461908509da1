"""Message channels between running workers and their coordinator.

Workers never talk to the coordinator directly. Every tool call, assistant
message and context compaction is wrapped in a ``ChannelEvent`` and put on the
execution's event queue; the worker then waits for the coordinator's verdict
before continuing, so a loop is caught before the next call is issued.
Finished workers report on a separate completion queue.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from conductor.errors import WorkerHalted
from conductor.orchestration.models import AgentResult, AgentTask, ToolCallEvent

logger = logging.getLogger(__name__)


class Verdict(Enum):
    """Coordinator's answer to a forwarded event."""

    CONTINUE = "continue"
    ESCALATE = "escalate"  # finish up without further tool calls
    HALT = "halt"


@dataclass
class ChannelEvent:
    """An observation forwarded from a worker, awaiting a verdict"""
    worker_id: str
    kind: str  # "tool_call" | "message" | "compaction"
    payload: Any
    ack: asyncio.Future = field(default_factory=lambda: asyncio.get_running_loop().create_future())


@dataclass
class Completion:
    """A worker finished, failed or was halted"""
    worker_id: str
    task: AgentTask
    result: AgentResult | None
    halted: bool = False
    error: str | None = None


class ToolChannel:
    """The only path through which a worker may call tools."""

    def __init__(
        self,
        worker_id: str,
        events: asyncio.Queue,
        timeout_s: float,
        cancelled: asyncio.Event | None = None,
    ):
        self.worker_id = worker_id
        self._events = events
        self._timeout_s = timeout_s
        self._cancelled = cancelled or asyncio.Event()
        self.halted = False
        self.escalation: str | None = None
        self.calls = 0

    async def call(
        self,
        name: str,
        tool_input: dict[str, Any] | None,
        fn: Callable[[], Awaitable[str]],
        is_edit: bool = False,
    ) -> ToolCallEvent:
        """Run one tool with a bounded wait and report it.

        Timeouts and tool exceptions come back as error events rather than
        being raised, so they count towards error-loop detection.
        """
        self._check_budget()
        self.calls += 1
        try:
            result = await asyncio.wait_for(fn(), timeout=self._timeout_s)
            event = ToolCallEvent(name, tool_input, str(result), is_error=False, is_edit=is_edit)
        except asyncio.TimeoutError:
            event = ToolCallEvent(
                name, tool_input, f"Tool {name} timed out after {self._timeout_s}s",
                is_error=True, is_edit=is_edit,
            )
        except Exception as e:
            event = ToolCallEvent(name, tool_input, f"Tool {name} failed: {e}", is_error=True, is_edit=is_edit)

        await self._forward("tool_call", event)
        return event

    async def say(self, text: str) -> None:
        """Report an assistant message."""
        self._check_budget()
        await self._forward("message", text)

    async def compacted(self, edits_made: bool) -> None:
        """Report a context compaction cycle."""
        self._check_budget()
        await self._forward("compaction", edits_made)

    def _check_budget(self) -> None:
        if self._cancelled.is_set():
            raise WorkerHalted(f"{self.worker_id}: execution cancelled")
        if self.halted:
            raise WorkerHalted(f"{self.worker_id}: tool budget revoked ({self.escalation or 'halted'})")

    async def _forward(self, kind: str, payload: Any) -> None:
        event = ChannelEvent(self.worker_id, kind, payload)
        await self._events.put(event)
        verdict = await event.ack

        if verdict is Verdict.ESCALATE:
            self.halted = True
            self.escalation = "Stuck loop detected; stop and summarize what you have"
        elif verdict is Verdict.HALT:
            self.halted = True
            raise WorkerHalted(f"{self.worker_id}: halted by coordinator")
        if self._cancelled.is_set():
            # The call finished but the execution is gone; its result is diagnostics only.
            raise WorkerHalted(f"{self.worker_id}: execution cancelled")
