"""Core data models for execution and delegation."""
import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from conductor.errors import InvalidTransitionError


class WorkerRole(Enum):
    """Specialist roles a task can be delegated to."""

    PROJECT_MANAGER = "project_manager"
    LIQUID = "liquid"
    JAVASCRIPT = "javascript"
    CSS = "css"
    JSON = "json"
    REVIEW = "review"
    GENERAL = "general"


class ExecutionStatus(Enum):
    """Lifecycle of one editing request."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    AWAITING_APPROVAL = "awaiting_approval"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.AWAITING_APPROVAL}
)

ALLOWED_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset({ExecutionStatus.IN_PROGRESS, ExecutionStatus.FAILED}),
    ExecutionStatus.IN_PROGRESS: TERMINAL_STATUSES | {ExecutionStatus.IN_PROGRESS},
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
    ExecutionStatus.AWAITING_APPROVAL: frozenset(),
}


class FailureKind(Enum):
    """Error taxonomy surfaced in the result payload."""

    PATCH_NOT_FOUND = "patch_not_found"
    PATCH_AMBIGUOUS = "patch_ambiguous"
    NO_CHANGE = "no_change"
    FILE_NOT_FOUND = "file_not_found"
    VERSION_CONFLICT = "version_conflict"
    WORKER_ERROR = "worker_error"
    STUCK_LOOP = "stuck_loop"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class FileSnapshot:
    """A file's content as seen at dispatch time"""
    file_id: str
    file_name: str
    content: str


@dataclass(frozen=True)
class AgentContext:
    """Everything a worker sees besides its instruction"""
    files: tuple[FileSnapshot, ...] = ()
    conversation: tuple[str, ...] = ()
    diagnostics: str | None = None
    design_summary: str | None = None
    memory_summary: str | None = None

    def file(self, file_name: str) -> FileSnapshot | None:
        for snapshot in self.files:
            if snapshot.file_name == file_name or snapshot.file_id == file_name:
                return snapshot
        return None


@dataclass(frozen=True)
class DelegationTask:
    """A unit of work the planner hands back to the coordinator"""
    role: WorkerRole
    task: str
    affected_files: tuple[str, ...] = ()
    preferences: tuple[str, ...] = ()


@dataclass(frozen=True)
class AgentTask:
    """One instruction directed at one worker"""
    execution_id: str
    role: WorkerRole
    instruction: str
    context: AgentContext = field(default_factory=AgentContext)
    delegations: tuple[DelegationTask, ...] = ()
    worker_id: str = ""

    def __post_init__(self):
        if not self.worker_id:
            object.__setattr__(self, "worker_id", self.role.value)

    @property
    def file_scope(self) -> frozenset[str]:
        return frozenset(snapshot.file_name for snapshot in self.context.files)


@dataclass(frozen=True)
class CodePatch:
    """A literal search/replace pair"""
    search: str
    replace: str


@dataclass
class CodeChange:
    """A worker's proposed mutation to one file"""
    file_id: str
    file_name: str
    original_content: str
    proposed_content: str
    patches: list[CodePatch] | None = None
    reasoning: str = ""
    confidence: float = 1.0
    line_range: tuple[int, int] | None = None
    worker_id: str | None = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        if self.line_range is not None and not 1 <= self.line_range[0] <= self.line_range[1]:
            raise ValueError(f"line_range must be 1-based and ordered, got {self.line_range}")

    def to_dict(self) -> dict:
        return {
            "file_id": self.file_id,
            "file_name": self.file_name,
            "proposed_content": self.proposed_content,
            "patches": [{"search": p.search, "replace": p.replace} for p in self.patches or []],
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "line_range": list(self.line_range) if self.line_range else None,
            "worker_id": self.worker_id,
        }


@dataclass
class AgentError:
    """Failure reported by a worker"""
    code: str
    message: str
    role: WorkerRole
    recoverable: bool = False


@dataclass
class AgentResult:
    """What a worker returns when it finishes"""
    role: WorkerRole
    success: bool
    changes: list[CodeChange] = field(default_factory=list)
    delegations: list[DelegationTask] = field(default_factory=list)
    analysis: str | None = None
    error: AgentError | None = None


@dataclass(frozen=True)
class ToolCallEvent:
    """One tool invocation emitted by a running worker"""
    name: str
    input: dict[str, Any] | None
    result: str
    is_error: bool = False
    is_edit: bool = False


@dataclass
class ReviewIssue:
    """A single issue found by the reviewer"""
    severity: str  # "error" | "warning" | "info"
    file: str
    description: str
    category: str = "general"
    line: int | None = None
    suggestion: str | None = None


@dataclass
class ReviewResult:
    """Reviewer's verdict over the aggregate diff"""
    approved: bool
    issues: list[ReviewIssue] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> dict:
        return {
            "approved": self.approved,
            "issues": [issue.__dict__.copy() for issue in self.issues],
            "summary": self.summary,
        }


@dataclass
class FileError:
    """A local failure scoped to one file"""
    file_name: str
    kind: FailureKind
    message: str
    worker_id: str | None = None


@dataclass
class PatchDivergence:
    """Patch-derived content disagreed with the worker's asserted content"""
    file_name: str
    worker_id: str
    asserted_length: int
    applied_length: int


@dataclass
class CoordinatorMessage:
    """Entry in the coordinator/worker message log"""
    sender: str
    recipient: str
    kind: str  # "task" | "result" | "error" | "escalation" | "review"
    content: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ExecutionState:
    """Tracks one editing request from acceptance to a terminal status"""
    execution_id: str
    project_id: str
    user_id: str
    request: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None

    active_workers: set[str] = field(default_factory=set)
    completed_workers: list[str] = field(default_factory=list)
    messages: list[CoordinatorMessage] = field(default_factory=list)
    proposed_changes: dict[str, list[CodeChange]] = field(default_factory=dict)
    review_result: ReviewResult | None = None

    # Everything that went wrong, so nothing fails silently
    file_errors: list[FileError] = field(default_factory=list)
    worker_errors: list[AgentError] = field(default_factory=list)
    stuck_detections: list[dict] = field(default_factory=list)
    escalations: list[str] = field(default_factory=list)
    divergences: list[PatchDivergence] = field(default_factory=list)
    discarded_results: list[str] = field(default_factory=list)
    termination_reason: str | None = None
    termination_kind: FailureKind | None = None

    def transition(self, status: ExecutionStatus) -> None:
        """Move to ``status``, rejecting anything the lifecycle forbids."""
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Execution {self.execution_id}: {self.status.value} -> {status.value} not allowed"
            )
        self.status = status
        if status.is_terminal:
            self.completed_at = datetime.now()

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def all_changes(self) -> list[CodeChange]:
        return [change for changes in self.proposed_changes.values() for change in changes]

    def add_message(self, sender: str, recipient: str, kind: str, content: str) -> None:
        self.messages.append(CoordinatorMessage(sender, recipient, kind, content))

    def snapshot(self) -> "ExecutionState":
        """Detached copy handed to callers."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        """Caller-facing result payload"""
        return {
            "execution_id": self.execution_id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "request": self.request,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "active_workers": sorted(self.active_workers),
            "completed_workers": list(self.completed_workers),
            "changes": {
                worker: [change.to_dict() for change in changes]
                for worker, changes in self.proposed_changes.items()
            },
            "review": self.review_result.to_dict() if self.review_result else None,
            "file_errors": [
                {"file": e.file_name, "kind": e.kind.value, "message": e.message, "worker": e.worker_id}
                for e in self.file_errors
            ],
            "worker_errors": [
                {"code": e.code, "message": e.message, "role": e.role.value, "recoverable": e.recoverable}
                for e in self.worker_errors
            ],
            "stuck_detections": list(self.stuck_detections),
            "escalations": list(self.escalations),
            "divergences": [d.__dict__.copy() for d in self.divergences],
            "discarded_results": list(self.discarded_results),
            "termination_reason": self.termination_reason,
            "termination_kind": self.termination_kind.value if self.termination_kind else None,
        }
