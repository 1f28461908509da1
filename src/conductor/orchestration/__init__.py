"""Core orchestration logic.

Only the dependency-free pieces are re-exported here; import the coordinator
from ``conductor.orchestration.coordinator`` since it sits on top of
``conductor.execution``, which itself depends on the models below.
"""
from conductor.orchestration.models import (
    AgentContext,
    AgentError,
    AgentResult,
    AgentTask,
    CodeChange,
    CodePatch,
    DelegationTask,
    ExecutionState,
    ExecutionStatus,
    FailureKind,
    FileSnapshot,
    ReviewIssue,
    ReviewResult,
    ToolCallEvent,
    WorkerRole,
)
from conductor.orchestration.review import ReviewAggregator, ReviewDecision
from conductor.orchestration.stuck_detector import StuckDetection, StuckDetector, StuckPattern

__all__ = [
    "AgentContext",
    "AgentError",
    "AgentResult",
    "AgentTask",
    "CodeChange",
    "CodePatch",
    "DelegationTask",
    "ExecutionState",
    "ExecutionStatus",
    "FailureKind",
    "FileSnapshot",
    "ReviewAggregator",
    "ReviewDecision",
    "ReviewIssue",
    "ReviewResult",
    "StuckDetection",
    "StuckDetector",
    "StuckPattern",
    "ToolCallEvent",
    "WorkerRole",
]
