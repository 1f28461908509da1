"""Structural stuck detection for worker tool loops.

Compares tool call input signatures and hashes of their results rather than
counting calls, so a worker re-reading a file it keeps editing is not flagged
while a worker re-issuing a no-op action is. Five patterns are checked in a
fixed order and the first match wins:

    1. same_action_observation  identical call + identical result, no errors
    2. same_action_error        identical call erroring every time
    3. monologue                identical assistant messages, no tool calls between
    4. alternating              A-B-A-B-A-B over the recent history
    5. compaction_loop          repeated context compactions without an edit
"""
import hashlib
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any

from conductor.config import defaults
from conductor.config.schema import StuckConfig

logger = logging.getLogger(__name__)


class StuckPattern(Enum):
    """Named unproductive-loop signatures."""

    SAME_ACTION_OBSERVATION = "same_action_observation"
    SAME_ACTION_ERROR = "same_action_error"
    MONOLOGUE = "monologue"
    ALTERNATING = "alternating"
    COMPACTION_LOOP = "compaction_loop"

    @property
    def is_fatal(self) -> bool:
        """Error and compaction loops fail outright; the rest get one escalation."""
        return self in (StuckPattern.SAME_ACTION_ERROR, StuckPattern.COMPACTION_LOOP)

    @property
    def severity(self) -> str:
        return "fatal" if self.is_fatal else "escalate"


@dataclass(frozen=True)
class ToolCallRecord:
    """One step of a worker's tool-use history"""
    name: str
    input_signature: str
    content_hash: str
    is_error: bool
    is_edit: bool

    @property
    def key(self) -> tuple[str, str]:
        return (self.input_signature, self.content_hash)


@dataclass(frozen=True)
class StuckDetection:
    """Verdict computed from the current history"""
    is_stuck: bool
    pattern: StuckPattern | None = None
    loop_start_index: int = -1
    details: str = ""

    def to_dict(self) -> dict:
        return {
            "is_stuck": self.is_stuck,
            "pattern": self.pattern.value if self.pattern else None,
            "severity": self.pattern.severity if self.pattern else None,
            "loop_start_index": self.loop_start_index,
            "details": self.details,
        }


NOT_STUCK = StuckDetection(is_stuck=False)


def hash_content(content: str) -> str:
    return hashlib.md5(content.encode("utf-8")).hexdigest()[:12]


def build_input_signature(name: str, tool_input: dict[str, Any] | None) -> str:
    """Summarise a call by its identifying inputs, ignoring incidental payload."""
    if not tool_input:
        return name
    parts = [name]
    for key in defaults.SIGNATURE_KEYS:
        value = tool_input.get(key)
        if value is not None:
            parts.append(f"{key}={str(value)[:defaults.SIGNATURE_VALUE_LIMIT]}")
    return "|".join(parts)


class StuckDetector:
    """Per-execution observer of tool calls, assistant messages and compactions."""

    def __init__(self, config: StuckConfig | None = None):
        self.config = config or StuckConfig()
        self._history: deque[ToolCallRecord] = deque(maxlen=self.config.history_limit)
        self._total_calls = 0
        self._message_run: deque[str] = deque(maxlen=self.config.monologue)
        self._consecutive_compactions = 0
        self._edits_since_compaction = 0

    @property
    def history(self) -> list[ToolCallRecord]:
        return list(self._history)

    @property
    def total_calls(self) -> int:
        return self._total_calls

    def record_tool_call(
        self,
        name: str,
        tool_input: dict[str, Any] | None,
        result_content: str,
        is_error: bool,
        is_edit: bool,
    ) -> ToolCallRecord:
        record = ToolCallRecord(
            name=name,
            input_signature=build_input_signature(name, tool_input),
            content_hash=hash_content(result_content or ""),
            is_error=is_error,
            is_edit=is_edit,
        )
        self._history.append(record)
        self._total_calls += 1
        self._message_run.clear()

        if is_edit and not is_error:
            self._edits_since_compaction += 1
            self._consecutive_compactions = 0
        return record

    def record_assistant_message(self, text: str) -> None:
        self._message_run.append((text or "")[:defaults.MESSAGE_LIMIT])

    def record_compaction(self, edits_made_since_last_check: bool) -> None:
        if edits_made_since_last_check or self._edits_since_compaction:
            self._consecutive_compactions = 0
        else:
            self._consecutive_compactions += 1
        self._edits_since_compaction = 0

    def detect(self) -> StuckDetection:
        for check in (
            self._detect_same_action_observation,
            self._detect_same_action_error,
            self._detect_monologue,
            self._detect_alternating,
            self._detect_compaction_loop,
        ):
            detection = check()
            if detection.is_stuck:
                logger.debug("Stuck pattern %s: %s", detection.pattern.value, detection.details)
                return detection
        return NOT_STUCK

    def _tail(self, size: int) -> list[ToolCallRecord]:
        if len(self._history) < size:
            return []
        return list(self._history)[-size:]

    def _detect_same_action_observation(self) -> StuckDetection:
        size = self.config.same_action_observation
        tail = self._tail(size)
        if not tail:
            return NOT_STUCK

        first = tail[0]
        if all(record.key == first.key and not record.is_error for record in tail):
            return StuckDetection(
                is_stuck=True,
                pattern=StuckPattern.SAME_ACTION_OBSERVATION,
                loop_start_index=self._total_calls - size,
                details=f'Tool "{first.name}" called {size}x with identical input and output',
            )
        return NOT_STUCK

    def _detect_same_action_error(self) -> StuckDetection:
        size = self.config.same_action_error
        tail = self._tail(size)
        if not tail:
            return NOT_STUCK

        first = tail[0]
        if all(record.input_signature == first.input_signature and record.is_error for record in tail):
            return StuckDetection(
                is_stuck=True,
                pattern=StuckPattern.SAME_ACTION_ERROR,
                loop_start_index=self._total_calls - size,
                details=f'Tool "{first.name}" errored {size}x with same input',
            )
        return NOT_STUCK

    def _detect_monologue(self) -> StuckDetection:
        size = self.config.monologue
        if len(self._message_run) < size:
            return NOT_STUCK

        tail = list(self._message_run)
        if tail[0] and all(message == tail[0] for message in tail):
            return StuckDetection(
                is_stuck=True,
                pattern=StuckPattern.MONOLOGUE,
                loop_start_index=max(self._total_calls - 1, 0),
                details=f"Agent repeated same message {size}x without tools",
            )
        return NOT_STUCK

    def _detect_alternating(self) -> StuckDetection:
        if len(self._history) < self.config.alternating_window:
            return NOT_STUCK

        keys = [record.key for record in self._tail(6)]
        a, b = keys[0], keys[1]
        if a != b and keys == [a, b, a, b, a, b]:
            return StuckDetection(
                is_stuck=True,
                pattern=StuckPattern.ALTERNATING,
                loop_start_index=self._total_calls - 6,
                details="Detected alternating A-B-A-B pattern over 6 tool calls",
            )
        return NOT_STUCK

    def _detect_compaction_loop(self) -> StuckDetection:
        if self._consecutive_compactions >= self.config.compaction_loop:
            return StuckDetection(
                is_stuck=True,
                pattern=StuckPattern.COMPACTION_LOOP,
                loop_start_index=max(0, self._total_calls - 10),
                details=f"{self._consecutive_compactions} consecutive compactions with no edits",
            )
        return NOT_STUCK
