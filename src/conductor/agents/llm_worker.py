"""LLM-backed worker and reviewer.

Both ask the model for a single JSON object and validate it before anything
reaches the coordinator. Edits are search/replace patches, never whole files,
so the coordinator can re-apply them against whatever content is current.
"""
import difflib
import json
import logging
from typing import Any

from conductor.errors import ConductorError, WorkerError
from conductor.execution.channel import ToolChannel
from conductor.execution.protocol import Reviewer, Worker
from conductor.llm.client import LLMClient, LLMProviderError
from conductor.orchestration.models import (
    AgentError,
    AgentResult,
    AgentTask,
    CodeChange,
    CodePatch,
    DelegationTask,
    ReviewIssue,
    ReviewResult,
    WorkerRole,
)
from conductor.patching import apply_patches

logger = logging.getLogger(__name__)

VALID_SEVERITIES = ("error", "warning", "info")

ROLE_FOCUS = {
    WorkerRole.PROJECT_MANAGER: (
        "You plan the work. Split the request into delegations for the liquid, javascript, "
        "css and json specialists and only edit files yourself when no specialist fits."
    ),
    WorkerRole.LIQUID: "You edit Liquid templates and sections.",
    WorkerRole.JAVASCRIPT: "You edit JavaScript assets.",
    WorkerRole.CSS: "You edit stylesheets.",
    WorkerRole.JSON: "You edit JSON settings and locale files.",
    WorkerRole.GENERAL: "You edit any file type.",
}

WORKER_SYSTEM = "You are a code editing agent. Return ONLY valid JSON, no markdown."
REVIEW_SYSTEM = "You are a code reviewer. Return ONLY valid JSON, no markdown."


class LLMResponseError(ConductorError):
    """Model output did not match the expected schema."""

    pass


def extract_json(content: str) -> str:
    """Extract JSON from content that may have markdown wrapper."""
    content = content.strip()

    if content.startswith("```"):
        first_newline = content.find("\n")
        if first_newline != -1:
            last_fence = content.rfind("```")
            if last_fence > first_newline:
                content = content[first_newline + 1 : last_fence].strip()

    return content


def parse_object(content: str) -> dict[str, Any]:
    try:
        payload = json.loads(extract_json(content))
    except json.JSONDecodeError as e:
        raise LLMResponseError(f"Invalid JSON response: {e}") from e

    if not isinstance(payload, dict):
        raise LLMResponseError(f"Expected JSON object, got {type(payload).__name__}")
    return payload


def _string_list(value: Any, field: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise LLMResponseError(f"{field} must be a list of strings")
    return tuple(value)


class LLMWorker(Worker):
    """A specialist that asks the model for patches and delegations."""

    def __init__(self, role: WorkerRole, client: LLMClient):
        if role is WorkerRole.REVIEW:
            raise ValueError("Use LLMReviewer for the review role")
        self._role = role
        self.client = client

    @property
    def role(self) -> WorkerRole:
        return self._role

    async def execute(self, task: AgentTask, tools: ToolChannel) -> AgentResult:
        try:
            response = await self.client.complete(self._build_prompt(task), system=WORKER_SYSTEM)
        except LLMProviderError as e:
            raise WorkerError(f"LLM API call failed: {e}", recoverable=e.recoverable) from e

        await tools.say(response.content)

        try:
            payload = self._validate_response(response.content)
        except LLMResponseError as e:
            logger.warning("Worker %s got an invalid response: %s", task.worker_id, e)
            return AgentResult(
                role=self.role,
                success=False,
                error=AgentError(code="INVALID_RESPONSE", message=str(e), role=self.role, recoverable=True),
            )

        changes = []
        for item in payload["changes"]:
            change = await self._preview_change(task, item, tools)
            if change is not None:
                changes.append(change)

        return AgentResult(
            role=self.role,
            success=True,
            changes=changes,
            delegations=payload["delegations"],
            analysis=payload["analysis"],
        )

    async def _preview_change(self, task: AgentTask, item: dict, tools: ToolChannel) -> CodeChange | None:
        """Dry-run the patches through the tool channel so every edit is observed."""
        snapshot = task.context.file(item["file_name"])
        if snapshot is None:
            logger.warning("Worker %s proposed an edit to unknown file %s", task.worker_id, item["file_name"])
            return None

        patches = item["patches"]
        preview = {"content": snapshot.content}

        async def apply() -> str:
            preview["content"] = apply_patches(snapshot.content, patches).content
            return f"Applied {len(patches)} patch(es) to {snapshot.file_name}"

        event = await tools.call(
            "search_replace",
            {"filePath": snapshot.file_name, "old_text": patches[0].search},
            apply,
            is_edit=True,
        )
        if event.is_error:
            # The coordinator re-applies the patches and records the failure per file.
            logger.info("Preview failed for %s: %s", snapshot.file_name, event.result)

        return CodeChange(
            file_id=snapshot.file_id,
            file_name=snapshot.file_name,
            original_content=snapshot.content,
            proposed_content=preview["content"],
            patches=patches,
            reasoning=item["reasoning"],
            confidence=item["confidence"],
        )

    def _build_prompt(self, task: AgentTask) -> str:
        context = task.context
        sections = [ROLE_FOCUS.get(self.role, ""), f"=== TASK START ===\n{task.instruction}\n=== TASK END ==="]

        for snapshot in context.files:
            sections.append(f"=== FILE {snapshot.file_name} ===\n{snapshot.content}")
        if context.conversation:
            sections.append("Recent conversation:\n" + "\n".join(context.conversation))
        if context.diagnostics:
            sections.append(f"Diagnostics:\n{context.diagnostics}")
        if context.design_summary:
            sections.append(f"Design notes:\n{context.design_summary}")
        if context.memory_summary:
            sections.append(f"Remembered preferences:\n{context.memory_summary}")

        roles = ", ".join(r.value for r in ROLE_FOCUS if r is not WorkerRole.PROJECT_MANAGER)
        sections.append(
            "Output ONLY this JSON (no explanation, no markdown):\n"
            '{"changes": [{"file_name": "<file>", "patches": [{"search": "<exact text>", '
            '"replace": "<new text>"}], "reasoning": "<why>", "confidence": <0.0-1.0>}], '
            '"delegations": [{"role": "<role>", "task": "<instruction>", '
            '"affected_files": ["<file>"], "preferences": []}], "analysis": "<summary>"}\n'
            f"Delegation roles: {roles}. Each search must match the file exactly once."
        )
        return "\n\n".join(s for s in sections if s)

    def _validate_response(self, content: str) -> dict:
        """
        Validate the model's reply against the expected schema.

        Raises:
            LLMResponseError: If validation fails
        """
        payload = parse_object(content)

        raw_changes = payload.get("changes", [])
        raw_delegations = payload.get("delegations", [])
        if not isinstance(raw_changes, list) or not isinstance(raw_delegations, list):
            raise LLMResponseError("changes and delegations must be lists")

        changes = []
        for index, item in enumerate(raw_changes):
            if not isinstance(item, dict) or not isinstance(item.get("file_name"), str):
                raise LLMResponseError(f"changes[{index}] needs a file_name")
            raw_patches = item.get("patches")
            if not isinstance(raw_patches, list) or not raw_patches:
                raise LLMResponseError(f"changes[{index}] needs at least one patch")
            patches = []
            for patch in raw_patches:
                if not isinstance(patch, dict) or not all(
                    isinstance(patch.get(key), str) for key in ("search", "replace")
                ):
                    raise LLMResponseError(f"changes[{index}] has a malformed patch")
                patches.append(CodePatch(search=patch["search"], replace=patch["replace"]))

            try:
                confidence = float(item.get("confidence", 1.0))
                if not 0.0 <= confidence <= 1.0:
                    raise ValueError()
            except (ValueError, TypeError) as e:
                raise LLMResponseError(
                    f"Invalid confidence: {item.get('confidence')}. Must be float 0.0-1.0"
                ) from e

            reasoning = item.get("reasoning")
            changes.append({
                "file_name": item["file_name"],
                "patches": patches,
                "reasoning": reasoning if isinstance(reasoning, str) else "",
                "confidence": confidence,
            })

        delegations = []
        for index, item in enumerate(raw_delegations):
            if not isinstance(item, dict) or not isinstance(item.get("task"), str):
                raise LLMResponseError(f"delegations[{index}] needs a task")
            try:
                role = WorkerRole(item.get("role"))
            except ValueError as e:
                raise LLMResponseError(f"delegations[{index}] has unknown role {item.get('role')!r}") from e
            if role in (WorkerRole.REVIEW, WorkerRole.PROJECT_MANAGER):
                raise LLMResponseError(f"delegations[{index}] cannot target {role.value}")
            delegations.append(
                DelegationTask(
                    role=role,
                    task=item["task"],
                    affected_files=_string_list(item.get("affected_files"), "affected_files"),
                    preferences=_string_list(item.get("preferences"), "preferences"),
                )
            )

        analysis = payload.get("analysis")
        return {
            "changes": changes,
            "delegations": delegations,
            "analysis": analysis if isinstance(analysis, str) else None,
        }


class LLMReviewer(Reviewer):
    """Reviews the aggregate diff of an execution."""

    def __init__(self, client: LLMClient):
        self.client = client

    async def review(self, changes: list[CodeChange]) -> ReviewResult:
        response = await self.client.complete(self._build_prompt(changes), system=REVIEW_SYSTEM)
        return self._validate_response(response.content)

    def _build_prompt(self, changes: list[CodeChange]) -> str:
        diffs = []
        for change in changes:
            diff = difflib.unified_diff(
                change.original_content.splitlines(keepends=True),
                change.proposed_content.splitlines(keepends=True),
                fromfile=f"a/{change.file_name}",
                tofile=f"b/{change.file_name}",
            )
            diffs.append("".join(diff))

        return (
            "Review the changes below for bugs, broken references and style regressions.\n\n"
            + "\n".join(diffs)
            + "\n\nOutput ONLY this JSON:\n"
            '{"approved": <true|false>, "summary": "<one paragraph>", "issues": [{"severity": '
            '"error|warning|info", "file": "<file>", "line": <int or null>, "description": "<what>", '
            '"suggestion": "<fix or null>", "category": "<kind>"}]}'
        )

    def _validate_response(self, content: str) -> ReviewResult:
        payload = parse_object(content)

        if not isinstance(payload.get("approved"), bool):
            raise LLMResponseError("approved must be a boolean")
        raw_issues = payload.get("issues", [])
        if not isinstance(raw_issues, list):
            raise LLMResponseError("issues must be a list")

        issues = []
        for item in raw_issues:
            if not isinstance(item, dict):
                raise LLMResponseError("issues must contain objects")
            severity = item.get("severity")
            if severity not in VALID_SEVERITIES:
                raise LLMResponseError(f"Invalid severity: {severity}. Must be one of: {VALID_SEVERITIES}")
            line = item.get("line")
            issues.append(
                ReviewIssue(
                    severity=severity,
                    file=str(item.get("file", "")),
                    description=str(item.get("description", "")),
                    category=str(item.get("category") or "general"),
                    line=line if isinstance(line, int) else None,
                    suggestion=item.get("suggestion") if isinstance(item.get("suggestion"), str) else None,
                )
            )

        summary = payload.get("summary")
        return ReviewResult(
            approved=payload["approved"],
            issues=issues,
            summary=summary if isinstance(summary, str) else "",
        )
