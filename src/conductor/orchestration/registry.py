"""Execution registry keyed by execution id"""
import logging
import uuid
from typing import Mapping

from conductor.config.manager import ConfigManager
from conductor.config.schema import ConductorConfig
from conductor.execution.protocol import FileStore, Reviewer, Worker
from conductor.orchestration.coordinator import Coordinator
from conductor.orchestration.models import (
    AgentContext,
    AgentTask,
    ExecutionState,
    WorkerRole,
)

logger = logging.getLogger(__name__)


class CoordinatorRegistry:
    """Owns one Coordinator per live execution.

    Coordinators share nothing with each other; the registry is only the
    lookup used to cancel or inspect an execution from outside its run loop.
    """

    def __init__(
        self,
        workers: Mapping[WorkerRole, Worker],
        reviewer: Reviewer | None = None,
        store: FileStore | None = None,
        config: ConductorConfig | None = None,
    ):
        self.workers = dict(workers)
        self.reviewer = reviewer
        self.store = store
        self.config = config or ConfigManager.get_config()
        self._coordinators: dict[str, Coordinator] = {}

    def start(
        self,
        project_id: str,
        user_id: str,
        request: str,
        execution_id: str | None = None,
    ) -> Coordinator:
        """Create and register a coordinator for a new execution."""
        execution_id = execution_id or str(uuid.uuid4())[:8]
        if execution_id in self._coordinators:
            raise ValueError(f"Execution {execution_id} already exists")

        state = ExecutionState(
            execution_id=execution_id, project_id=project_id, user_id=user_id, request=request
        )
        coordinator = Coordinator(
            state, self.workers, reviewer=self.reviewer, store=self.store, config=self.config
        )
        self._coordinators[execution_id] = coordinator
        logger.info("Started execution %s for project %s", execution_id, project_id)
        return coordinator

    async def execute(
        self,
        project_id: str,
        user_id: str,
        request: str,
        context: AgentContext | None = None,
        role: WorkerRole = WorkerRole.PROJECT_MANAGER,
        retain: bool = False,
    ) -> ExecutionState:
        """Run a request end to end, starting at ``role``.

        The coordinator is forgotten once the run returns. Pass ``retain`` to
        keep it for ``commit`` or inspection; the caller then owns ``discard``.
        """
        coordinator = self.start(project_id, user_id, request)
        task = AgentTask(
            execution_id=coordinator.execution_id,
            role=role,
            instruction=request,
            context=context or AgentContext(),
        )
        try:
            return await coordinator.run(task)
        finally:
            if not retain:
                self._coordinators.pop(coordinator.execution_id, None)

    def get(self, execution_id: str) -> Coordinator:
        try:
            return self._coordinators[execution_id]
        except KeyError:
            raise KeyError(f"Unknown execution: {execution_id}") from None

    def cancel(self, execution_id: str, reason: str = "Cancelled by user") -> None:
        self.get(execution_id).cancel(reason)

    def discard(self, execution_id: str) -> None:
        """Forget a finished execution."""
        coordinator = self.get(execution_id)
        if not coordinator.state.is_terminal:
            raise ValueError(f"Execution {execution_id} is still {coordinator.state.status.value}")
        del self._coordinators[execution_id]

    def __contains__(self, execution_id: str) -> bool:
        return execution_id in self._coordinators

    def __len__(self) -> int:
        return len(self._coordinators)
