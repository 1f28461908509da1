"""Runs one worker task and reports its completion"""
import asyncio
import logging

from conductor.errors import WorkerError, WorkerHalted
from conductor.execution.channel import Completion, ToolChannel
from conductor.execution.protocol import Worker
from conductor.orchestration.models import AgentError, AgentResult, AgentTask

logger = logging.getLogger(__name__)


class WorkerRunner:
    """Drives ``worker.execute`` and turns every outcome into a Completion"""

    def __init__(self, worker: Worker, completions: asyncio.Queue):
        self.worker = worker
        self.completions = completions

    async def run(self, task: AgentTask, channel: ToolChannel) -> None:
        completion = await self._execute(task, channel)
        await self.completions.put(completion)

    async def _execute(self, task: AgentTask, channel: ToolChannel) -> Completion:
        try:
            result = await self.worker.execute(task, channel)
            return Completion(task.worker_id, task, result)
        except WorkerHalted as e:
            logger.info("Worker %s halted: %s", task.worker_id, e)
            return Completion(task.worker_id, task, None, halted=True, error=str(e))
        except asyncio.CancelledError:
            raise
        except WorkerError as e:
            return Completion(task.worker_id, task, self._failure(task, "WORKER_ERROR", str(e), e.recoverable))
        except Exception as e:
            logger.exception("Worker %s raised", task.worker_id)
            return Completion(task.worker_id, task, self._failure(task, "EXECUTION_FAILED", str(e), False))

    @staticmethod
    def _failure(task: AgentTask, code: str, message: str, recoverable: bool) -> AgentResult:
        return AgentResult(
            role=task.role,
            success=False,
            error=AgentError(code=code, message=message, role=task.role, recoverable=recoverable),
        )
