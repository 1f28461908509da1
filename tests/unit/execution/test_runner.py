"""Tests for WorkerRunner"""
import asyncio

import pytest

from conductor.errors import WorkerError, WorkerHalted
from conductor.execution import ToolChannel, Worker, WorkerRunner
from conductor.orchestration.models import AgentResult, AgentTask, WorkerRole


class RaisingWorker(Worker):
    def __init__(self, exc=None):
        self.exc = exc

    @property
    def role(self):
        return WorkerRole.CSS

    async def execute(self, task, tools):
        if self.exc:
            raise self.exc
        return AgentResult(role=self.role, success=True, analysis="done")


async def run_once(worker):
    completions = asyncio.Queue()
    task = AgentTask(execution_id="ex1", role=WorkerRole.CSS, instruction="tweak")
    channel = ToolChannel(task.worker_id, asyncio.Queue(), 1.0)

    await WorkerRunner(worker, completions).run(task, channel)
    return completions.get_nowait()


@pytest.mark.asyncio
async def test_success_completion():
    completion = await run_once(RaisingWorker())

    assert completion.worker_id == "css"
    assert completion.result.success is True
    assert completion.halted is False


@pytest.mark.asyncio
async def test_worker_error_keeps_recoverable_flag():
    completion = await run_once(RaisingWorker(WorkerError("rate limited", recoverable=True)))

    assert completion.result.success is False
    assert completion.result.error.code == "WORKER_ERROR"
    assert completion.result.error.recoverable is True


@pytest.mark.asyncio
async def test_unexpected_exception_is_fatal():
    completion = await run_once(RaisingWorker(RuntimeError("bug")))

    assert completion.result.error.code == "EXECUTION_FAILED"
    assert completion.result.error.recoverable is False


@pytest.mark.asyncio
async def test_halted_worker():
    completion = await run_once(RaisingWorker(WorkerHalted("budget revoked")))

    assert completion.halted is True
    assert completion.result is None
    assert "budget revoked" in completion.error
