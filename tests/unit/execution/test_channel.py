"""Tests for ToolChannel"""
import asyncio

import pytest
import pytest_asyncio

from conductor.errors import WorkerHalted
from conductor.execution.channel import ToolChannel, Verdict


async def answer(queue, verdict, seen):
    while True:
        event = await queue.get()
        seen.append(event)
        event.ack.set_result(verdict)


@pytest_asyncio.fixture
async def channel_with():
    """Build a channel whose events are acked with a fixed verdict"""
    tasks = []

    def build(verdict=Verdict.CONTINUE, timeout_s=1.0, cancelled=None):
        queue = asyncio.Queue()
        seen = []
        tasks.append(asyncio.create_task(answer(queue, verdict, seen)))
        return ToolChannel("css", queue, timeout_s, cancelled), seen

    yield build
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def ok():
    return "contents"


@pytest.mark.asyncio
async def test_call_forwards_event(channel_with):
    channel, seen = channel_with()

    event = await channel.call("read_file", {"path": "a.css"}, ok)

    assert event.result == "contents"
    assert event.is_error is False
    assert seen[0].kind == "tool_call"
    assert seen[0].payload is event
    assert channel.calls == 1


@pytest.mark.asyncio
async def test_tool_exception_becomes_error_event(channel_with):
    channel, _ = channel_with()

    async def boom():
        raise RuntimeError("disk on fire")

    event = await channel.call("read_file", {"path": "a.css"}, boom)

    assert event.is_error is True
    assert "disk on fire" in event.result


@pytest.mark.asyncio
async def test_tool_timeout_becomes_error_event(channel_with):
    channel, _ = channel_with(timeout_s=0.01)

    async def slow():
        await asyncio.sleep(1)
        return "late"

    event = await channel.call("search", {"query": "x"}, slow)

    assert event.is_error is True
    assert "timed out" in event.result


@pytest.mark.asyncio
async def test_escalate_revokes_budget(channel_with):
    """The escalated call returns, the next one is refused"""
    channel, _ = channel_with(verdict=Verdict.ESCALATE)

    await channel.call("read_file", {"path": "a.css"}, ok)

    assert channel.halted is True
    with pytest.raises(WorkerHalted):
        await channel.call("read_file", {"path": "a.css"}, ok)


@pytest.mark.asyncio
async def test_halt_raises(channel_with):
    channel, _ = channel_with(verdict=Verdict.HALT)

    with pytest.raises(WorkerHalted):
        await channel.say("thinking")


@pytest.mark.asyncio
async def test_cancelled_channel_refuses_calls(channel_with):
    cancelled = asyncio.Event()
    cancelled.set()
    channel, seen = channel_with(cancelled=cancelled)
    called = []

    async def tool():
        called.append(True)
        return "x"

    with pytest.raises(WorkerHalted):
        await channel.call("read_file", None, tool)
    assert called == []
    assert seen == []


@pytest.mark.asyncio
async def test_compaction_event(channel_with):
    channel, seen = channel_with()

    await channel.compacted(edits_made=False)

    assert seen[0].kind == "compaction"
    assert seen[0].payload is False
