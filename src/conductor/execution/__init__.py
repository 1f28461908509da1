"""Execution layer: worker protocols, tool channels and runners"""
from .channel import ChannelEvent, Completion, ToolChannel, Verdict
from .file_store import InMemoryFileStore
from .protocol import FileStore, Reviewer, Worker
from .runner import WorkerRunner

__all__ = [
    "ChannelEvent",
    "Completion",
    "FileStore",
    "InMemoryFileStore",
    "Reviewer",
    "ToolChannel",
    "Verdict",
    "Worker",
    "WorkerRunner",
]
