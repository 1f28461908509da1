"""Boundary interfaces the coordinator depends on"""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from conductor.orchestration.models import (
    AgentResult,
    AgentTask,
    CodeChange,
    ReviewResult,
    WorkerRole,
)

if TYPE_CHECKING:
    from conductor.execution.channel import ToolChannel


class FileStore(ABC):
    """Source of truth for file content"""

    @abstractmethod
    async def read(self, file_id: str) -> str:
        """Return current content, raising KeyError for unknown files"""
        pass

    @abstractmethod
    async def write(self, file_id: str, content: str) -> str:
        """Persist content and return the new version token"""
        pass


class Worker(ABC):
    """A role-scoped specialist that turns an AgentTask into an AgentResult"""

    @property
    @abstractmethod
    def role(self) -> WorkerRole:
        pass

    @abstractmethod
    async def execute(self, task: AgentTask, tools: "ToolChannel") -> AgentResult:
        """Run the task, issuing every tool call through ``tools``"""
        pass


class Reviewer(ABC):
    """Optional review step over an execution's aggregate changes"""

    @abstractmethod
    async def review(self, changes: list[CodeChange]) -> ReviewResult:
        pass
