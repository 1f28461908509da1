"""Current-content tracking for the files one execution touches."""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace

from conductor.errors import VersionConflictError
from conductor.execution.protocol import FileStore
from conductor.orchestration.models import CodeChange
from conductor.patching import apply_patches

logger = logging.getLogger(__name__)


@dataclass
class AppliedChange:
    """A CodeChange after patch re-application against current content"""
    change: CodeChange
    diverged: bool = False
    rebased: bool = False
    strategies: list[str] = field(default_factory=list)


class FileTracker:
    """Holds the latest applied content per file and serialises updates per file.

    Patch-based changes are re-applied against whatever is current, so two
    workers editing the same file compose. A full-content change whose
    ``original_content`` is stale would overwrite the other worker's edit and
    is rejected as a version conflict.
    """

    def __init__(self, store: FileStore | None = None):
        self.store = store
        self._base: dict[str, str] = {}
        self._current: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def seed(self, file_id: str, content: str) -> None:
        """Track ``content`` as the starting point unless the file is already tracked"""
        if file_id not in self._current:
            self._base[file_id] = content
            self._current[file_id] = content

    def peek(self, file_id: str) -> str | None:
        return self._current.get(file_id)

    def changed_files(self) -> dict[str, str]:
        return {
            file_id: content
            for file_id, content in self._current.items()
            if content != self._base[file_id]
        }

    async def current(self, file_id: str, fallback: str | None = None) -> str:
        if file_id not in self._current:
            if self.store is not None:
                self.seed(file_id, await self.store.read(file_id))
            elif fallback is not None:
                self.seed(file_id, fallback)
            else:
                raise KeyError(f"Untracked file: {file_id}")
        return self._current[file_id]

    async def apply(self, change: CodeChange) -> AppliedChange:
        """Apply one change on top of the tracked content.

        Raises:
            VersionConflictError: a full-content change was computed against stale content
            PatchError: a patch no longer locates its target
        """
        async with self._locks[change.file_id]:
            current = await self.current(change.file_id, fallback=change.original_content)
            stale = change.original_content != current

            if change.patches:
                application = apply_patches(current, change.patches, change.line_range)
                content = application.content
                strategies = application.strategies
                if stale:
                    logger.info("Rebased patches for %s onto current content", change.file_name)
            elif stale:
                raise VersionConflictError(change.file_name)
            else:
                content = change.proposed_content
                strategies = []

            diverged = bool(change.patches) and content != change.proposed_content
            self._current[change.file_id] = content
            return AppliedChange(
                change=replace(change, original_content=current, proposed_content=content),
                diverged=diverged,
                rebased=stale,
                strategies=strategies,
            )

    async def commit(self) -> dict[str, str]:
        """Write every changed file back to the store, returning version tokens.

        Raises:
            VersionConflictError: the store changed underneath this execution
        """
        if self.store is None:
            raise RuntimeError("No file store configured")

        changed = self.changed_files()
        for file_id in changed:
            if await self.store.read(file_id) != self._base[file_id]:
                raise VersionConflictError(file_id)

        tokens = {}
        for file_id, content in changed.items():
            tokens[file_id] = await self.store.write(file_id, content)
            self._base[file_id] = content
        return tokens
