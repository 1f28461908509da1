"""In-memory FileStore"""
import asyncio
import hashlib

from conductor.execution.protocol import FileStore


class InMemoryFileStore(FileStore):
    """Dict-backed store whose version token is a content hash"""

    def __init__(self, files: dict[str, str] | None = None):
        self._files: dict[str, str] = dict(files or {})
        self._lock = asyncio.Lock()
        self.writes: list[tuple[str, str]] = []

    async def read(self, file_id: str) -> str:
        if file_id not in self._files:
            raise KeyError(f"Unknown file: {file_id}")
        return self._files[file_id]

    async def write(self, file_id: str, content: str) -> str:
        async with self._lock:
            self._files[file_id] = content
            token = self.version_of(content)
            self.writes.append((file_id, token))
            return token

    @staticmethod
    def version_of(content: str) -> str:
        return hashlib.sha1(content.encode("utf-8")).hexdigest()[:16]

    def snapshot(self) -> dict[str, str]:
        return dict(self._files)
