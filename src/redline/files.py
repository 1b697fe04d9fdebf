"""File collaborators used by the tool coordinator.

`FileStore` is the disk boundary (read / write / delete inside a project) and
`OpenFileRegistry` is the editor-side view of open buffers. Both are abstract
so sessions can run against a real directory or an in-memory fake.
"""

from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from collections.abc import Collection
from pathlib import Path

from redline.paths import (
    DEFAULT_BLOCKED_SEGMENTS,
    check_extension,
    is_blocked_segment,
    normalize_tool_path,
    resolve_in_project,
    to_project_relative,
)


class FileStore(ABC):
    @abstractmethod
    async def read(self, project_path: str, file_path: str) -> str | None:
        """Return file content, or None when the file does not exist."""

    @abstractmethod
    async def write(self, project_path: str, file_path: str, content: str) -> None:
        """Create or overwrite a file."""

    @abstractmethod
    async def delete(self, project_path: str, file_path: str) -> None:
        """Delete an existing file."""

    async def list_files(self, project_path: str) -> list[str]:
        """Project-relative file paths, for the system prompt. Optional."""
        return []


class LocalFileStore(FileStore):
    """`FileStore` over a directory on the local disk, jailed to the project root."""

    def __init__(
        self,
        *,
        blocked_segments: Collection[str] = DEFAULT_BLOCKED_SEGMENTS,
        allowed_extensions: Collection[str] = (),
    ) -> None:
        self._blocked = tuple(blocked_segments)
        self._allowed_extensions = tuple(allowed_extensions)

    def _resolve(self, project_path: str, file_path: str) -> Path:
        return resolve_in_project(Path(project_path), file_path, blocked_segments=self._blocked)

    def _read_sync(self, project_path: str, file_path: str) -> str | None:
        path = self._resolve(project_path, file_path)
        if not path.is_file():
            return None
        # newline="" keeps CRLF files byte-faithful; the aligner normalizes later.
        with open(path, encoding="utf-8", newline="") as f:
            return f.read()

    def _write_sync(self, project_path: str, file_path: str, content: str) -> None:
        path = self._resolve(project_path, file_path)
        check_extension(path, self._allowed_extensions)
        if path.is_dir():
            raise IsADirectoryError(f"expected file path, found directory: {file_path}")
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)

    def _delete_sync(self, project_path: str, file_path: str) -> None:
        path = self._resolve(project_path, file_path)
        if not path.exists():
            raise FileNotFoundError(f"file not found: {file_path}")
        if path.is_dir():
            raise IsADirectoryError(f"expected file path, found directory: {file_path}")
        path.unlink()

    def _list_sync(self, project_path: str) -> list[str]:
        root = Path(project_path)
        out: list[str] = []

        def walk(current: Path) -> None:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
            for entry in entries:
                if is_blocked_segment(entry.name, self._blocked) or entry.is_symlink():
                    continue
                if entry.is_dir():
                    walk(Path(entry.path))
                elif entry.is_file():
                    out.append(to_project_relative(root, Path(entry.path)))

        walk(root)
        return out

    async def read(self, project_path: str, file_path: str) -> str | None:
        return await asyncio.to_thread(self._read_sync, project_path, file_path)

    async def write(self, project_path: str, file_path: str, content: str) -> None:
        await asyncio.to_thread(self._write_sync, project_path, file_path, content)

    async def delete(self, project_path: str, file_path: str) -> None:
        await asyncio.to_thread(self._delete_sync, project_path, file_path)

    async def list_files(self, project_path: str) -> list[str]:
        return await asyncio.to_thread(self._list_sync, project_path)


class OpenFileRegistry(ABC):
    @abstractmethod
    def paths(self) -> list[str]:
        """Paths of the currently open file buffers, in open order."""

    @abstractmethod
    def get(self, path: str) -> str | None:
        """In-memory content of an open buffer, or None if it is not open."""

    @abstractmethod
    def replace(self, path: str, content: str) -> None:
        """Update an open buffer after a write; no-op if the path is not open."""

    @abstractmethod
    def close(self, path: str) -> None:
        """Drop an open buffer after a delete; no-op if the path is not open."""


class InMemoryOpenFiles(OpenFileRegistry):
    def __init__(self, files: dict[str, str] | None = None) -> None:
        self._buffers: dict[str, str] = {}
        for path, content in (files or {}).items():
            self.open(path, content)

    def open(self, path: str, content: str) -> None:
        self._buffers[normalize_tool_path(path)] = content

    def paths(self) -> list[str]:
        return list(self._buffers)

    def get(self, path: str) -> str | None:
        return self._buffers.get(normalize_tool_path(path))

    def replace(self, path: str, content: str) -> None:
        key = normalize_tool_path(path)
        if key in self._buffers:
            self._buffers[key] = content

    def close(self, path: str) -> None:
        self._buffers.pop(normalize_tool_path(path), None)
