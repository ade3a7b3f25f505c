"""In-memory stream store, used as the reference implementation in conformance tests."""
from __future__ import annotations
import datetime
import threading
import typing as t
from urllib.parse import ParseResult

import zrlog

from . import paths
from .base import StreamStore, StreamReader, StreamWriter, FileInfo
from .errors import (
    PathNotFoundError, PathExistsError, IsDirectoryError, NotDirectoryError,
    DirectoryNotEmptyError, StorageError,
)


class _MemoryNode:

    def __init__(self, name: str, is_dir: bool):
        self.name = name
        self.is_dir = is_dir
        self.content = b''
        self.entries: dict[str, _MemoryNode] = {}
        self.modified = datetime.datetime.now(datetime.timezone.utc)

    def info(self) -> FileInfo:
        if self.is_dir:
            return FileInfo.for_directory(self.name, self.modified)
        return FileInfo.for_file(self.name, len(self.content), self.modified)


class MemoryStreamStore(StreamStore):
    """Tree of nodes held in memory.

        A single lock covers the whole tree for the duration of every operation,
        reads included.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._root = _MemoryNode("/", True)
        self._log = zrlog.get_logger("streamstore.memory")

    def _get_existing(self, path: str) -> _MemoryNode:
        node = self._root
        for elem in paths.split(path):
            node = node.entries.get(elem) if node.is_dir else None
            if node is None:
                raise PathNotFoundError(path)
        return node

    def _get_parent(self, path: str) -> tuple[_MemoryNode, str]:
        elems = paths.split(path)
        if not elems:
            raise PathExistsError(path)
        parent = self._root
        for elem in elems[:-1]:
            parent = parent.entries.get(elem) if parent.is_dir else None
            if parent is None:
                raise PathNotFoundError(path)
        if not parent.is_dir:
            raise NotDirectoryError(path)
        return parent, elems[-1]

    def stat(self, path: str) -> FileInfo:
        with self._lock:
            return self._get_existing(path).info()

    def readdir(self, path: str) -> list[FileInfo]:
        with self._lock:
            node = self._get_existing(path)
            if not node.is_dir:
                raise NotDirectoryError(path)
            return [node.entries[name].info() for name in sorted(node.entries)]

    def mkdir(self, path: str, mode: int = 0o755):
        with self._lock:
            parent, name = self._get_parent(path)
            if name in parent.entries:
                raise PathExistsError(path)
            parent.entries[name] = _MemoryNode(name, True)
            self._log.debug(f"Created directory [{path}]")

    def remove(self, path: str):
        with self._lock:
            if paths.is_root(path):
                raise StorageError(f"Cannot remove the root directory", 1013)
            node = self._get_existing(path)
            parent, name = self._get_parent(path)
            if node.is_dir and node.entries:
                raise DirectoryNotEmptyError(path)
            del parent.entries[name]
            self._log.debug(f"Removed [{path}]")

    def open_read(self, path: str) -> StreamReader:
        with self._lock:
            node = self._get_existing(path)
            if node.is_dir:
                raise IsDirectoryError(path)
            return MemoryReader(path, node.content)

    def open_write(self, path: str) -> StreamWriter:
        with self._lock:
            self._check_writable(path)
            return MemoryWriter(self, path)

    def _check_writable(self, path: str) -> tuple[_MemoryNode, str]:
        parent, name = self._get_parent(path)
        existing = parent.entries.get(name)
        if existing is not None and existing.is_dir:
            raise IsDirectoryError(path)
        return parent, name

    def _commit(self, path: str, content: bytes):
        with self._lock:
            parent, name = self._check_writable(path)
            node = parent.entries.get(name)
            if node is None:
                node = _MemoryNode(name, False)
                parent.entries[name] = node
            node.content = content
            node.modified = datetime.datetime.now(datetime.timezone.utc)
            self._log.debug(f"Wrote {len(content)} bytes to [{path}]")

    @classmethod
    def from_url(cls, url: ParseResult) -> MemoryStreamStore:
        return cls()


class MemoryReader(StreamReader):

    def __init__(self, path: str, content: bytes):
        super().__init__(path)
        self._content = content
        self._position = 0

    def read(self, size: int = -1) -> bytes:
        self._check_open()
        if size is None or size < 0:
            end = len(self._content)
        else:
            end = min(len(self._content), self._position + size)
        data = self._content[self._position:end]
        self._position = max(self._position, end)
        return data

    def read_at(self, size: int, offset: int) -> bytes:
        self._check_open()
        return self._content[offset:offset + size]

    def seek(self, offset: int) -> int:
        self._check_open()
        if offset < 0:
            raise StorageError(f"Invalid seek position [{offset}]", 1014)
        self._position = offset
        return offset

    def tell(self) -> int:
        return self._position


class MemoryWriter(StreamWriter):
    """Buffers everything written and commits it to the tree on close()."""

    def __init__(self, store: MemoryStreamStore, path: str):
        super().__init__(path)
        self._store = store
        self._buffer: list[bytes] = []

    def write(self, data: bytes) -> int:
        self._check_open()
        self._buffer.append(bytes(data))
        return len(data)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._store._commit(self._path, b''.join(self._buffer))
        self._buffer = []

    def abort(self):
        self._closed = True
        self._buffer = []
