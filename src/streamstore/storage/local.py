"""Stream store over a directory of the local file system (or a mounted network drive)."""
from __future__ import annotations
import datetime
import functools
import os
import pathlib
import posixpath
import stat
import typing as t
import uuid
from urllib.parse import ParseResult, unquote

import zrlog

from . import paths
from .base import StreamStore, StreamReader, StreamWriter, FileInfo, translate_os_error
from .errors import StorageError, IsDirectoryError, PathNotFoundError


def wrap_local_errors(cb):
    """Like local_file_error_wrap, but reports the store path instead of the absolute one."""

    @functools.wraps(cb)
    def _inner(self, path, *args, **kwargs):
        try:
            return cb(self, path, *args, **kwargs)
        except OSError as ex:
            raise translate_os_error(ex, path) from ex

    return _inner


def _info_from_stat(name: str, st: os.stat_result) -> FileInfo:
    modified = datetime.datetime.fromtimestamp(st.st_mtime, datetime.timezone.utc)
    if stat.S_ISDIR(st.st_mode):
        return FileInfo.for_directory(name, modified, st.st_mode)
    return FileInfo.for_file(name, st.st_size, modified, st.st_mode)


class LocalStreamStore(StreamStore):
    """Every path is resolved under a root directory; '..' cannot leave it.

        Directory sizes are always reported as 4096 bytes so that all backends
        agree, while modes are the real ones.
    """

    def __init__(self, root: t.Union[str, pathlib.Path, None] = None):
        root = pathlib.Path(root) if root else pathlib.Path.cwd()
        self._root = root.expanduser().absolute()
        self._log = zrlog.get_logger("streamstore.local")

    @property
    def root(self) -> pathlib.Path:
        return self._root

    def _full_path(self, path: str) -> pathlib.Path:
        clean = posixpath.normpath("/" + (path or "")).lstrip("/")
        if clean == "":
            return self._root
        return self._root / clean

    def _name(self, path: str) -> str:
        key = paths.to_key(posixpath.normpath("/" + (path or "")))
        return paths.last_elem(key) if key else "/"

    @wrap_local_errors
    def stat(self, path: str) -> FileInfo:
        return _info_from_stat(self._name(path), os.stat(self._full_path(path)))

    @wrap_local_errors
    def lstat(self, path: str) -> FileInfo:
        return _info_from_stat(self._name(path), os.lstat(self._full_path(path)))

    @wrap_local_errors
    def readdir(self, path: str) -> list[FileInfo]:
        with os.scandir(self._full_path(path)) as it:
            results = [_info_from_stat(entry.name, entry.stat()) for entry in it]
        results.sort(key=lambda x: x.name)
        return results

    @wrap_local_errors
    def mkdir(self, path: str, mode: int = 0o755):
        os.mkdir(self._full_path(path), mode)
        self._log.info(f"Created directory [{path}]")

    @wrap_local_errors
    def remove(self, path: str):
        full_path = self._full_path(path)
        if full_path == self._root:
            raise StorageError(f"Cannot remove the root directory", 1013)
        try:
            if os.path.isdir(full_path) and not os.path.islink(full_path):
                os.rmdir(full_path)
            else:
                os.remove(full_path)
        except NotADirectoryError as ex:
            # an ancestor is a file
            raise PathNotFoundError(path) from ex
        self._log.info(f"Removed [{path}]")

    @wrap_local_errors
    def open_read(self, path: str) -> StreamReader:
        full_path = self._full_path(path)
        if full_path.is_dir():
            raise IsDirectoryError(path)
        return LocalReader(path, open(full_path, "rb"))

    @wrap_local_errors
    def open_write(self, path: str) -> StreamWriter:
        full_path = self._full_path(path)
        if full_path == self._root or full_path.is_dir():
            raise IsDirectoryError(path)
        temp_path = full_path.with_name(f".{full_path.name}.{uuid.uuid4().hex}.partial")
        return LocalWriter(path, full_path, temp_path, open(temp_path, "xb"))

    @classmethod
    def from_url(cls, url: ParseResult) -> LocalStreamStore:
        return cls(unquote(url.path) or None)


class LocalReader(StreamReader):

    def __init__(self, path: str, handle):
        super().__init__(path)
        self._handle = handle

    @wrap_local_errors
    def _io(self, path: str, cb, *args):
        return cb(*args)

    def read(self, size: int = -1) -> bytes:
        self._check_open()
        return self._io(self._path, self._handle.read, size)

    def read_at(self, size: int, offset: int) -> bytes:
        self._check_open()
        if size <= 0:
            return b''
        position = self._handle.tell()
        try:
            self._io(self._path, self._handle.seek, offset)
            return self._io(self._path, self._handle.read, size)
        finally:
            self._handle.seek(position)

    def seek(self, offset: int) -> int:
        self._check_open()
        if offset < 0:
            raise StorageError(f"Invalid seek position [{offset}]", 1014)
        return self._io(self._path, self._handle.seek, offset)

    def tell(self) -> int:
        return self._handle.tell()

    def close(self):
        if not self._closed:
            self._handle.close()
        super().close()


class LocalWriter(StreamWriter):
    """Writes into a hidden sibling file that replaces the target on close().

        abort() removes the sibling and leaves any existing target untouched.
    """

    def __init__(self, path: str, full_path: pathlib.Path, temp_path: pathlib.Path, handle):
        super().__init__(path)
        self._full_path = full_path
        self._temp_path = temp_path
        self._handle = handle

    @wrap_local_errors
    def _io(self, path: str, cb, *args):
        return cb(*args)

    def write(self, data: bytes) -> int:
        self._check_open()
        return self._io(self._path, self._handle.write, data)

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            self._io(self._path, self._handle.close)
            self._io(self._path, os.replace, self._temp_path, self._full_path)
        except StorageError:
            self._temp_path.unlink(True)
            raise

    def abort(self):
        if self._closed:
            return
        self._closed = True
        try:
            self._handle.close()
        finally:
            self._temp_path.unlink(True)
