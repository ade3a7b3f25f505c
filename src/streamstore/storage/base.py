from __future__ import annotations
import datetime
import errno
import fnmatch
import functools
import pathlib
import posixpath
import stat
import typing as t

from streamstore.util import HaltFlag, HaltInterrupt
from .errors import (
    StorageError, PathNotFoundError, PathExistsError, IsDirectoryError,
    NotDirectoryError, DirectoryNotEmptyError, BackendTransportError,
)


DEFAULT_CHUNK_SIZE = 4194304
DEFAULT_BUFFER_SIZE = 2621440

DIRECTORY_SIZE = 4096
DIRECTORY_MODE = stat.S_IFDIR | 0o755
FILE_MODE = 0o644


def local_file_error_wrap(cb):
    """Converts typical local file-system errors into the storage error taxonomy."""

    @functools.wraps(cb)
    def _inner(*args, **kwargs):
        try:
            return cb(*args, **kwargs)
        except OSError as ex:
            raise translate_os_error(ex) from ex

    return _inner


def translate_os_error(ex: OSError, path: t.Optional[str] = None) -> StorageError:
    """Map an OSError onto the storage error taxonomy."""
    path = path or (str(ex.filename) if ex.filename is not None else "")
    if isinstance(ex, FileNotFoundError) or ex.errno == errno.ENOENT:
        return PathNotFoundError(path)
    if isinstance(ex, FileExistsError) or ex.errno == errno.EEXIST:
        return PathExistsError(path)
    if isinstance(ex, IsADirectoryError) or ex.errno == errno.EISDIR:
        return IsDirectoryError(path)
    if isinstance(ex, NotADirectoryError) or ex.errno == errno.ENOTDIR:
        return NotDirectoryError(path)
    if ex.errno == errno.ENOTEMPTY:
        return DirectoryNotEmptyError(path)
    if isinstance(ex, PermissionError):
        return BackendTransportError(f"Access to [{path}] denied", 1003, True)
    return BackendTransportError(f"Exception processing [{path}]: {ex.__class__.__name__}: {str(ex)}", 1008)


class FileInfo:
    """Metadata about a single file or directory in a stream store."""

    def __init__(self,
                 name: str,
                 size: int,
                 is_dir: bool,
                 modified: t.Optional[datetime.datetime] = None,
                 mode: t.Optional[int] = None):
        self._name = name
        self._size = size
        self._is_dir = is_dir
        self._modified = modified
        if mode is None:
            mode = DIRECTORY_MODE if is_dir else FILE_MODE
        self._mode = mode

    @classmethod
    def for_directory(cls, name: str, modified: t.Optional[datetime.datetime] = None, mode: t.Optional[int] = None) -> FileInfo:
        return cls(name, DIRECTORY_SIZE, True, modified, mode)

    @classmethod
    def for_file(cls, name: str, size: int, modified: t.Optional[datetime.datetime] = None, mode: t.Optional[int] = None) -> FileInfo:
        return cls(name, size, False, modified, mode)

    @property
    def name(self) -> str:
        return self._name

    @property
    def size(self) -> int:
        return self._size

    @property
    def is_dir(self) -> bool:
        return self._is_dir

    @property
    def modified(self) -> t.Optional[datetime.datetime]:
        return self._modified

    @property
    def mode(self) -> int:
        return self._mode

    def __eq__(self, other):
        if not isinstance(other, FileInfo):
            return NotImplemented
        return (
            self._name == other._name
            and self._size == other._size
            and self._is_dir == other._is_dir
            and self._modified == other._modified
            and self._mode == other._mode
        )

    def __repr__(self):
        kind = "dir" if self._is_dir else "file"
        return f"FileInfo({self._name!r}, {kind}, size={self._size}, mode={oct(self._mode)})"


class StreamReader:
    """Readable handle on a single file."""

    def __init__(self, path: str):
        self._path = path
        self._closed = False

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes (everything when size is negative); b'' at end of stream."""
        raise NotImplementedError

    def read_at(self, size: int, offset: int) -> bytes:
        """Read size bytes starting at offset without moving the stream position.

        A result shorter than size means the end of the stream was reached.
        """
        raise NotImplementedError

    def seek(self, offset: int) -> int:
        """Move to an absolute offset from the start of the file."""
        raise NotImplementedError

    def tell(self) -> int:
        raise NotImplementedError

    def close(self):
        self._closed = True

    def iter_chunks(self, buffer_size: t.Optional[int] = None, halt_flag: t.Optional[HaltFlag] = None) -> t.Iterable[bytes]:
        """Read the file in chunks given a buffer size."""
        if buffer_size is None:
            buffer_size = DEFAULT_BUFFER_SIZE
        if halt_flag:
            halt_flag.check_continue(True)
        x = self.read(buffer_size)
        while x != b'':
            yield x
            if halt_flag:
                halt_flag.check_continue(True)
            x = self.read(buffer_size)

    def _check_open(self):
        if self._closed:
            raise StorageError(f"Reader for [{self._path}] is closed", 1011)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class StreamWriter:
    """Writable handle that commits the file on close() and discards it on abort()."""

    def __init__(self, path: str):
        self._path = path
        self._closed = False

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes) -> int:
        raise NotImplementedError

    def close(self):
        raise NotImplementedError

    def abort(self):
        raise NotImplementedError

    def _check_open(self):
        if self._closed:
            raise StorageError(f"Writer for [{self._path}] is closed", 1012)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.close()
        elif not self._closed:
            self.abort()


class StreamStore:
    """Common contract of every storage backend.

        Paths are '/'-separated; '' and '/' are the root directory. Every
        method raises a subclass of StorageError on failure.
    """

    def stat(self, path: str) -> FileInfo:
        raise NotImplementedError

    def lstat(self, path: str) -> FileInfo:
        return self.stat(path)

    def readdir(self, path: str) -> list[FileInfo]:
        """List the entries of a directory, sorted by name."""
        raise NotImplementedError

    def mkdir(self, path: str, mode: int = 0o755):
        raise NotImplementedError

    def remove(self, path: str):
        """Remove a file or an empty directory."""
        raise NotImplementedError

    def open_read(self, path: str) -> StreamReader:
        raise NotImplementedError

    def open_write(self, path: str) -> StreamWriter:
        """Open a file for writing, replacing any existing content when closed."""
        raise NotImplementedError

    def close(self):
        """Release backend connections."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def exists(self, path: str) -> bool:
        try:
            self.stat(path)
            return True
        except PathNotFoundError:
            return False

    def is_dir(self, path: str) -> bool:
        try:
            return self.stat(path).is_dir
        except PathNotFoundError:
            return False

    def mkdir_all(self, path: str, mode: int = 0o755):
        """Create a directory and any missing parents."""
        try:
            info = self.stat(path)
            if info.is_dir:
                return
            raise NotDirectoryError(path)
        except PathNotFoundError:
            pass
        trimmed = path.rstrip("/")
        parent = posixpath.dirname(trimmed)
        if parent not in ("", "/") and parent != trimmed:
            self.mkdir_all(parent, mode)
        try:
            self.mkdir(path, mode)
        except StorageError as ex:
            # Handles arguments like "foo/." or a concurrent mkdir
            if self.is_dir(path):
                return
            raise ex

    def read_bytes(self, path: str) -> bytes:
        with self.open_read(path) as reader:
            return reader.read()

    def write_bytes(self, path: str, data: bytes):
        with self.open_write(path) as writer:
            writer.write(data)

    def download(self,
                 path: str,
                 local_path: pathlib.Path,
                 allow_overwrite: bool = False,
                 buffer_size: t.Optional[int] = None,
                 halt_flag: t.Optional[HaltFlag] = None):
        """Download the file to the given local path."""
        if (not allow_overwrite) and local_path.exists():
            raise PathExistsError(str(local_path), 1000)
        try:
            with self.open_read(path) as reader:
                _local_write_chunks(local_path, reader.iter_chunks(buffer_size, halt_flag), halt_flag)
        except (Exception, HaltInterrupt) as ex:
            local_path.unlink(True)
            raise ex

    def upload(self,
               source,
               path: str,
               allow_overwrite: bool = False,
               buffer_size: t.Optional[int] = None,
               halt_flag: t.Optional[HaltFlag] = None):
        """Upload a local file (or bytes, a readable or an iterable of bytes) to the given path."""
        if (not allow_overwrite) and self.exists(path):
            raise PathExistsError(path, 1001)
        with self.open_write(path) as writer:
            for chunk in _local_read_chunks(source, buffer_size, halt_flag):
                writer.write(chunk)

    def search(self, root: str, pattern: t.Optional[str] = None, halt_flag: t.Optional[HaltFlag] = None) -> t.Iterable[str]:
        """Find the paths of all files under root whose name matches the pattern."""
        from .walk import walk
        found = []

        def _visit(file_path: str, info: t.Optional[FileInfo], error: t.Optional[Exception]):
            if error is not None:
                raise error
            if not info.is_dir and (pattern is None or fnmatch.fnmatch(info.name, pattern)):
                found.append(file_path)

        walk(self, root, _visit, halt_flag=halt_flag)
        yield from found


def _local_read_chunks(source, buffer_size: t.Optional[int] = None, halt_flag: t.Optional[HaltFlag] = None) -> t.Iterable[bytes]:
    """Local implementation of reading chunks from a file."""
    if buffer_size is None:
        buffer_size = DEFAULT_CHUNK_SIZE
    if isinstance(source, (bytes, bytearray)):
        yield bytes(source)
    elif isinstance(source, (str, pathlib.Path)):
        try:
            with open(source, "rb") as src:
                yield from _read_in_chunks(src, buffer_size, halt_flag)
        except OSError as ex:
            raise translate_os_error(ex, str(source)) from ex
    elif hasattr(source, 'read'):
        yield from _read_in_chunks(source, buffer_size, halt_flag)
    elif hasattr(source, '__iter__'):
        yield from HaltFlag.iterate(source, halt_flag, True)


def _read_in_chunks(readable, buffer_size: int, halt_flag: t.Optional[HaltFlag] = None) -> t.Iterable[bytes]:
    """Read in chunks from a readable object."""
    if halt_flag:
        halt_flag.check_continue(True)
    x = readable.read(buffer_size)
    while x != b'':
        yield x
        if halt_flag:
            halt_flag.check_continue(True)
        x = readable.read(buffer_size)


@local_file_error_wrap
def _local_write_chunks(local_path: pathlib.Path, chunks: t.Iterable[bytes], halt_flag: t.Optional[HaltFlag] = None):
    """Write chunks to a local file."""
    with open(local_path, "wb") as dest:
        for chunk in HaltFlag.iterate(chunks, halt_flag, True):
            dest.write(chunk)
