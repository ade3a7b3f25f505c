"""Hierarchical filesystem emulation on top of flat, prefix addressed object storage.

    Object stores have no directories, only keys. A directory exists when either

    - a zero-length marker object is stored at `path/`, or
    - at least one other key starts with `path/`.

    Every adapter only has to provide a handful of primitives (one page of a
    delimited listing, put a marker, delete a key, read a stream or a range and
    upload a stream); this module turns them into the common stream store
    contract. All primitives must already raise errors from the storage taxonomy.
"""
from __future__ import annotations
import datetime
import typing as t

import zrlog

from . import paths
from .base import StreamStore, StreamReader, StreamWriter, FileInfo
from .errors import (
    StorageError, PathNotFoundError, PathExistsError, IsDirectoryError,
    NotDirectoryError, DirectoryNotEmptyError, ContractViolationError,
)
from .pipes import PipedUploadWriter


# A file key and a directory prefix are the only two possible matches
STAT_PAGE_SIZE = 2

DIRECTORY_CONTENT_TYPE = "application/x-directory"


class ObjectEntry:
    """One object returned by a listing."""

    def __init__(self, key: str, size: int, modified: t.Optional[datetime.datetime] = None):
        self.key = key
        self.size = size
        self.modified = modified

    def __repr__(self):
        return f"ObjectEntry({self.key!r}, {self.size})"


class ListPage:
    """One page of a delimited listing.

        objects holds the keys directly under the prefix, prefixes holds the
        common prefixes (each ending with the delimiter) and continuation is the
        token for the next page, or None on the last page.
    """

    def __init__(self, objects: list[ObjectEntry], prefixes: list[str], continuation: t.Optional[str] = None):
        self.objects = objects
        self.prefixes = prefixes
        self.continuation = continuation


class ObjectStreamStore(StreamStore):
    """Base class for stream stores backed by a flat object store."""

    log_name = "object"

    def __init__(self, bucket: str):
        self._bucket = bucket
        self._log = zrlog.get_logger(f"streamstore.{self.log_name}")

    @property
    def bucket(self) -> str:
        return self._bucket

    def _list_page(self, prefix: str, delimiter: str, max_keys: t.Optional[int], continuation: t.Optional[str]) -> ListPage:
        """Retrieve one page of keys and common prefixes starting with prefix."""
        raise NotImplementedError

    def _put_marker(self, key: str):
        """Store a zero-length directory marker at key (which ends with a slash)."""
        raise NotImplementedError

    def _delete_object(self, key: str):
        raise NotImplementedError

    def _open_object(self, key: str, offset: int):
        """Open a readable stream (with read(size) and close()) from offset to the end of the object.

            An offset past the end of the object must give an empty stream.
        """
        raise NotImplementedError

    def _read_range(self, key: str, offset: int, size: int) -> bytes:
        """Read up to size bytes from offset; b'' past the end of the object."""
        raise NotImplementedError

    def _stream_read(self, key: str, stream, size: int) -> bytes:
        """Read from a stream returned by _open_object(); adapters translate errors here."""
        if size is None or size < 0:
            return stream.read()
        return stream.read(size)

    def _close_stream(self, key: str, stream):
        """Release a stream returned by _open_object()."""
        stream.close()

    def _upload_stream(self, key: str, source):
        """Upload everything readable from source (a file-like with read(size)) to key."""
        raise NotImplementedError

    def _open_writer(self, path: str, key: str) -> StreamWriter:
        return PipedUploadWriter(path, key, self._upload_stream, self._log)

    def _list(self, prefix: str, delimiter: str = "/", max_keys: t.Optional[int] = None) -> t.Iterable[ListPage]:
        """Iterate over the pages of a listing, following the continuation token."""
        continuation = None
        while True:
            self._log.debug(f"Listing [{self._bucket}] prefix [{prefix}]")
            page = self._list_page(prefix, delimiter, max_keys, continuation)
            yield page
            if not page.continuation:
                break
            continuation = page.continuation

    def stat(self, path: str) -> FileInfo:
        name = paths.to_key(path)
        if name == "":
            return FileInfo.for_directory("/")
        dir_key = name + "/"
        matching = []
        seen = set()
        for page in self._list(name, "/", STAT_PAGE_SIZE):
            furthest = ""
            for obj in page.objects:
                furthest = max(furthest, obj.key)
                if obj.key == name and obj.key not in seen:
                    seen.add(obj.key)
                    matching.append(FileInfo.for_file(paths.last_elem(name), obj.size, obj.modified))
            for prefix in page.prefixes:
                furthest = max(furthest, prefix)
                if prefix == dir_key and prefix not in seen:
                    seen.add(prefix)
                    matching.append(FileInfo.for_directory(paths.last_elem(name)))
            # Keys come back in order, nothing past name/ can match
            if furthest >= dir_key:
                break
        if not matching:
            raise PathNotFoundError(path)
        if len(matching) > 1:
            raise ContractViolationError(f"[{path}] is both a file and a directory in [{self._bucket}]")
        return matching[0]

    def readdir(self, path: str) -> list[FileInfo]:
        key = paths.to_key(path)
        prefix = paths.dir_prefix(key)
        results = []
        saw_marker = False
        for page in self._list(prefix, "/"):
            for obj in page.objects:
                if obj.key == prefix:
                    saw_marker = True
                    continue
                name = obj.key[len(prefix):]
                if name:
                    results.append(FileInfo.for_file(name, obj.size, obj.modified))
            for common_prefix in page.prefixes:
                # "a//b" style keys have no addressable name
                name = paths.no_slash_suffix(common_prefix[len(prefix):])
                if name:
                    results.append(FileInfo.for_directory(name))
        if not results and not saw_marker and key != "":
            if not self.stat(path).is_dir:
                raise NotDirectoryError(path)
        results.sort(key=lambda x: x.name)
        return results

    def _check_parent_dir(self, key: str):
        parent = paths.parent_key(key)
        if parent != "":
            info = self.stat(parent)
            if not info.is_dir:
                raise NotDirectoryError(parent)

    def mkdir(self, path: str, mode: int = 0o755):
        key = paths.to_key(path)
        if key == "":
            raise PathExistsError(path)
        self._check_parent_dir(key)
        if self.exists(key):
            raise PathExistsError(path)
        self._put_marker(paths.fix_trailing_slash(key, True))
        self._log.info(f"Created directory [{key}] in [{self._bucket}]")

    def remove(self, path: str):
        info = self.stat(path)
        key = paths.to_key(path)
        if key == "":
            raise StorageError(f"Cannot remove the root directory", 1013)
        if info.is_dir:
            if self.readdir(path):
                raise DirectoryNotEmptyError(path)
            key = paths.fix_trailing_slash(key, True)
        self._delete_object(key)
        self._log.info(f"Removed [{key}] from [{self._bucket}]")

    def open_read(self, path: str) -> StreamReader:
        info = self.stat(path)
        if info.is_dir:
            raise IsDirectoryError(path)
        return ObjectReader(self, path, paths.to_key(path))

    def open_write(self, path: str) -> StreamWriter:
        key = paths.to_key(path)
        if key == "":
            raise IsDirectoryError(path)
        self._check_parent_dir(key)
        if self.is_dir(key):
            raise IsDirectoryError(path)
        return self._open_writer(path, key)


class ObjectReader(StreamReader):
    """Reader over a single object.

        seek() is deferred: it only records the new offset, and the next read()
        closes the current stream and opens a new one starting at that offset.
    """

    def __init__(self, store: ObjectStreamStore, path: str, key: str):
        super().__init__(path)
        self._store = store
        self._key = key
        self._stream = None
        self._position = 0
        self._pending_seek: t.Optional[int] = None

    def read(self, size: int = -1) -> bytes:
        self._check_open()
        if self._pending_seek is not None:
            self._discard_stream()
            self._position = self._pending_seek
            self._pending_seek = None
        if self._stream is None:
            self._stream = self._store._open_object(self._key, self._position)
        data = self._store._stream_read(self._key, self._stream, size)
        self._position += len(data)
        return data

    def read_at(self, size: int, offset: int) -> bytes:
        self._check_open()
        if size <= 0:
            return b''
        data = self._store._read_range(self._key, offset, size)
        if len(data) > size:
            raise ContractViolationError(f"Expected at most {size} bytes from [{self._key}], received {len(data)}")
        return data

    def seek(self, offset: int) -> int:
        self._check_open()
        if offset < 0:
            raise StorageError(f"Invalid seek position [{offset}]", 1014)
        self._pending_seek = offset
        return offset

    def tell(self) -> int:
        if self._pending_seek is not None:
            return self._pending_seek
        return self._position

    def _discard_stream(self):
        if self._stream is not None:
            stream = self._stream
            self._stream = None
            self._store._close_stream(self._key, stream)

    def close(self):
        if not self._closed:
            self._discard_stream()
        super().close()
