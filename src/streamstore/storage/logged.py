"""Stream store wrapper that logs every call made to another store."""
from __future__ import annotations
import functools

import zrlog

from .base import StreamStore, StreamReader, StreamWriter, FileInfo


def _logged_call(method_name: str):

    def _decorator(cb):

        @functools.wraps(cb)
        def _inner(self, *args, **kwargs):
            arg_str = ", ".join(repr(x) for x in args)
            self._log.debug(f"before {method_name}({arg_str})")
            try:
                result = cb(self, *args, **kwargs)
            except Exception as ex:
                self._log.debug(f"failed {method_name}({arg_str}): {ex.__class__.__name__}: {str(ex)}")
                raise ex
            self._log.debug(f"after {method_name}({arg_str})")
            return result

        return _inner

    return _decorator


class LoggingStreamStore(StreamStore):
    """Delegates to a wrapped store, writing a debug message before and after each call."""

    def __init__(self, wrapped: StreamStore, logger_name: str = "streamstore.logged"):
        self._wrapped = wrapped
        self._log = zrlog.get_logger(logger_name)

    @property
    def wrapped(self) -> StreamStore:
        return self._wrapped

    @_logged_call("stat")
    def stat(self, path: str) -> FileInfo:
        return self._wrapped.stat(path)

    @_logged_call("lstat")
    def lstat(self, path: str) -> FileInfo:
        return self._wrapped.lstat(path)

    @_logged_call("readdir")
    def readdir(self, path: str) -> list[FileInfo]:
        return self._wrapped.readdir(path)

    @_logged_call("mkdir")
    def mkdir(self, path: str, mode: int = 0o755):
        self._wrapped.mkdir(path, mode)

    @_logged_call("remove")
    def remove(self, path: str):
        self._wrapped.remove(path)

    @_logged_call("open_read")
    def open_read(self, path: str) -> StreamReader:
        return self._wrapped.open_read(path)

    @_logged_call("open_write")
    def open_write(self, path: str) -> StreamWriter:
        return self._wrapped.open_write(path)

    @_logged_call("close")
    def close(self):
        self._wrapped.close()
