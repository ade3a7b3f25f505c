"""Recursive traversal of any stream store."""
from __future__ import annotations
import typing as t

from streamstore.util import HaltFlag
from . import paths
from .errors import StorageError

if t.TYPE_CHECKING:
    from .base import StreamStore, FileInfo


class SkipDir(Exception):
    """Raised by a visitor to skip the current directory.

        When raised for a directory, its contents are skipped. When raised for a
        file, the remaining entries of the containing directory are skipped. It
        never escapes from walk().
    """
    pass


Visitor = t.Callable[[str, t.Optional["FileInfo"], t.Optional[Exception]], t.Any]


def walk(store: StreamStore, root: str, visitor: Visitor, halt_flag: t.Optional[HaltFlag] = None):
    """Walk the tree rooted at root, calling visitor for each file or directory, root included.

        The visitor receives (path, info, error). If stat() or readdir() failed, error
        describes the problem (info is None when stat() failed) and the visitor decides
        what to do with it: raising aborts the walk, returning normally carries on
        without descending. Any exception other than SkipDir raised by the visitor
        aborts the walk and is propagated unchanged.

        Entries are visited in pre-order and, within a directory, in name order, so the
        output is deterministic.
    """
    try:
        info = store.stat(root)
    except StorageError as ex:
        if halt_flag:
            halt_flag.check_continue(True)
        try:
            visitor(root, None, ex)
        except SkipDir:
            pass
        return
    try:
        _walk(store, root, info, visitor, halt_flag)
    except SkipDir:
        pass


def _walk(store: StreamStore, path: str, info: FileInfo, visitor: Visitor, halt_flag: t.Optional[HaltFlag]):
    if halt_flag:
        halt_flag.check_continue(True)
    if not info.is_dir:
        visitor(path, info, None)
        return
    entries = None
    error = None
    try:
        entries = store.readdir(path)
    except StorageError as ex:
        error = ex
    visitor(path, info, error)
    if error is not None:
        return
    for entry in entries:
        try:
            _walk(store, paths.join(path, entry.name), entry, visitor, halt_flag)
        except SkipDir as ex:
            if not entry.is_dir:
                raise ex
