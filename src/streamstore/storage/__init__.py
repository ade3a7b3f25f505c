"""
    Provides one storage interface over local disks, memory, object stores and SFTP servers.

    In general, one should use the StreamStoreRegistry to build a store from a URL
    (e.g. s3://bucket or file:///data). Every store offers the same small set of
    operations (stat, readdir, mkdir, remove, open_read, open_write) plus helpers
    built on top of them (mkdir_all, download, upload, search), and raises errors
    from the same taxonomy regardless of the backend.

    Object stores (S3, GCS, Azure Blob Storage) have no directories, only keys. This
    module emulates directories on top of them: a directory exists when a zero
    length marker object `path/` exists or when any key starts with `path/`. A key
    and a directory prefix sharing the same name is reported as a
    ContractViolationError rather than silently choosing one of them.

    Writers commit on close() and discard everything on abort(); used as a context
    manager, they abort when the block raises.
"""
from .base import StreamStore, StreamReader, StreamWriter, FileInfo
from .errors import (
    StorageError, PathNotFoundError, PathExistsError, IsDirectoryError, NotDirectoryError,
    DirectoryNotEmptyError, ContractViolationError, BackendTransportError, TransferAbortedError,
)
from .core import StreamStoreRegistry, RegistryError, UnknownSchemeError
from .memory import MemoryStreamStore
from .local import LocalStreamStore
from .logged import LoggingStreamStore
from .walk import walk, SkipDir
