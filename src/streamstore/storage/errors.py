"""Error taxonomy shared by every stream store.

Adapters translate whatever their SDK raises into one of these classes at
their boundary, so callers never see a backend specific exception type.
"""
from streamstore.exc import StreamStoreError


class StorageError(StreamStoreError):
    """Error class specifically for storage errors."""

    def __init__(self, msg, code, is_recoverable: bool = False):
        super().__init__(msg, "STORAGE", code, is_recoverable=is_recoverable)


class PathNotFoundError(StorageError):
    """The path (or its parent) does not exist."""

    def __init__(self, path: str, code: int = 1002):
        super().__init__(f"{path}: no such file or directory", code)
        self.path = path


class PathExistsError(StorageError):

    def __init__(self, path: str, code: int = 1006):
        super().__init__(f"{path}: file exists", code)
        self.path = path


class IsDirectoryError(StorageError):

    def __init__(self, path: str, code: int = 1004):
        super().__init__(f"{path} is a directory", code)
        self.path = path


class NotDirectoryError(StorageError):

    def __init__(self, path: str, code: int = 1005):
        super().__init__(f"{path}: not a directory", code)
        self.path = path


class DirectoryNotEmptyError(StorageError):

    def __init__(self, path: str, code: int = 1007):
        super().__init__(f"{path}: directory not empty", code)
        self.path = path


class ContractViolationError(StorageError):
    """The backend returned data that breaks an invariant of the store.

    This is never expected with well-formed data (for example, a file key and a
    directory prefix with the same name). Neither side is chosen.
    """

    def __init__(self, msg: str, code: int = 1900):
        super().__init__(msg, code)


class BackendTransportError(StorageError):
    """Opaque passthrough of a backend failure that has no better mapping."""

    def __init__(self, msg: str, code: int = 2000, is_recoverable: bool = False):
        super().__init__(msg, code, is_recoverable)


class TransferAbortedError(StorageError):

    def __init__(self, path: str, code: int = 1010):
        super().__init__(f"{path}: transfer aborted", code)
        self.path = path
