"""SFTP stream store using paramiko."""
from __future__ import annotations
import datetime
import functools
import posixpath
import stat
import threading
import typing as t
import uuid
from urllib.parse import ParseResult, unquote

import paramiko
import zirconium as zr
import zrlog
from autoinject import injector

from . import paths
from .base import StreamStore, StreamReader, StreamWriter, FileInfo, translate_os_error
from .errors import (
    StorageError, PathNotFoundError, PathExistsError, IsDirectoryError,
    NotDirectoryError, DirectoryNotEmptyError, BackendTransportError,
)
from streamstore.exc import ConfigError


# Many SFTP servers only send SSH_FX_FAILURE along with a message
_MESSAGE_ERRORS = (
    ("no such file", PathNotFoundError),
    ("file exists", PathExistsError),
    ("not a directory", NotDirectoryError),
    ("is a directory", IsDirectoryError),
    ("directory not empty", DirectoryNotEmptyError),
)


def translate_sftp_error(ex: Exception, path: str) -> StorageError:
    """Map a paramiko error onto the storage error taxonomy."""
    if isinstance(ex, OSError) and ex.errno:
        return translate_os_error(ex, path)
    message = str(ex).lower()
    for text, error_cls in _MESSAGE_ERRORS:
        if text in message:
            return error_cls(path)
    return BackendTransportError(f"SFTP: {ex.__class__.__name__}: {str(ex)}", 2000)


def wrap_sftp_errors(cb):
    """Converts paramiko errors into the storage error taxonomy."""

    @functools.wraps(cb)
    def _inner(self, path, *args, **kwargs):
        try:
            return cb(self, path, *args, **kwargs)
        except StorageError:
            raise
        except (paramiko.SSHException, EOFError) as ex:
            raise BackendTransportError(f"SFTP: Connection error: {ex.__class__.__name__}: {str(ex)}", 2001, True) from ex
        except OSError as ex:
            raise translate_sftp_error(ex, path) from ex

    return _inner


def _info_from_attrs(name: str, attrs: paramiko.SFTPAttributes) -> FileInfo:
    modified = None
    if attrs.st_mtime is not None:
        modified = datetime.datetime.fromtimestamp(attrs.st_mtime, datetime.timezone.utc)
    if attrs.st_mode is not None and stat.S_ISDIR(attrs.st_mode):
        return FileInfo.for_directory(name, modified, attrs.st_mode)
    return FileInfo.for_file(name, attrs.st_size or 0, modified, attrs.st_mode)


class SFTPStreamStore(StreamStore):
    """Stream store over a directory of an SFTP server.

        Host keys are checked against streamstore.sftp.known_hosts_file when it is
        configured; otherwise unknown hosts are accepted.
    """

    config: zr.ApplicationConfig = None

    @injector.construct
    def __init__(self,
                 host: str,
                 username: t.Optional[str] = None,
                 password: t.Optional[str] = None,
                 port: t.Optional[int] = None,
                 root: str = "/",
                 known_hosts_file: t.Optional[str] = None,
                 sftp_client: t.Optional[paramiko.SFTPClient] = None):
        self._host = host
        self._root = "/" + posixpath.normpath("/" + (root or "")).lstrip("/")
        self._log = zrlog.get_logger("streamstore.sftp")
        self._ssh = None
        if sftp_client is None:
            self._ssh = self._connect(host, username, password, port, known_hosts_file)
            sftp_client = self._ssh.open_sftp()
        self._sftp = sftp_client

    def _connect(self, host, username, password, port, known_hosts_file) -> paramiko.SSHClient:
        if port is None:
            port = self.config.as_int(("streamstore", "sftp", "port"), default=22)
        if known_hosts_file is None:
            known_hosts_file = self.config.as_str(("streamstore", "sftp", "known_hosts_file"), default=None)
        client = paramiko.SSHClient()
        if known_hosts_file:
            client.load_host_keys(known_hosts_file)
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        self._log.debug(f"Connecting to [{host}:{port}] as [{username}]")
        try:
            client.connect(
                host,
                port=port,
                username=username,
                password=password,
                look_for_keys=False,
                allow_agent=False
            )
        except (paramiko.SSHException, OSError) as ex:
            client.close()
            raise BackendTransportError(f"SFTP: Could not connect to [{host}:{port}]: {ex.__class__.__name__}: {str(ex)}", 2001, True) from ex
        return client

    def close(self):
        self._sftp.close()
        if self._ssh is not None:
            self._ssh.close()

    def _remote(self, path: str) -> str:
        clean = posixpath.normpath("/" + (path or "")).lstrip("/")
        if clean == "":
            return self._root
        return posixpath.join(self._root, clean)

    def _name(self, path: str) -> str:
        key = paths.to_key(posixpath.normpath("/" + (path or "")))
        return paths.last_elem(key) if key else "/"

    @wrap_sftp_errors
    def stat(self, path: str) -> FileInfo:
        return _info_from_attrs(self._name(path), self._sftp.stat(self._remote(path)))

    @wrap_sftp_errors
    def lstat(self, path: str) -> FileInfo:
        return _info_from_attrs(self._name(path), self._sftp.lstat(self._remote(path)))

    @wrap_sftp_errors
    def readdir(self, path: str) -> list[FileInfo]:
        if not self.stat(path).is_dir:
            raise NotDirectoryError(path)
        results = [_info_from_attrs(attrs.filename, attrs) for attrs in self._sftp.listdir_attr(self._remote(path))]
        results.sort(key=lambda x: x.name)
        return results

    def _check_parent_dir(self, path: str):
        parent = paths.parent_key(paths.to_key(path))
        if parent != "" and not self.stat(parent).is_dir:
            raise NotDirectoryError(parent)

    @wrap_sftp_errors
    def mkdir(self, path: str, mode: int = 0o755):
        self._check_parent_dir(path)
        if self.exists(path):
            raise PathExistsError(path)
        self._sftp.mkdir(self._remote(path), mode)
        self._log.info(f"Created directory [{path}] on [{self._host}]")

    @wrap_sftp_errors
    def remove(self, path: str):
        try:
            info = self.stat(path)
        except NotDirectoryError as ex:
            # an ancestor is a file
            raise PathNotFoundError(path) from ex
        remote = self._remote(path)
        if remote == self._root:
            raise StorageError(f"Cannot remove the root directory", 1013)
        if info.is_dir:
            if self.readdir(path):
                raise DirectoryNotEmptyError(path)
            self._sftp.rmdir(remote)
        else:
            self._sftp.remove(remote)
        self._log.info(f"Removed [{path}] from [{self._host}]")

    @wrap_sftp_errors
    def open_read(self, path: str) -> StreamReader:
        if self.stat(path).is_dir:
            raise IsDirectoryError(path)
        return SFTPReader(path, self._sftp.open(self._remote(path), "rb"))

    @wrap_sftp_errors
    def open_write(self, path: str) -> StreamWriter:
        remote = self._remote(path)
        if remote == self._root:
            raise IsDirectoryError(path)
        self._check_parent_dir(path)
        if self.is_dir(path):
            raise IsDirectoryError(path)
        temp = posixpath.join(posixpath.dirname(remote), f".{posixpath.basename(remote)}.{uuid.uuid4().hex}.partial")
        return SFTPWriter(path, self._sftp, remote, temp, self._sftp.open(temp, "wb"))

    @classmethod
    def from_url(cls, url: ParseResult) -> SFTPStreamStore:
        if not url.hostname:
            raise ConfigError(f"SFTP URLs must provide a host name", 3004)
        if not url.username or url.password is None:
            raise ConfigError(f"SFTP URLs must provide a username and password", 3005)
        return cls(
            url.hostname,
            username=unquote(url.username),
            password=unquote(url.password),
            port=url.port,
            root=unquote(url.path) or "/"
        )


class SFTPReader(StreamReader):

    def __init__(self, path: str, handle: paramiko.SFTPFile):
        super().__init__(path)
        self._handle = handle
        self._lock = threading.Lock()

    @wrap_sftp_errors
    def _io(self, path: str, cb, *args):
        return cb(*args)

    def read(self, size: int = -1) -> bytes:
        self._check_open()
        with self._lock:
            if size is None or size < 0:
                return self._io(self._path, self._handle.read)
            return self._io(self._path, self._handle.read, size)

    def read_at(self, size: int, offset: int) -> bytes:
        self._check_open()
        if size <= 0:
            return b''
        with self._lock:
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
        with self._lock:
            self._io(self._path, self._handle.seek, offset)
        return offset

    def tell(self) -> int:
        return self._handle.tell()

    def close(self):
        if not self._closed:
            self._handle.close()
        super().close()


class SFTPWriter(StreamWriter):
    """Writes into a hidden sibling file that is renamed over the target on close()."""

    def __init__(self, path: str, sftp: paramiko.SFTPClient, remote: str, temp: str, handle: paramiko.SFTPFile):
        super().__init__(path)
        self._sftp = sftp
        self._remote = remote
        self._temp = temp
        self._handle = handle

    @wrap_sftp_errors
    def _io(self, path: str, cb, *args):
        return cb(*args)

    def write(self, data: bytes) -> int:
        self._check_open()
        self._io(self._path, self._handle.write, data)
        return len(data)

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            self._io(self._path, self._handle.close)
            self._io(self._path, self._sftp.posix_rename, self._temp, self._remote)
        except StorageError:
            self._io(self._path, self._sftp.remove, self._temp)
            raise

    def abort(self):
        if self._closed:
            return
        self._closed = True
        try:
            self._handle.close()
        finally:
            self._io(self._path, self._sftp.remove, self._temp)
