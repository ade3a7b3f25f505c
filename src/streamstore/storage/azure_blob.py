"""Azure Blob Storage stream store."""
from __future__ import annotations
import functools
import io
import typing as t
from urllib.parse import ParseResult

import requests
import urllib3.exceptions
import azure.core.exceptions as ace
import zirconium as zr
from autoinject import injector
from azure.identity import DefaultAzureCredential
from azure.storage.blob import ContainerClient, BlobPrefix, ContentSettings

from .objstore import ObjectStreamStore, ListPage, ObjectEntry, DIRECTORY_CONTENT_TYPE
from .errors import StorageError, PathNotFoundError, PathExistsError, BackendTransportError
from streamstore.exc import ConfigError


def wrap_azure_errors(cb):
    """Converts azure errors into the storage error taxonomy."""

    @functools.wraps(cb)
    def _inner(self, key, *args, **kwargs):
        try:
            return cb(self, key, *args, **kwargs)
        except StorageError:
            raise
        except ace.ResourceNotFoundError as ex:
            raise PathNotFoundError(key) from ex
        except ace.ResourceExistsError as ex:
            raise PathExistsError(key) from ex
        except ace.ClientAuthenticationError as ex:
            raise BackendTransportError(f"Azure: Client authentication error: {ex.__class__.__name__}: {str(ex)}", 2003, True) from ex
        except ace.AzureError as ex:
            if ex.inner_exception is not None:
                if isinstance(ex.inner_exception, urllib3.exceptions.ConnectTimeoutError):
                    raise BackendTransportError(f"Azure: Connection timeout error: {ex.__class__.__name__}: {str(ex)}", 2001, True) from ex
                elif isinstance(ex.inner_exception, requests.ConnectionError):
                    raise BackendTransportError(f"Azure: Connection error: {ex.__class__.__name__}: {str(ex)}", 2002, True) from ex
            raise BackendTransportError(f"Azure: {ex.__class__.__name__}: {str(ex)}", 2000) from ex

    return _inner


def _is_invalid_range(ex: ace.HttpResponseError) -> bool:
    return ex.status_code == 416


class AzureBlobStreamStore(ObjectStreamStore):
    """Stream store over one container of an Azure storage account.

        The connection string is read from azure.storage.ACCOUNT.connection_string
        in the streamstore configuration; without one, DefaultAzureCredential is used.
    """

    log_name = "azure_blob"

    config: zr.ApplicationConfig = None

    @injector.construct
    def __init__(self, account: str, container: str, container_client: t.Optional[ContainerClient] = None):
        super().__init__(container)
        self._account = account
        self._client = container_client or self._build_container_client()

    def _build_container_client(self) -> ContainerClient:
        connection_string = self.config.as_str(("streamstore", "azure", "storage", self._account, "connection_string"), default=None)
        try:
            if connection_string:
                return ContainerClient.from_connection_string(
                    conn_str=connection_string,
                    container_name=self._bucket
                )
            return ContainerClient.from_container_url(
                container_url=f"https://{self._account}.blob.core.windows.net/{self._bucket}",
                credential=DefaultAzureCredential()
            )
        except ValueError as ex:
            raise ConfigError(f"Could not create container client", 3001) from ex

    def close(self):
        self._client.close()

    @wrap_azure_errors
    def _list_page(self, prefix: str, delimiter: str, max_keys: t.Optional[int], continuation: t.Optional[str]) -> ListPage:
        pages = self._client.walk_blobs(
            name_starts_with=prefix or None,
            delimiter=delimiter,
            results_per_page=max_keys
        ).by_page(continuation_token=continuation)
        page = next(pages, None)
        if page is None:
            return ListPage([], [], None)
        objects = []
        prefixes = []
        for item in page:
            if isinstance(item, BlobPrefix):
                prefixes.append(item.name)
            else:
                objects.append(ObjectEntry(item.name, item.size or 0, item.last_modified))
        return ListPage(objects, prefixes, pages.continuation_token)

    @wrap_azure_errors
    def _put_marker(self, key: str):
        self._client.upload_blob(
            key,
            b"",
            overwrite=True,
            content_settings=ContentSettings(content_type=DIRECTORY_CONTENT_TYPE)
        )

    @wrap_azure_errors
    def _delete_object(self, key: str):
        self._client.delete_blob(key)

    @wrap_azure_errors
    def _open_object(self, key: str, offset: int):
        try:
            return self._client.download_blob(key, offset=offset or None)
        except ace.HttpResponseError as ex:
            if _is_invalid_range(ex):
                return io.BytesIO(b"")
            raise ex

    @wrap_azure_errors
    def _read_range(self, key: str, offset: int, size: int) -> bytes:
        try:
            return self._client.download_blob(key, offset=offset, length=size).readall()
        except ace.HttpResponseError as ex:
            if _is_invalid_range(ex):
                return b""
            raise ex

    @wrap_azure_errors
    def _stream_read(self, key: str, stream, size: int) -> bytes:
        return super()._stream_read(key, stream, size)

    def _close_stream(self, key: str, stream):
        # StorageStreamDownloader has no close()
        if isinstance(stream, io.IOBase):
            stream.close()

    @wrap_azure_errors
    def _upload_stream(self, key: str, source):
        self._client.upload_blob(key, source, overwrite=True)

    @classmethod
    def from_url(cls, url: ParseResult) -> AzureBlobStreamStore:
        path_parts = [x for x in url.path.strip("/").split("/") if x]
        if not url.netloc:
            raise ConfigError(f"Missing storage account name", 3002)
        if not path_parts:
            raise ConfigError(f"Missing container name", 3003)
        return cls(url.netloc, path_parts[0])
