"""Google Cloud Storage stream store."""
from __future__ import annotations
import functools
import io
import typing as t
from urllib.parse import ParseResult, parse_qs

import requests
import zirconium as zr
from autoinject import injector
from google.api_core import exceptions as gexc
from google.cloud import storage as gcs_storage

from .base import StreamWriter
from .objstore import ObjectStreamStore, ListPage, ObjectEntry, DIRECTORY_CONTENT_TYPE
from .errors import StorageError, PathNotFoundError, BackendTransportError


def wrap_gcs_errors(cb):
    """Converts google cloud errors into the storage error taxonomy."""

    @functools.wraps(cb)
    def _inner(self, key, *args, **kwargs):
        try:
            return cb(self, key, *args, **kwargs)
        except StorageError:
            raise
        except gexc.NotFound as ex:
            raise PathNotFoundError(key) from ex
        except (gexc.TooManyRequests, gexc.ServerError) as ex:
            raise BackendTransportError(f"GCS: {ex.__class__.__name__}: {str(ex)}", 2002, True) from ex
        except gexc.GoogleAPICallError as ex:
            raise BackendTransportError(f"GCS: {ex.__class__.__name__}: {str(ex)}", 2000) from ex
        except requests.ConnectionError as ex:
            raise BackendTransportError(f"GCS: Connection error: {ex.__class__.__name__}: {str(ex)}", 2001, True) from ex

    return _inner


class GCSStreamStore(ObjectStreamStore):

    log_name = "gcs"

    config: zr.ApplicationConfig = None

    @injector.construct
    def __init__(self, bucket: str, credentials_file: t.Optional[str] = None, client=None):
        super().__init__(bucket)
        if client is None:
            if credentials_file is None:
                credentials_file = self.config.as_str(("streamstore", "gcs", "credentials_file"), default=None)
            if credentials_file:
                client = gcs_storage.Client.from_service_account_json(credentials_file)
            else:
                client = gcs_storage.Client()
        self._client = client
        self._bucket_ref = client.bucket(bucket)

    def close(self):
        self._client.close()

    @wrap_gcs_errors
    def _list_page(self, prefix: str, delimiter: str, max_keys: t.Optional[int], continuation: t.Optional[str]) -> ListPage:
        blobs = self._client.list_blobs(
            self._bucket,
            prefix=prefix,
            delimiter=delimiter,
            page_size=max_keys,
            page_token=continuation
        )
        page = next(blobs.pages, None)
        if page is None:
            return ListPage([], [], None)
        objects = [ObjectEntry(blob.name, blob.size or 0, blob.updated) for blob in page]
        return ListPage(objects, sorted(page.prefixes), blobs.next_page_token)

    @wrap_gcs_errors
    def _put_marker(self, key: str):
        self._bucket_ref.blob(key).upload_from_string(b"", content_type=DIRECTORY_CONTENT_TYPE)

    @wrap_gcs_errors
    def _delete_object(self, key: str):
        self._bucket_ref.blob(key).delete()

    @wrap_gcs_errors
    def _open_object(self, key: str, offset: int):
        blob = self._bucket_ref.get_blob(key)
        if blob is None:
            raise PathNotFoundError(key)
        if offset >= (blob.size or 0):
            return io.BytesIO(b"")
        reader = blob.open("rb")
        if offset > 0:
            reader.seek(offset)
        return reader

    @wrap_gcs_errors
    def _read_range(self, key: str, offset: int, size: int) -> bytes:
        try:
            return self._bucket_ref.blob(key).download_as_bytes(start=offset, end=offset + size - 1)
        except gexc.RequestRangeNotSatisfiable:
            return b""

    @wrap_gcs_errors
    def _stream_read(self, key: str, stream, size: int) -> bytes:
        return super()._stream_read(key, stream, size)

    def _open_writer(self, path: str, key: str) -> StreamWriter:
        return GCSWriter(path, key, self._bucket_ref.blob(key))

    @classmethod
    def from_url(cls, url: ParseResult) -> GCSStreamStore:
        query = parse_qs(url.query)
        creds = query["credentialsfile"][0] if "credentialsfile" in query else None
        return cls(url.netloc, credentials_file=creds)


class GCSWriter(StreamWriter):
    """Thin wrapper over the native blob writer (a resumable upload finalized on close)."""

    def __init__(self, path: str, key: str, blob):
        super().__init__(path)
        self._key = key
        self._writer = self._open(key, blob)

    @wrap_gcs_errors
    def _open(self, key: str, blob):
        return blob.open("wb")

    def write(self, data: bytes) -> int:
        self._check_open()
        self._write(self._key, data)
        return len(data)

    @wrap_gcs_errors
    def _write(self, key: str, data: bytes):
        self._writer.write(data)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._close(self._key)

    @wrap_gcs_errors
    def _close(self, key: str):
        self._writer.close()

    def abort(self):
        # An unfinalized resumable upload never creates the object
        self._closed = True
        self._writer = None
