"""Amazon S3 (and S3 compatible) stream store using boto3."""
from __future__ import annotations
import functools
import io
import typing as t
from urllib.parse import ParseResult, parse_qs

import boto3
import boto3.exceptions
import botocore.exceptions as bce
import zirconium as zr
from autoinject import injector

from .objstore import ObjectStreamStore, ListPage, ObjectEntry, DIRECTORY_CONTENT_TYPE
from .errors import StorageError, PathNotFoundError, BackendTransportError
from streamstore.exc import ConfigError


_NOT_FOUND_CODES = ("NoSuchKey", "NotFound", "404")
_RECOVERABLE_CODES = ("SlowDown", "RequestTimeout", "ServiceUnavailable", "InternalError", "Throttling")
_INVALID_RANGE_CODES = ("InvalidRange", "416")


def _error_code(ex: bce.ClientError) -> str:
    return ex.response.get("Error", {}).get("Code", "")


def _status_code(ex: bce.ClientError) -> int:
    return ex.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)


def wrap_s3_errors(cb):
    """Converts boto3 errors into the storage error taxonomy."""

    @functools.wraps(cb)
    def _inner(self, key, *args, **kwargs):
        try:
            return cb(self, key, *args, **kwargs)
        except StorageError:
            raise
        except bce.ClientError as ex:
            code = _error_code(ex)
            if code in _NOT_FOUND_CODES:
                raise PathNotFoundError(key) from ex
            if code in _RECOVERABLE_CODES or _status_code(ex) >= 500:
                raise BackendTransportError(f"S3: {code}: {str(ex)}", 2002, True) from ex
            raise BackendTransportError(f"S3: {code}: {str(ex)}", 2000) from ex
        except (bce.EndpointConnectionError, bce.ConnectTimeoutError, bce.ReadTimeoutError) as ex:
            raise BackendTransportError(f"S3: Connection error: {ex.__class__.__name__}: {str(ex)}", 2001, True) from ex
        except (bce.BotoCoreError, boto3.exceptions.Boto3Error) as ex:
            raise BackendTransportError(f"S3: {ex.__class__.__name__}: {str(ex)}", 2000) from ex

    return _inner


class S3StreamStore(ObjectStreamStore):
    """Stream store over one S3 bucket.

        Server side encryption (e.g. AES256) is applied to every object written
        when sse is set, either directly, through the `sse` URL parameter or
        through the streamstore.s3.sse configuration value.
    """

    log_name = "s3"

    config: zr.ApplicationConfig = None

    @injector.construct
    def __init__(self,
                 bucket: str,
                 sse: t.Optional[str] = None,
                 client=None,
                 region: t.Optional[str] = None,
                 endpoint_url: t.Optional[str] = None):
        super().__init__(bucket)
        if sse is None:
            sse = self.config.as_str(("streamstore", "s3", "sse"), default="")
        self._sse = sse or ""
        if client is None:
            client = boto3.client(
                "s3",
                region_name=region or self.config.as_str(("streamstore", "s3", "region"), default=None),
                endpoint_url=endpoint_url or self.config.as_str(("streamstore", "s3", "endpoint_url"), default=None)
            )
        self._client = client

    def _extra_args(self) -> dict:
        if self._sse:
            return {"ServerSideEncryption": self._sse}
        return {}

    @wrap_s3_errors
    def _list_page(self, prefix: str, delimiter: str, max_keys: t.Optional[int], continuation: t.Optional[str]) -> ListPage:
        kwargs = {
            "Bucket": self._bucket,
            "Prefix": prefix,
            "Delimiter": delimiter,
        }
        if max_keys:
            kwargs["MaxKeys"] = max_keys
        if continuation:
            kwargs["ContinuationToken"] = continuation
        out = self._client.list_objects_v2(**kwargs)
        objects = [
            ObjectEntry(content["Key"], content.get("Size", 0), content.get("LastModified"))
            for content in out.get("Contents", [])
        ]
        prefixes = [prefix_["Prefix"] for prefix_ in out.get("CommonPrefixes", [])]
        continuation = out.get("NextContinuationToken") if out.get("IsTruncated") else None
        return ListPage(objects, prefixes, continuation)

    @wrap_s3_errors
    def _put_marker(self, key: str):
        self._client.put_object(
            Bucket=self._bucket,
            Key=key,
            Body=b"",
            ContentType=DIRECTORY_CONTENT_TYPE,
            **self._extra_args()
        )

    @wrap_s3_errors
    def _delete_object(self, key: str):
        self._client.delete_object(Bucket=self._bucket, Key=key)

    @wrap_s3_errors
    def _open_object(self, key: str, offset: int):
        kwargs = {"Bucket": self._bucket, "Key": key}
        # Ranges on empty objects are unsatisfiable
        if offset > 0:
            kwargs["Range"] = f"bytes={offset}-"
        try:
            return self._client.get_object(**kwargs)["Body"]
        except bce.ClientError as ex:
            if _error_code(ex) in _INVALID_RANGE_CODES:
                return io.BytesIO(b"")
            raise ex

    @wrap_s3_errors
    def _read_range(self, key: str, offset: int, size: int) -> bytes:
        try:
            out = self._client.get_object(
                Bucket=self._bucket,
                Key=key,
                Range=f"bytes={offset}-{offset + size - 1}"
            )
        except bce.ClientError as ex:
            if _error_code(ex) in _INVALID_RANGE_CODES:
                return b""
            raise ex
        body = out["Body"]
        try:
            return body.read()
        finally:
            body.close()

    @wrap_s3_errors
    def _stream_read(self, key: str, stream, size: int) -> bytes:
        return super()._stream_read(key, stream, size)

    @wrap_s3_errors
    def _upload_stream(self, key: str, source):
        self._client.upload_fileobj(source, self._bucket, key, ExtraArgs=self._extra_args() or None)

    @classmethod
    def from_url(cls, url: ParseResult) -> S3StreamStore:
        if not url.netloc:
            raise ConfigError(f"S3 URLs must provide a bucket name", 3000)
        query = parse_qs(url.query)
        sse = query["sse"][0] if "sse" in query else None
        return cls(url.netloc, sse=sse)
