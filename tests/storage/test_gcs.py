import datetime
import io
import unittest as ut
from unittest import mock
from urllib.parse import urlparse

from google.api_core import exceptions as gexc

from streamstore.storage import PathNotFoundError, BackendTransportError, IsDirectoryError
from streamstore.storage.gcs import GCSStreamStore


class _Blob:

    def __init__(self, name, size, updated=None):
        self.name = name
        self.size = size
        self.updated = updated


class _Page(list):

    def __init__(self, blobs, prefixes=()):
        super().__init__(blobs)
        self.prefixes = set(prefixes)


def _listing(blobs=(), prefixes=(), next_page_token=None):
    iterator = mock.MagicMock()
    iterator.pages = iter([_Page(blobs, prefixes)])
    iterator.next_page_token = next_page_token
    return iterator


class TestGCSStreamStore(ut.TestCase):

    def setUp(self):
        self.client = mock.MagicMock()
        self.bucket = self.client.bucket.return_value
        self.store = GCSStreamStore("bucket", client=self.client)
        self.modified = datetime.datetime(2024, 1, 2, tzinfo=datetime.timezone.utc)

    def test_stat_file(self):
        self.client.list_blobs.return_value = _listing([_Blob("dir/file", 7, self.modified)])
        info = self.store.stat("/dir/file")
        self.assertFalse(info.is_dir)
        self.assertEqual(info.size, 7)
        self.assertEqual(info.modified, self.modified)
        self.client.list_blobs.assert_called_once_with(
            "bucket", prefix="dir/file", delimiter="/", page_size=2, page_token=None
        )

    def test_stat_directory_on_second_page(self):
        self.client.list_blobs.side_effect = [
            _listing([_Blob("dir-a", 1), _Blob("dir-b", 1)], next_page_token="next"),
            _listing([], ["dir/"]),
        ]
        self.assertTrue(self.store.stat("dir").is_dir)
        self.assertEqual(self.client.list_blobs.call_args_list[1].kwargs["page_token"], "next")

    def test_readdir(self):
        self.client.list_blobs.return_value = _listing(
            [_Blob("dir/", 0), _Blob("dir/z", 2), _Blob("dir/a", 1)],
            ["dir/sub/"]
        )
        entries = self.store.readdir("dir")
        self.assertEqual([e.name for e in entries], ["a", "sub", "z"])

    def test_not_found(self):
        self.client.list_blobs.side_effect = gexc.NotFound("no bucket")
        with self.assertRaises(PathNotFoundError):
            self.store.stat("file")

    def test_server_error_is_recoverable(self):
        self.client.list_blobs.side_effect = gexc.ServiceUnavailable("try later")
        with self.assertRaises(BackendTransportError) as h:
            self.store.stat("file")
        self.assertTrue(h.exception.is_recoverable)

    def test_forbidden(self):
        self.client.list_blobs.side_effect = gexc.Forbidden("no access")
        with self.assertRaises(BackendTransportError) as h:
            self.store.stat("file")
        self.assertFalse(h.exception.is_recoverable)

    def test_mkdir(self):
        self.client.list_blobs.return_value = _listing()
        self.store.mkdir("/newdir")
        self.bucket.blob.assert_called_with("newdir/")
        self.bucket.blob.return_value.upload_from_string.assert_called_once_with(
            b"", content_type="application/x-directory"
        )

    def test_read(self):
        self.client.list_blobs.return_value = _listing([_Blob("file", 5)])
        self.bucket.get_blob.return_value = _Blob("file", 5)
        blob = self.bucket.get_blob.return_value
        blob.open = mock.Mock(return_value=io.BytesIO(b"hello"))
        self.bucket.blob.return_value.download_as_bytes.return_value = b"ll"
        with self.store.open_read("file") as reader:
            self.assertEqual(reader.read(), b"hello")
            self.assertEqual(reader.read_at(2, 2), b"ll")
        self.bucket.blob.return_value.download_as_bytes.assert_called_once_with(start=2, end=3)

    def test_read_past_end(self):
        self.client.list_blobs.return_value = _listing([_Blob("file", 5)])
        self.bucket.get_blob.return_value = _Blob("file", 5)
        self.bucket.blob.return_value.download_as_bytes.side_effect = gexc.RequestRangeNotSatisfiable("past end")
        with self.store.open_read("file") as reader:
            reader.seek(10)
            self.assertEqual(reader.read(), b"")
            self.assertEqual(reader.read_at(5, 10), b"")

    def test_open_read_directory(self):
        self.client.list_blobs.return_value = _listing([], ["dir/"])
        with self.assertRaises(IsDirectoryError):
            self.store.open_read("dir")

    def test_write(self):
        self.client.list_blobs.return_value = _listing()
        native = self.bucket.blob.return_value.open.return_value
        with self.store.open_write("file") as writer:
            writer.write(b"data")
        self.bucket.blob.return_value.open.assert_called_once_with("wb")
        native.write.assert_called_once_with(b"data")
        native.close.assert_called_once()

    def test_abort_does_not_finalize(self):
        self.client.list_blobs.return_value = _listing()
        native = self.bucket.blob.return_value.open.return_value
        writer = self.store.open_write("file")
        writer.write(b"data")
        writer.abort()
        native.close.assert_not_called()

    def test_write_error(self):
        self.client.list_blobs.return_value = _listing()
        native = self.bucket.blob.return_value.open.return_value
        native.close.side_effect = gexc.InternalServerError("failed")
        writer = self.store.open_write("file")
        with self.assertRaises(BackendTransportError):
            writer.close()

    def test_from_url_with_credentials(self):
        with mock.patch("streamstore.storage.gcs.gcs_storage.Client") as client_cls:
            store = GCSStreamStore.from_url(urlparse("gs://my-bucket?credentialsfile=/etc/creds.json"))
        client_cls.from_service_account_json.assert_called_once_with("/etc/creds.json")
        self.assertEqual(store.bucket, "my-bucket")
