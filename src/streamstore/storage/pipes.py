"""Write handles for backends whose SDK only offers a push-style upload call."""
import os
import queue
import threading
import typing as t
import weakref

from .base import StreamWriter
from .errors import StorageError, BackendTransportError, TransferAbortedError


class _PipeSource:
    """Read end of the pipe as seen by the transfer task."""

    def __init__(self, pipe_in, aborted: threading.Event, path: str):
        self._pipe_in = pipe_in
        self._aborted = aborted
        self._path = path

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            data = self._pipe_in.read()
        else:
            data = self._pipe_in.read(size)
        if data == b'' and self._aborted.is_set():
            raise TransferAbortedError(self._path)
        return data

    def readable(self) -> bool:
        return True


class PipedUploadWriter(StreamWriter):
    """Writer backed by an OS pipe drained by a background transfer thread.

        Calls to write() push data into the pipe while the transfer thread hands the
        read end to the backend upload call. close() closes the write end and then
        waits for the transfer outcome on a single-slot queue, raising it if the
        transfer failed. abort() makes the read end fail instead of reaching end of
        file, so the backend never finalizes the object.
    """

    def __init__(self, path: str, key: str, upload: t.Callable[[str, t.Any], None], log=None):
        super().__init__(path)
        self._key = key
        self._log = log
        self._aborted = threading.Event()
        self._result: queue.Queue = queue.Queue(maxsize=1)
        r_fd, w_fd = os.pipe()
        self._pipe_in = open(r_fd, "rb")
        self._pipe_out = open(w_fd, "wb")
        self._thread = threading.Thread(
            target=_transfer,
            args=(upload, key, self._pipe_in, _PipeSource(self._pipe_in, self._aborted, path), self._result),
            daemon=True,
            name=f"upload-{key}"
        )
        self._thread.start()
        self._abandoned = weakref.finalize(self, _abandon, self._aborted, self._pipe_out)

    def _join(self) -> t.Optional[Exception]:
        self._closed = True
        self._abandoned.detach()
        try:
            self._pipe_out.close()
        except BrokenPipeError:
            # Transfer already finished
            pass
        outcome = self._result.get()
        self._thread.join()
        return outcome

    def write(self, data: bytes) -> int:
        self._check_open()
        try:
            self._pipe_out.write(data)
        except BrokenPipeError as ex:
            outcome = self._join()
            if outcome is None:
                raise BackendTransportError(f"Transfer of [{self._path}] ended before all data was written", 2100) from ex
            _raise_outcome(outcome, self._path)
        return len(data)

    def close(self):
        if self._closed:
            return
        outcome = self._join()
        if outcome is not None:
            if self._log:
                self._log.error(f"Upload of [{self._key}] failed: {outcome}")
            _raise_outcome(outcome, self._path)
        if self._log:
            self._log.info(f"Uploaded [{self._key}]")

    def abort(self):
        if self._closed:
            return
        self._aborted.set()
        outcome = self._join()
        if self._log:
            if outcome is None:
                self._log.warning(f"Upload of [{self._key}] completed before it could be aborted")
            else:
                self._log.warning(f"Upload of [{self._key}] aborted")


def _transfer(upload, key: str, pipe_in, source: _PipeSource, result: queue.Queue):
    outcome = None
    try:
        upload(key, source)
    except Exception as ex:
        outcome = ex
    finally:
        pipe_in.close()
        result.put(outcome)


def _abandon(aborted: threading.Event, pipe_out):
    """Abort the transfer of a writer that was dropped without close() or abort()."""
    aborted.set()
    try:
        pipe_out.close()
    except BrokenPipeError:
        # Transfer already finished
        pass


def _raise_outcome(ex: Exception, path: str):
    if isinstance(ex, StorageError):
        raise ex
    raise BackendTransportError(f"Transfer of [{path}] failed: {ex.__class__.__name__}: {str(ex)}", 2101) from ex
