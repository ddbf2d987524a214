"""
Object store interface shared by every backend

An ObjectStore is the root connection: it is the only thing the harness
keeps between steps, and every call names the container it works on.
"""

import io
import logging
import shutil
import threading
from dataclasses import dataclass
from typing import BinaryIO, Callable, Dict, Iterable, Iterator, Optional, Union

from limbo_repro.conditions import Condition
from limbo_repro.outcomes import WriteOutcome

logger = logging.getLogger(__name__)

UploadData = Union[bytes, bytearray, BinaryIO]


@dataclass(frozen=True)
class StoreCapabilities:
    """
    Behavior flags tests branch their expectations on.

    streams_uploads
        A stream handed to upload() reaches the service as a stream of
        unknown length. When False the backend buffers it first, so the
        naive streaming race cannot be reproduced there.
    """

    streams_uploads: bool = True


class DownloadStream(io.RawIOBase):
    """
    Non-seekable read stream over a downloaded blob.

    Must be read to the end or closed; the owning store counts open
    streams. Use it as a context manager.
    """

    def __init__(self, chunks: Iterable[bytes], on_close: Optional[Callable[[], None]] = None):
        super().__init__()
        self._chunks: Iterator[bytes] = iter(chunks)
        self._pending = b""
        self._on_close = on_close

    def readable(self):
        return True

    def readinto(self, buffer) -> int:
        while not self._pending:
            try:
                self._pending = bytes(next(self._chunks))
            except StopIteration:
                return 0
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size

    def close(self):
        if not self.closed:
            callback, self._on_close = self._on_close, None
            super().close()
            if callback:
                callback()


def read_block(stream: BinaryIO, size: int) -> bytes:
    """Read up to size bytes, looping over short reads"""
    parts = []
    remaining = size
    while remaining > 0:
        data = stream.read(remaining)
        if not data:
            break
        parts.append(data)
        remaining -= len(data)
    return b"".join(parts)


def materialize(stream: BinaryIO) -> bytes:
    """
    Drain a download stream into an owned buffer.

    Downloaded content must be materialized before it is used as an upload
    body; re-streaming one network read into another network write is what
    leaves blobs in limbo.
    """
    buffer = io.BytesIO()
    shutil.copyfileobj(stream, buffer)
    return buffer.getvalue()


def is_replayable(data: UploadData) -> bool:
    """True when the body has a known length and can be re-sent on retry"""
    if isinstance(data, (bytes, bytearray, memoryview)):
        return True
    seekable = getattr(data, "seekable", None)
    return bool(seekable and seekable())


class ObjectStore:
    """Base class for store backends"""

    name = "abstract"
    capabilities = StoreCapabilities()

    def __init__(self):
        self._open_streams = 0
        self._streams_lock = threading.Lock()

    # Containers

    def create_container_if_not_exists(self, container: str) -> None:
        raise NotImplementedError

    def delete_container_if_exists(self, container: str) -> None:
        raise NotImplementedError

    def container_exists(self, container: str) -> bool:
        raise NotImplementedError

    # Blobs

    def upload(
        self,
        container: str,
        key: str,
        data: UploadData,
        tags: Optional[Dict[str, str]] = None,
        condition: Optional[Condition] = None,
    ) -> WriteOutcome:
        """
        Write a blob, replacing any existing one.

        When condition is given and the blob exists, the write only applies
        if the condition holds against the blob's current tags. Returns
        ConditionNotMet instead of raising when it does not.
        """
        raise NotImplementedError

    def download(self, container: str, key: str) -> DownloadStream:
        """Open a read stream; raises NotFoundError when absent"""
        raise NotImplementedError

    def get_tags(self, container: str, key: str) -> Dict[str, str]:
        raise NotImplementedError

    def exists(self, container: str, key: str) -> bool:
        raise NotImplementedError

    def copy(
        self,
        container: str,
        source_key: str,
        dest_key: str,
        tags: Optional[Dict[str, str]] = None,
        condition: Optional[Condition] = None,
    ) -> WriteOutcome:
        """Copy through an owned buffer, never streaming read into write"""
        with self.download(container, source_key) as stream:
            content = materialize(stream)
        return self.upload(container, dest_key, content, tags=tags, condition=condition)

    def read_bytes(self, container: str, key: str) -> bytes:
        with self.download(container, key) as stream:
            return materialize(stream)

    # Stream bookkeeping

    @property
    def open_streams(self) -> int:
        """Download streams handed out and not yet closed"""
        return self._open_streams

    def _track_stream(
        self, chunks: Iterable[bytes], release: Optional[Callable[[], None]] = None
    ) -> DownloadStream:
        with self._streams_lock:
            self._open_streams += 1

        def on_close():
            try:
                if release is not None:
                    release()
            finally:
                self._release_stream()

        return DownloadStream(chunks, on_close=on_close)

    def _release_stream(self):
        with self._streams_lock:
            self._open_streams -= 1

    def close(self) -> None:
        if self._open_streams:
            logger.warning(f"{self.name} store closed with {self._open_streams} open download stream(s)")
