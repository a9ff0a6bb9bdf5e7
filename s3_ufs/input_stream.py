from __future__ import annotations
"""Seekable, retrying readers built from ranged GET requests."""
import io
import logging
from typing import Optional

from .client import ObjectStoreClient
from .errors import StreamClosedError
from .retry import RetryPolicy

LOGGER = logging.getLogger(__name__)


def read_range(
    client: ObjectStoreClient,
    bucket: str,
    key: str,
    start: int,
    end: int,
    retry_policy: RetryPolicy,
) -> bytes:
    """Return the bytes of ``[start, end]`` (inclusive).

    Bytes received before a transient failure are kept, and each new request
    continues from the last byte received. A response that ends early is
    followed by another ranged request; a request that yields nothing means
    the object is shorter than asked and ends the read.
    """

    expected = end - start + 1
    received = bytearray()

    def fetch() -> None:
        for chunk in client.get_object_range(bucket, key, start + len(received), end):
            received.extend(chunk)
            if len(received) >= expected:
                break

    while len(received) < expected:
        before = len(received)
        retry_policy.run(fetch, description=f"GetObject {key} bytes={start + before}-{end}")
        if len(received) == before:
            LOGGER.debug("Short object %s: no bytes after offset %d", key, start + before)
            break
    return bytes(received[:expected])


class ObjectInputStream(io.RawIOBase):
    """Readable, seekable stream over a single object.

    Every network request covers at most ``chunk_size`` bytes starting at the
    current position.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        bucket: str,
        key: str,
        *,
        length: int,
        offset: int = 0,
        retry_policy: Optional[RetryPolicy] = None,
        chunk_size: int = 8 * 1024 * 1024,
    ):
        super().__init__()
        if offset < 0:
            raise ValueError("offset must not be negative")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be greater than zero")
        self._client = client
        self._bucket = bucket
        self._key = key
        self._length = length
        self._pos = offset
        self._retry_policy = retry_policy or RetryPolicy()
        self._chunk_size = chunk_size

    @property
    def key(self) -> str:
        return self._key

    @property
    def length(self) -> int:
        return self._length

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        self._ensure_open()
        return self._pos

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._ensure_open()
        if whence == io.SEEK_SET:
            position = offset
        elif whence == io.SEEK_CUR:
            position = self._pos + offset
        elif whence == io.SEEK_END:
            position = self._length + offset
        else:
            raise ValueError(f"invalid whence ({whence})")
        if position < 0:
            raise ValueError(f"negative seek position {position}")
        self._pos = position
        return self._pos

    def read(self, size: int = -1) -> bytes:
        self._ensure_open()
        remaining = self._length - self._pos
        if size is None or size < 0 or size > remaining:
            size = max(remaining, 0)
        parts = []
        while size > 0:
            data = self._read_chunk(size)
            if not data:
                break
            parts.append(data)
            size -= len(data)
        return b"".join(parts)

    def readall(self) -> bytes:
        return self.read(-1)

    def readinto(self, buffer) -> int:
        data = self.read(len(memoryview(buffer).cast("B")))
        memoryview(buffer).cast("B")[: len(data)] = data
        return len(data)

    def _read_chunk(self, size: int) -> bytes:
        end = min(self._pos + size, self._pos + self._chunk_size, self._length) - 1
        if end < self._pos:
            return b""
        data = read_range(self._client, self._bucket, self._key, self._pos, end, self._retry_policy)
        self._pos += len(data)
        return data

    def _ensure_open(self) -> None:
        if self.closed:
            raise StreamClosedError(f"I/O operation on closed stream for {self._key}")


class ObjectPositionReader:
    """Positional reads without a cursor; safe to share between threads."""

    def __init__(
        self,
        client: ObjectStoreClient,
        bucket: str,
        key: str,
        file_length: int,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        chunk_size: int = 8 * 1024 * 1024,
    ):
        self._client = client
        self._bucket = bucket
        self._key = key
        self._file_length = file_length
        self._retry_policy = retry_policy or RetryPolicy()
        self._chunk_size = chunk_size

    def read_bytes(self, offset: int, length: int) -> bytes:
        if offset < 0 or length < 0:
            raise ValueError("offset and length must not be negative")
        stop = min(offset + length, self._file_length)
        parts = []
        position = offset
        while position < stop:
            end = min(position + self._chunk_size, stop) - 1
            data = read_range(self._client, self._bucket, self._key, position, end, self._retry_policy)
            if not data:
                break
            parts.append(data)
            position += len(data)
        return b"".join(parts)

    def read(self, offset: int, buffer) -> int:
        """Fill ``buffer`` with bytes starting at ``offset``; return the count read."""

        view = memoryview(buffer).cast("B")
        data = self.read_bytes(offset, len(view))
        view[: len(data)] = data
        return len(data)
