from __future__ import annotations
"""Output streams that commit written bytes as one object or as a multipart upload."""
from concurrent.futures import Executor, Future, wait
from dataclasses import dataclass, field
import io
import logging
import os
import random
import tempfile
import threading
from typing import BinaryIO, Optional

from .client import ObjectStoreClient
from .errors import MultipartUploadError, ObjectStoreError, StreamClosedError
from .retry import RetryPolicy

LOGGER = logging.getLogger(__name__)


class ObjectOutputStream(io.RawIOBase):
    """Base for writers that commit on :meth:`close`.

    Leaving a ``with`` block on an exception, or dropping the stream without
    closing it, calls :meth:`abort` instead, so nothing partial is committed.
    """

    def __init__(self, bucket: str, key: str):
        super().__init__()
        self._bucket = bucket
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    def writable(self) -> bool:
        return True

    def abort(self) -> None:
        raise NotImplementedError

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.abort()
            return None
        self.close()
        return None

    def __del__(self) -> None:
        if not self.closed:
            LOGGER.warning("Stream for %s was never closed, discarding written data", self._key)
            self.abort()

    def _ensure_open(self) -> None:
        if self.closed:
            raise StreamClosedError(f"write to closed stream for {self._key}")


class SingleShotOutputStream(ObjectOutputStream):
    """Buffers the whole object and uploads it with one PUT on :meth:`close`.

    The buffer lives in memory, or in a temporary file inside one of
    ``tmp_dirs`` when any are configured. The store holds either the complete
    object or nothing.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        bucket: str,
        key: str,
        *,
        tmp_dirs: Optional[list[str]] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        super().__init__(bucket, key)
        self._client = client
        self._retry_policy = retry_policy or RetryPolicy()
        self._buffer: BinaryIO = io.BytesIO()
        if tmp_dirs:
            spill_dir = random.choice(tmp_dirs)
            os.makedirs(spill_dir, exist_ok=True)
            self._buffer = tempfile.TemporaryFile(dir=spill_dir, prefix="s3ufs-")
            LOGGER.debug("Buffering %s in spill file under %s", key, spill_dir)

    def write(self, data) -> int:
        self._ensure_open()
        return self._buffer.write(data)

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._buffer.flush()
            content_length = self._buffer.tell()

            def put() -> None:
                self._buffer.seek(0)
                self._client.put_object(self._bucket, self._key, self._buffer, content_length)

            self._retry_policy.run(put, description=f"PutObject {self._key}")
            LOGGER.debug("Uploaded %s (%d bytes)", self._key, content_length)
        except ObjectStoreError:
            LOGGER.error("Failed to upload %s", self._key, exc_info=True)
            raise
        finally:
            self._buffer.close()
            super().close()

    def abort(self) -> None:
        """Drop the buffered bytes without uploading them."""

        if self.closed:
            return
        try:
            self._buffer.close()
            LOGGER.debug("Discarded buffered upload of %s", self._key)
        finally:
            super().close()


@dataclass
class UploadSession:
    """State of one multipart upload."""

    key: str
    upload_id: str
    completed_parts: dict[int, str] = field(default_factory=dict)

    def sorted_parts(self) -> list[tuple[int, str]]:
        return sorted(self.completed_parts.items())


class MultipartOutputStream(ObjectOutputStream):
    """Uploads fixed-size parts concurrently while bytes are still being written.

    Part numbers follow write order. At most ``max_pending_parts`` parts are
    held in memory waiting for the executor; :meth:`write` blocks until one of
    them finishes. :meth:`close` waits for every part and completes the upload
    with the parts listed in ascending order. Any failure aborts the upload
    before :class:`MultipartUploadError` propagates.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        bucket: str,
        key: str,
        executor: Executor,
        *,
        part_size: int,
        retry_policy: Optional[RetryPolicy] = None,
        max_pending_parts: int = 4,
    ):
        super().__init__(bucket, key)
        self._client = client
        self._executor = executor
        self._part_size = part_size
        self._retry_policy = retry_policy or RetryPolicy()
        self._buffer = bytearray()
        self._session: Optional[UploadSession] = None
        self._futures: list[tuple[int, Future]] = []
        self._next_part_number = 1
        self._part_slots = threading.BoundedSemaphore(max(max_pending_parts, 1))
        if part_size <= 0:
            super().close()
            raise ValueError("part_size must be greater than zero")

    @property
    def session(self) -> Optional[UploadSession]:
        return self._session

    def write(self, data) -> int:
        self._ensure_open()
        view = memoryview(data).cast("B")
        self._buffer.extend(view)
        while len(self._buffer) >= self._part_size:
            part = bytes(self._buffer[: self._part_size])
            del self._buffer[: self._part_size]
            try:
                self._submit_part(part)
            except Exception as exc:
                self._fail(exc)
        return len(view)

    def close(self) -> None:
        if self.closed:
            return
        try:
            if self._session is None and not self._buffer:
                # Nothing was written: a zero-length object needs no multipart session.
                self._retry_policy.run(
                    lambda: self._client.put_object(self._bucket, self._key, b"", 0),
                    description=f"PutObject {self._key}",
                )
                return
            try:
                if self._buffer or self._session is None:
                    part = bytes(self._buffer)
                    self._buffer.clear()
                    self._submit_part(part)
                self._complete()
            except Exception as exc:
                self._fail(exc)
        finally:
            super().close()

    def abort(self) -> None:
        """Discard everything written so far and release the upload on the store."""

        if self.closed:
            return
        try:
            self._buffer.clear()
            self._cancel_pending()
            self._abort_session()
        finally:
            super().close()

    def _submit_part(self, data: bytes) -> None:
        if self._session is None:
            upload_id = self._retry_policy.run(
                lambda: self._client.initiate_multipart_upload(self._bucket, self._key),
                description=f"CreateMultipartUpload {self._key}",
            )
            self._session = UploadSession(key=self._key, upload_id=upload_id)
            LOGGER.debug("Initiated multipart upload %s for %s", upload_id, self._key)
        slots = self._part_slots
        slots.acquire()
        try:
            future = self._executor.submit(self._upload_part, self._session.upload_id, self._next_part_number, data)
        except BaseException:
            slots.release()
            raise
        future.add_done_callback(lambda _future: slots.release())
        self._futures.append((self._next_part_number, future))
        self._next_part_number += 1

    def _upload_part(self, upload_id: str, part_number: int, data: bytes) -> str:
        etag = self._retry_policy.run(
            lambda: self._client.upload_part(self._bucket, self._key, upload_id, part_number, data),
            description=f"UploadPart #{part_number} {self._key}",
        )
        LOGGER.debug("Uploaded part %d of %s (%d bytes)", part_number, self._key, len(data))
        return etag

    def _complete(self) -> None:
        session = self._session
        if session is None:
            raise MultipartUploadError(f"no multipart upload was started for {self._key}")
        for part_number, future in self._futures:
            session.completed_parts[part_number] = future.result()
        self._retry_policy.run(
            lambda: self._client.complete_multipart_upload(
                self._bucket, self._key, session.upload_id, session.sorted_parts()
            ),
            description=f"CompleteMultipartUpload {self._key}",
        )
        LOGGER.debug("Completed multipart upload of %s in %d parts", self._key, len(self._futures))

    def _fail(self, exc: Exception) -> None:
        LOGGER.error("Multipart upload of %s failed, aborting", self._key, exc_info=True)
        self._buffer.clear()
        self._cancel_pending()
        self._abort_session()
        super().close()
        raise MultipartUploadError(f"multipart upload of {self._key} failed: {exc}") from exc

    def _cancel_pending(self) -> None:
        # Parts already running must finish before the abort, or they outlive it.
        futures = [future for _, future in self._futures]
        for future in futures:
            future.cancel()
        wait(futures)

    def _abort_session(self) -> None:
        if self._session is None:
            return
        try:
            self._client.abort_multipart_upload(self._bucket, self._key, self._session.upload_id)
        except ObjectStoreError:
            LOGGER.warning("Failed to abort multipart upload %s", self._session.upload_id, exc_info=True)
