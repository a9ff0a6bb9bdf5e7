from __future__ import annotations
"""Error taxonomy for the object store adapter."""
from enum import Enum

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    IncompleteReadError,
)

NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound", "NoSuchTagSet", "NoSuchTagSetError"})
# An existing object without tags; not the same as a missing object.
NO_TAG_SET_CODES = frozenset({"NoSuchTagSet", "NoSuchTagSetError"})
TRANSIENT_CODES = frozenset(
    {
        "RequestTimeout",
        "RequestTimeoutException",
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "InternalError",
        "ServiceUnavailable",
        "PriorRequestNotComplete",
    }
)


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class ObjectStoreError(OSError):
    """Base class for failures reported by the adapter.

    ``code`` and ``status`` preserve the error code and HTTP status reported by
    the store, when there was one.
    """

    kind = ErrorKind.PERMANENT

    def __init__(self, message: str, *, code: str | None = None, status: int | None = None):
        super().__init__(message)
        self.code = code
        self.status = status


class ObjectNotFoundError(ObjectStoreError):
    """Raised when the object or its tag set does not exist."""

    kind = ErrorKind.NOT_FOUND


class TransientTransportError(ObjectStoreError):
    """Raised for network failures and throttling; safe to retry."""

    kind = ErrorKind.TRANSIENT


class PermanentClientError(ObjectStoreError):
    """Raised for malformed requests, auth failures and the like."""

    kind = ErrorKind.PERMANENT


class MultipartUploadError(ObjectStoreError):
    """Raised when a multipart upload fails and its session was aborted."""


class StreamClosedError(ObjectStoreError, ValueError):
    """Raised when a closed stream is used."""


def _classify_client_error(exc: ClientError) -> tuple[ErrorKind, str, int | None]:
    error = exc.response.get("Error", {}) or {}
    code = str(error.get("Code", "") or "")
    status = (exc.response.get("ResponseMetadata", {}) or {}).get("HTTPStatusCode")
    if code in NOT_FOUND_CODES or status == 404:
        return ErrorKind.NOT_FOUND, code, status
    if code in TRANSIENT_CODES or status == 429 or (status is not None and status >= 500):
        return ErrorKind.TRANSIENT, code, status
    return ErrorKind.PERMANENT, code, status


def translate_error(exc: Exception, *, operation: str, key: str = "") -> ObjectStoreError:
    """Map a botocore exception onto the adapter's error kinds.

    The original exception is kept as ``__cause__``.
    """

    if isinstance(exc, ObjectStoreError):
        return exc
    target = f"{operation} {key}".strip()
    if isinstance(exc, ClientError):
        kind, code, status = _classify_client_error(exc)
        message = f"{target} failed: {exc}"
        if kind is ErrorKind.NOT_FOUND:
            error: ObjectStoreError = ObjectNotFoundError(message, code=code, status=status)
        elif kind is ErrorKind.TRANSIENT:
            error = TransientTransportError(message, code=code, status=status)
        else:
            error = PermanentClientError(message, code=code, status=status)
    elif isinstance(exc, (BotoConnectionError, HTTPClientError, IncompleteReadError)):
        error = TransientTransportError(f"{target} failed: {exc}")
    elif isinstance(exc, BotoCoreError):
        error = PermanentClientError(f"{target} failed: {exc}")
    else:
        error = ObjectStoreError(f"{target} failed: {exc}")
    error.__cause__ = exc
    return error
