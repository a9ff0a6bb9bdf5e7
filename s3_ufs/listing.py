from __future__ import annotations
"""Paginated prefix listings exposed as a lazy chain of chunks."""
from dataclasses import dataclass, replace
import logging
from typing import Iterator, Optional

from .client import ObjectStoreClient
from .keys import PATH_SEPARATOR
from .models import ListResult, ObjectStatus

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListRequest:
    bucket: str
    prefix: str
    delimiter: str
    max_keys: int
    continuation_token: Optional[str] = None


class ObjectListingChunk:
    """One page of a listing.

    Chunks form a forward-only chain: :meth:`next` fetches the following page
    with the continuation token of this one. A failure while advancing is not
    retried; callers restart the listing from the beginning instead.
    """

    def __init__(self, client: ObjectStoreClient, request: ListRequest, result: ListResult):
        self._client = client
        self._request = request
        self._result = result

    @property
    def objects(self) -> list[ObjectStatus]:
        return list(self._result.objects)

    @property
    def common_prefixes(self) -> list[str]:
        return list(self._result.common_prefixes)

    @property
    def continuation_state(self) -> Optional[str]:
        return self._result.next_continuation_token

    @property
    def has_more(self) -> bool:
        return self._result.is_truncated and bool(self._result.next_continuation_token)

    def is_empty(self) -> bool:
        return not self._result.objects and not self._result.common_prefixes

    def next(self) -> Optional[ObjectListingChunk]:
        if not self.has_more:
            return None
        request = replace(self._request, continuation_token=self._result.next_continuation_token)
        LOGGER.debug("Listing next page of %r", request.prefix)
        result = fetch(self._client, request)
        return ObjectListingChunk(self._client, request, result)


def fetch(client: ObjectStoreClient, request: ListRequest) -> ListResult:
    return client.list_objects(
        request.bucket,
        request.prefix,
        request.delimiter,
        request.max_keys,
        request.continuation_token,
    )


def list_chunk(
    client: ObjectStoreClient,
    bucket: str,
    prefix: str,
    recursive: bool,
    page_size: int,
) -> Optional[ObjectListingChunk]:
    """Return the first chunk under ``prefix``, or ``None`` when nothing lives there.

    ``prefix`` is used verbatim; the empty prefix lists the whole bucket.
    """

    request = ListRequest(
        bucket=bucket,
        prefix=prefix,
        delimiter="" if recursive else PATH_SEPARATOR,
        max_keys=page_size,
    )
    LOGGER.debug("Listing %r (recursive=%s)", prefix, recursive)
    chunk = ObjectListingChunk(client, request, fetch(client, request))
    # Empty pages may still be truncated.
    while chunk.is_empty():
        following = chunk.next()
        if following is None:
            return None
        chunk = following
    return chunk


def iter_chunks(first: Optional[ObjectListingChunk]) -> Iterator[ObjectListingChunk]:
    chunk = first
    while chunk is not None:
        yield chunk
        chunk = chunk.next()
