from __future__ import annotations
"""Read-modify-write helpers for object tags."""
import logging
from typing import Optional

from .client import ObjectStoreClient
from .errors import ObjectNotFoundError
from .models import TagSet

LOGGER = logging.getLogger(__name__)


def merge_tag(current: TagSet, name: str, value: str) -> TagSet:
    """Return ``current`` with ``name`` updated in place, or appended if absent."""

    merged: TagSet = {}
    found = False
    for tag_name, tag_value in current.items():
        if tag_name == name:
            found = True
            tag_value = value
        merged[tag_name] = tag_value
    if not found:
        merged[name] = value
    return merged


def get_tags(client: ObjectStoreClient, bucket: str, key: str) -> Optional[TagSet]:
    tags = client.get_object_tags(bucket, key)
    if tags is None:
        return None
    return dict(tags)


def set_tag(client: ObjectStoreClient, bucket: str, key: str, name: str, value: str) -> TagSet:
    """Set one tag on ``key`` and return the tag set that was written.

    There is no compare-and-swap: concurrent callers on the same key race and
    the last PUT wins. The store's own versioning, if enabled, is the only
    arbiter.
    """

    current = client.get_object_tags(bucket, key)
    if current is None:
        raise ObjectNotFoundError(f"cannot tag missing object {key}")
    merged = merge_tag(current, name, value)
    LOGGER.debug("Setting tag %s=%s on %s", name, value, key)
    client.set_object_tags(bucket, key, merged)
    return merged
