from __future__ import annotations
"""Data models shared by the object store adapter."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

TagSet = dict[str, str]


@dataclass(frozen=True)
class ObjectStatus:
    """Snapshot of one object's metadata at listing or stat time."""

    key: str
    etag: Optional[str] = None
    size_bytes: int = 0
    last_modified_millis: Optional[int] = None


@dataclass
class ListResult:
    """A single raw listing page as returned by the object store."""

    objects: list[ObjectStatus] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)
    is_truncated: bool = False
    next_continuation_token: Optional[str] = None


@dataclass(frozen=True)
class ObjectPermissions:
    """Owner, group and mode reported for every path."""

    owner: str
    group: str
    mode: int


DEFAULT_PERMISSIONS = ObjectPermissions(owner="", group="", mode=0o777)


@dataclass(frozen=True)
class UfsStatus:
    """Filesystem level view of a file or directory."""

    name: str
    path: str
    is_directory: bool
    size_bytes: int = 0
    etag: Optional[str] = None
    last_modified_millis: Optional[int] = None
    owner: str = DEFAULT_PERMISSIONS.owner
    group: str = DEFAULT_PERMISSIONS.group
    mode: int = DEFAULT_PERMISSIONS.mode


def to_millis(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(value.timestamp() * 1000)
