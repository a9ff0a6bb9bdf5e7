from __future__ import annotations
"""Mapping between filesystem paths and object keys."""
import re

PATH_SEPARATOR = "/"

_REPEATED_SEPARATORS = re.compile(r"/{2,}")
_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


class KeyMapper:
    """Converts paths such as ``s3://bucket/a/b`` to keys such as ``a/b``.

    The filesystem root maps to the empty key, which object stores read as
    "every object" when used as a listing prefix.
    URIs naming another scheme or bucket are rejected with ``ValueError``.
    """

    def __init__(self, root_key: str, folder_suffix: str = PATH_SEPARATOR):
        self._root_key = root_key.rstrip(PATH_SEPARATOR)
        self._folder_suffix = folder_suffix

    @property
    def folder_suffix(self) -> str:
        return self._folder_suffix

    def root_key(self) -> str:
        return self._root_key

    def strip_prefix(self, path: str) -> str:
        if path == self._root_key or path.startswith(self._root_key + PATH_SEPARATOR):
            path = path[len(self._root_key):]
        elif _SCHEME.match(path):
            raise ValueError(f"'{path}' is not under {self._root_key}")
        return path.lstrip(PATH_SEPARATOR)

    def to_key(self, path: str) -> str:
        key = _REPEATED_SEPARATORS.sub(PATH_SEPARATOR, self.strip_prefix(path))
        return key.strip(PATH_SEPARATOR)

    def to_folder_key(self, path: str) -> str:
        key = self.to_key(path)
        if not key:
            return ""
        return key + self._folder_suffix

    def is_root(self, path: str) -> bool:
        return self.to_key(path) == ""

    def is_folder_key(self, key: str) -> bool:
        return key.endswith(self._folder_suffix)

    def to_path(self, key: str) -> str:
        if self.is_folder_key(key):
            key = key[: -len(self._folder_suffix)]
        return f"{self._root_key}{PATH_SEPARATOR}{key}"

    def child_name(self, parent_key: str, key: str) -> str:
        """Return ``key`` relative to the folder prefix ``parent_key``."""

        name = key[len(parent_key):] if key.startswith(parent_key) else key
        if self.is_folder_key(name):
            name = name[: -len(self._folder_suffix)]
        return name
