from __future__ import annotations
"""Filesystem operations synthesized from single-object store primitives."""
from concurrent.futures import ThreadPoolExecutor
import logging
import threading
from typing import Callable, Optional
from urllib.parse import urlparse

from .client import MAX_DELETE_KEYS, ObjectStoreClient, create_s3_client
from .errors import ObjectNotFoundError, ObjectStoreError
from .input_stream import ObjectInputStream, ObjectPositionReader
from .keys import PATH_SEPARATOR, KeyMapper
from .listing import ObjectListingChunk, iter_chunks, list_chunk
from .models import DEFAULT_PERMISSIONS, ObjectPermissions, ObjectStatus, TagSet, UfsStatus
from .output_stream import MultipartOutputStream, ObjectOutputStream, SingleShotOutputStream
from .profiles import ConnectionProfile
from .retry import RetryPolicy
from .settings import UfsSettings
from . import tags

LOGGER = logging.getLogger(__name__)


def bucket_name(uri: str) -> str:
    """Return the bucket of a URI such as ``s3://bucket/some/path``."""

    bucket = urlparse(uri).netloc
    if not bucket:
        raise ValueError(f"URI '{uri}' does not name a bucket")
    return bucket


class ObjectUnderFileSystem:
    """Hierarchical filesystem view of one bucket.

    Directories exist either as zero-length folder markers or implicitly,
    because some object lives under their prefix. The only internal
    concurrency is the multipart upload pool, created on first use and shut
    down by :meth:`close`.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        bucket: str,
        settings: UfsSettings | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self._client = client
        self._bucket = bucket
        self._settings = settings or UfsSettings()
        self._retry_policy = retry_policy or RetryPolicy.from_settings(self._settings)
        self._keys = KeyMapper(f"{client.scheme}://{bucket}", client.folder_suffix)
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    @classmethod
    def create_instance(
        cls,
        uri: str,
        profile: ConnectionProfile,
        settings: UfsSettings | None = None,
        client_factory: Callable[..., object] | None = None,
    ) -> ObjectUnderFileSystem:
        settings = settings or UfsSettings()
        client = create_s3_client(profile, settings, client_factory=client_factory)
        return cls(client, bucket_name(uri), settings)

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def settings(self) -> UfsSettings:
        return self._settings

    @property
    def keys(self) -> KeyMapper:
        return self._keys

    def get_under_fs_type(self) -> str:
        return self._client.scheme

    def root_key(self) -> str:
        return self._keys.root_key()

    def is_root(self, path: str) -> bool:
        return self._keys.is_root(path)

    # Status and listing

    def get_object_status(self, key: str) -> Optional[ObjectStatus]:
        return self._retry_policy.run(
            lambda: self._client.get_object_metadata(self._bucket, key),
            description=f"HeadObject {key}",
        )

    def is_directory(self, path: str) -> bool:
        if self.is_root(path):
            return True
        if self.get_object_status(self._keys.to_folder_key(path)) is not None:
            return True
        return self.list_chunk(path, recursive=True, page_size=1) is not None

    def is_file(self, path: str) -> bool:
        key = self._keys.to_key(path)
        if not key:
            return False
        return self.get_object_status(key) is not None

    def exists(self, path: str) -> bool:
        return self.is_file(path) or self.is_directory(path)

    def get_status(self, path: str) -> Optional[UfsStatus]:
        if self.is_root(path):
            return UfsStatus(name="", path=self._keys.to_path(""), is_directory=True)
        key = self._keys.to_key(path)
        status = self.get_object_status(key)
        if status is not None:
            return self._file_status(status, key.rsplit(PATH_SEPARATOR, 1)[-1])
        marker = self.get_object_status(self._keys.to_folder_key(path))
        if marker is None and self.list_chunk(path, recursive=True, page_size=1) is None:
            return None
        return UfsStatus(
            name=key.rsplit(PATH_SEPARATOR, 1)[-1],
            path=self._keys.to_path(key),
            is_directory=True,
            etag=marker.etag if marker else None,
            last_modified_millis=marker.last_modified_millis if marker else None,
        )

    def list_chunk(
        self, key: str, recursive: bool, page_size: int | None = None
    ) -> Optional[ObjectListingChunk]:
        """Return the first listing chunk under ``key``, or ``None`` when it is empty."""

        return list_chunk(
            self._client,
            self._bucket,
            self._keys.to_folder_key(key),
            recursive,
            page_size or self._settings.listing_page_size,
        )

    def list_status(self, path: str, recursive: bool = False) -> Optional[list[UfsStatus]]:
        """List the children of a directory, or return ``None`` if it is not one."""

        if not self.is_directory(path):
            return None
        prefix = self._keys.to_folder_key(path)
        found: dict[tuple[str, bool], UfsStatus] = {}

        def add_directory(name: str) -> None:
            if (name, True) not in found:
                found[(name, True)] = UfsStatus(
                    name=name, path=self._keys.to_path(prefix + name), is_directory=True
                )

        for chunk in iter_chunks(self.list_chunk(path, recursive)):
            for status in chunk.objects:
                if status.key == prefix:
                    continue
                name = self._keys.child_name(prefix, status.key)
                if recursive:
                    parts = name.split(PATH_SEPARATOR)
                    for depth in range(1, len(parts)):
                        add_directory(PATH_SEPARATOR.join(parts[:depth]))
                if self._keys.is_folder_key(status.key):
                    add_directory(name)
                else:
                    found[(name, False)] = self._file_status(status, name)
            for common_prefix in chunk.common_prefixes:
                add_directory(self._keys.child_name(prefix, common_prefix))
        return list(found.values())

    # Reading

    def open(self, path: str, offset: int = 0, retry_policy: RetryPolicy | None = None) -> ObjectInputStream:
        key = self._keys.to_key(path)
        status = self.get_object_status(key) if key else None
        if status is None:
            raise ObjectNotFoundError(f"{self._keys.to_path(key)} does not exist")
        return ObjectInputStream(
            self._client,
            self._bucket,
            key,
            length=status.size_bytes,
            offset=offset,
            retry_policy=retry_policy or self._retry_policy,
            chunk_size=self._settings.read_chunk_size,
        )

    def open_position_read(self, path: str, file_length: int) -> ObjectPositionReader:
        return ObjectPositionReader(
            self._client,
            self._bucket,
            self._keys.to_key(path),
            file_length,
            retry_policy=self._retry_policy,
            chunk_size=self._settings.read_chunk_size,
        )

    # Writing

    def create(self, path: str) -> ObjectOutputStream:
        return self.create_object(self._keys.to_key(path))

    def create_object(self, key: str) -> ObjectOutputStream:
        if self._settings.multipart_upload_enabled:
            return MultipartOutputStream(
                self._client,
                self._bucket,
                key,
                self._multipart_executor(),
                part_size=self._settings.multipart_part_size,
                retry_policy=self._retry_policy,
                max_pending_parts=self._settings.multipart_upload_threads * 2,
            )
        return SingleShotOutputStream(
            self._client,
            self._bucket,
            key,
            tmp_dirs=self._settings.tmp_dirs,
            retry_policy=self._retry_policy,
        )

    def create_empty_object(self, key: str) -> bool:
        try:
            self._retry_policy.run(
                lambda: self._client.put_object(self._bucket, key, b"", 0),
                description=f"PutObject {key}",
            )
        except ObjectStoreError:
            LOGGER.error("Failed to create object: %s", key, exc_info=True)
            return False
        return True

    def mkdirs(self, path: str, create_parent: bool = True) -> bool:
        if self.is_directory(path):
            return True
        if self.is_file(path):
            LOGGER.error("Cannot create directory %s because it is already a file", path)
            return False
        key = self._keys.to_key(path)
        parent = key.rsplit(PATH_SEPARATOR, 1)[0] if PATH_SEPARATOR in key else ""
        if not self.is_directory(parent):
            if not create_parent:
                LOGGER.error("Cannot create directory %s because parent %s does not exist", path, parent)
                return False
            if not self.mkdirs(parent, create_parent=True):
                return False
        return self.create_empty_object(self._keys.to_folder_key(key))

    # Deleting, copying, renaming

    def delete_object(self, key: str) -> bool:
        try:
            self._retry_policy.run(
                lambda: self._client.delete_object(self._bucket, key),
                description=f"DeleteObject {key}",
            )
        except ObjectStoreError:
            LOGGER.error("Failed to delete %s", key, exc_info=True)
            return False
        return True

    def delete_objects(self, keys: list[str]) -> list[str]:
        """Delete ``keys`` in batches; return the keys the store confirmed.

        A failed batch request raises and discards any partial result. Keys
        the store refused individually are left out of the returned list.
        """

        deleted: list[str] = []
        for start in range(0, len(keys), MAX_DELETE_KEYS):
            batch = keys[start:start + MAX_DELETE_KEYS]
            try:
                deleted.extend(self._client.delete_objects(self._bucket, batch))
            except ObjectStoreError:
                LOGGER.warning("Failed to delete objects")
                raise
        return deleted

    def delete_file(self, path: str) -> bool:
        return self.delete_object(self._keys.to_key(path))

    def delete_directory(self, path: str, recursive: bool = False) -> bool:
        children = self.list_status(path)
        if children is None:
            LOGGER.error("Cannot delete %s because it is not a directory", path)
            return False
        if children and not recursive:
            LOGGER.error("Cannot delete non-empty directory %s", path)
            return False
        keys: list[str] = []
        if recursive:
            for chunk in iter_chunks(self.list_chunk(path, recursive=True)):
                keys.extend(status.key for status in chunk.objects)
        marker = self._keys.to_folder_key(path)
        if marker and marker not in keys and self.get_object_status(marker) is not None:
            keys.append(marker)
        if not keys:
            return True
        deleted = set(self.delete_objects(keys))
        return deleted.issuperset(keys)

    def copy_object(self, src: str, dst: str) -> bool:
        try:
            LOGGER.debug("Copying %s to %s", src, dst)
            self._retry_policy.run(
                lambda: self._client.copy_object(self._bucket, src, self._bucket, dst),
                description=f"CopyObject {src}",
            )
            return True
        except ObjectStoreError:
            LOGGER.error("Failed to rename file %s to %s", src, dst, exc_info=True)
            return False

    def rename_file(self, src: str, dst: str) -> bool:
        src_key = self._keys.to_key(src)
        dst_key = self._keys.to_key(dst)
        if not self.copy_object(src_key, dst_key):
            return False
        return self.delete_object(src_key)

    def rename_directory(self, src: str, dst: str) -> bool:
        """Copy every key under ``src`` to ``dst``, then delete the originals.

        Not atomic: a failure part way leaves keys under both prefixes.
        """

        src_prefix = self._keys.to_folder_key(src)
        dst_prefix = self._keys.to_folder_key(dst)
        if not src_prefix or not dst_prefix:
            LOGGER.error("Cannot rename %s to %s: the root cannot be renamed", src, dst)
            return False
        keys: list[str] = []
        for chunk in iter_chunks(self.list_chunk(src_prefix, recursive=True)):
            keys.extend(status.key for status in chunk.objects)
        if not keys:
            return False
        for key in keys:
            if not self.copy_object(key, dst_prefix + key[len(src_prefix):]):
                return False
        deleted = set(self.delete_objects(keys))
        return deleted.issuperset(keys)

    # Tags and permissions

    def set_object_tag(self, path: str, name: str, value: str) -> TagSet:
        key = self._keys.to_key(path)
        return self._retry_policy.run(
            lambda: tags.set_tag(self._client, self._bucket, key, name, value),
            description=f"SetObjectTag {key}",
        )

    def get_object_tags(self, path: str) -> Optional[TagSet]:
        key = self._keys.to_key(path)
        return self._retry_policy.run(
            lambda: tags.get_tags(self._client, self._bucket, key),
            description=f"GetObjectTags {key}",
        )

    # No ACL integration, no-op
    def set_owner(self, path: str, user: str, group: str) -> None:
        pass

    # No ACL integration, no-op
    def set_mode(self, path: str, mode: int) -> None:
        pass

    def get_permissions(self) -> ObjectPermissions:
        return DEFAULT_PERMISSIONS

    # Lifecycle

    def close(self) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def __enter__(self) -> ObjectUnderFileSystem:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _multipart_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                LOGGER.debug("Starting %d multipart upload workers", self._settings.multipart_upload_threads)
                self._executor = ThreadPoolExecutor(
                    max_workers=self._settings.multipart_upload_threads,
                    thread_name_prefix="s3ufs-multipart-upload",
                )
            return self._executor

    def _file_status(self, status: ObjectStatus, name: str) -> UfsStatus:
        return UfsStatus(
            name=name,
            path=self._keys.to_path(status.key),
            is_directory=False,
            size_bytes=status.size_bytes,
            etag=status.etag,
            last_modified_millis=status.last_modified_millis,
        )
