from __future__ import annotations
"""The object store capability the adapter depends on, and its S3 implementation."""
import logging
from typing import BinaryIO, Callable, Iterator, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import NO_TAG_SET_CODES, ObjectNotFoundError, translate_error
from .keys import PATH_SEPARATOR
from .models import ListResult, ObjectStatus, TagSet, to_millis
from .profiles import ConnectionProfile
from .settings import UfsSettings

LOGGER = logging.getLogger(__name__)

# Largest number of keys a single DeleteObjects request accepts.
MAX_DELETE_KEYS = 1000
STREAM_CHUNK_SIZE = 64 * 1024


class ObjectStoreClient(Protocol):
    """Single-object primitives every backing store must provide."""

    scheme: str
    folder_suffix: str

    def put_object(self, bucket: str, key: str, body: BinaryIO | bytes, content_length: int) -> None: ...

    def get_object_metadata(self, bucket: str, key: str) -> Optional[ObjectStatus]: ...

    def get_object_range(self, bucket: str, key: str, start: int, end: int) -> Iterator[bytes]: ...

    def delete_object(self, bucket: str, key: str) -> None: ...

    def delete_objects(self, bucket: str, keys: list[str]) -> list[str]: ...

    def list_objects(
        self,
        bucket: str,
        prefix: str,
        delimiter: str,
        max_keys: int,
        continuation_token: Optional[str] = None,
    ) -> ListResult: ...

    def copy_object(self, src_bucket: str, src_key: str, dst_bucket: str, dst_key: str) -> None: ...

    def get_object_tags(self, bucket: str, key: str) -> Optional[TagSet]: ...

    def set_object_tags(self, bucket: str, key: str, tags: TagSet) -> None: ...

    def initiate_multipart_upload(self, bucket: str, key: str) -> str: ...

    def upload_part(self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes) -> str: ...

    def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: list[tuple[int, str]]
    ) -> None: ...

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None: ...


class S3ObjectStoreClient:
    """:class:`ObjectStoreClient` backed by a boto3 S3 client.

    Every botocore exception is translated into an
    :class:`~s3_ufs.errors.ObjectStoreError` before leaving this class.
    """

    scheme = "s3"
    folder_suffix = PATH_SEPARATOR

    def __init__(self, client):
        self._client = client

    def put_object(self, bucket: str, key: str, body: BinaryIO | bytes, content_length: int) -> None:
        try:
            self._client.put_object(Bucket=bucket, Key=key, Body=body, ContentLength=content_length)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, operation="PutObject", key=key)

    def get_object_metadata(self, bucket: str, key: str) -> Optional[ObjectStatus]:
        try:
            response = self._client.head_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            error = translate_error(exc, operation="HeadObject", key=key)
            if isinstance(error, ObjectNotFoundError):
                return None
            raise error
        return ObjectStatus(
            key=key,
            etag=response.get("ETag"),
            size_bytes=int(response.get("ContentLength") or 0),
            last_modified_millis=to_millis(response.get("LastModified")),
        )

    def get_object_range(self, bucket: str, key: str, start: int, end: int) -> Iterator[bytes]:
        """Yield the bytes of ``[start, end]`` as they arrive from the network."""

        try:
            response = self._client.get_object(Bucket=bucket, Key=key, Range=f"bytes={start}-{end}")
            body = response["Body"]
            try:
                for chunk in body.iter_chunks(STREAM_CHUNK_SIZE):
                    yield chunk
            finally:
                body.close()
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, operation="GetObject", key=key)

    def delete_object(self, bucket: str, key: str) -> None:
        try:
            self._client.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, operation="DeleteObject", key=key)

    def delete_objects(self, bucket: str, keys: list[str]) -> list[str]:
        if len(keys) > MAX_DELETE_KEYS:
            raise ValueError(f"at most {MAX_DELETE_KEYS} keys can be deleted per request")
        if not keys:
            return []
        try:
            response = self._client.delete_objects(
                Bucket=bucket,
                Delete={"Objects": [{"Key": key} for key in keys], "Quiet": False},
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, operation="DeleteObjects")
        for error in response.get("Errors", []):
            LOGGER.warning(
                "Failed to delete %s: %s %s", error.get("Key"), error.get("Code"), error.get("Message")
            )
        return [deleted["Key"] for deleted in response.get("Deleted", [])]

    def list_objects(
        self,
        bucket: str,
        prefix: str,
        delimiter: str,
        max_keys: int,
        continuation_token: Optional[str] = None,
    ) -> ListResult:
        list_params = {"Bucket": bucket, "MaxKeys": max_keys}
        if prefix:
            list_params["Prefix"] = prefix
        if delimiter:
            list_params["Delimiter"] = delimiter
        if continuation_token:
            list_params["ContinuationToken"] = continuation_token
        try:
            response = self._client.list_objects_v2(**list_params)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, operation="ListObjectsV2", key=prefix)
        objects = [
            ObjectStatus(
                key=obj["Key"],
                etag=obj.get("ETag"),
                size_bytes=int(obj.get("Size") or 0),
                last_modified_millis=to_millis(obj.get("LastModified")),
            )
            for obj in response.get("Contents", [])
        ]
        prefixes = [common["Prefix"] for common in response.get("CommonPrefixes", [])]
        return ListResult(
            objects=objects,
            common_prefixes=prefixes,
            is_truncated=bool(response.get("IsTruncated", False)),
            next_continuation_token=response.get("NextContinuationToken"),
        )

    def copy_object(self, src_bucket: str, src_key: str, dst_bucket: str, dst_key: str) -> None:
        try:
            self._client.copy_object(
                Bucket=dst_bucket,
                Key=dst_key,
                CopySource={"Bucket": src_bucket, "Key": src_key},
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, operation="CopyObject", key=src_key)

    def get_object_tags(self, bucket: str, key: str) -> Optional[TagSet]:
        try:
            response = self._client.get_object_tagging(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            error = translate_error(exc, operation="GetObjectTagging", key=key)
            if error.code in NO_TAG_SET_CODES:
                return {}
            if isinstance(error, ObjectNotFoundError):
                return None
            raise error
        return {tag["Key"]: tag["Value"] for tag in response.get("TagSet", [])}

    def set_object_tags(self, bucket: str, key: str, tags: TagSet) -> None:
        tag_set = [{"Key": name, "Value": value} for name, value in tags.items()]
        try:
            self._client.put_object_tagging(Bucket=bucket, Key=key, Tagging={"TagSet": tag_set})
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, operation="PutObjectTagging", key=key)

    def initiate_multipart_upload(self, bucket: str, key: str) -> str:
        try:
            response = self._client.create_multipart_upload(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, operation="CreateMultipartUpload", key=key)
        return response["UploadId"]

    def upload_part(self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        try:
            response = self._client.upload_part(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=data,
                ContentLength=len(data),
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, operation=f"UploadPart #{part_number}", key=key)
        return response["ETag"]

    def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: list[tuple[int, str]]
    ) -> None:
        manifest = [{"PartNumber": number, "ETag": etag} for number, etag in parts]
        try:
            self._client.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": manifest},
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, operation="CompleteMultipartUpload", key=key)

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        try:
            self._client.abort_multipart_upload(Bucket=bucket, Key=key, UploadId=upload_id)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, operation="AbortMultipartUpload", key=key)


def create_s3_client(
    profile: ConnectionProfile,
    settings: UfsSettings,
    client_factory: Callable[..., object] | None = None,
) -> S3ObjectStoreClient:
    """Build an :class:`S3ObjectStoreClient` from a saved profile."""

    factory = client_factory or boto3.client
    config = Config(
        signature_version="s3v4",
        connect_timeout=settings.connection_timeout_ms / 1000.0,
        read_timeout=settings.socket_timeout_ms / 1000.0,
        max_pool_connections=settings.max_connections,
        # RetryPolicy owns retries.
        retries={"total_max_attempts": 1, "mode": "standard"},
    )
    client = factory(
        "s3",
        endpoint_url=profile.endpoint_url or None,
        region_name=profile.region,
        aws_access_key_id=profile.access_key or None,
        aws_secret_access_key=profile.secret_key or None,
        config=config,
    )
    return S3ObjectStoreClient(client)
