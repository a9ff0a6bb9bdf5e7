import unittest
from datetime import datetime, timezone

from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from s3_ufs.client import MAX_DELETE_KEYS, S3ObjectStoreClient, create_s3_client
from s3_ufs.errors import (
    ObjectNotFoundError,
    ObjectStoreError,
    PermanentClientError,
    TransientTransportError,
    translate_error,
)
from s3_ufs.profiles import ConnectionProfile
from s3_ufs.settings import UfsSettings
from s3_ufs.tags import set_tag


def client_error(code, status, operation="HeadObject"):
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class FakeBody:
    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error
        self.closed = False

    def iter_chunks(self, chunk_size):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    def close(self):
        self.closed = True


class FakeS3Client:
    def __init__(self, responses=None, errors=None):
        self.responses = responses or {}
        self.errors = errors or {}
        self.calls = []

    def _call(self, method, kwargs):
        self.calls.append((method, kwargs))
        error = self.errors.get(method)
        if isinstance(error, Exception):
            raise error
        return self.responses.get(method, {})

    def __getattr__(self, method):
        if method.startswith("_"):
            raise AttributeError(method)
        return lambda **kwargs: self._call(method, kwargs)


class S3ObjectStoreClientTests(unittest.TestCase):
    def test_head_object_maps_metadata(self):
        modified = datetime(2024, 1, 2, tzinfo=timezone.utc)
        fake = FakeS3Client({"head_object": {"ETag": '"abc"', "ContentLength": 42, "LastModified": modified}})

        status = S3ObjectStoreClient(fake).get_object_metadata("bucket", "a/b.txt")

        self.assertEqual("a/b.txt", status.key)
        self.assertEqual('"abc"', status.etag)
        self.assertEqual(42, status.size_bytes)
        self.assertEqual(int(modified.timestamp() * 1000), status.last_modified_millis)
        self.assertEqual(("head_object", {"Bucket": "bucket", "Key": "a/b.txt"}), fake.calls[0])

    def test_head_object_not_found_returns_none(self):
        fake = FakeS3Client(errors={"head_object": client_error("404", 404)})

        self.assertIsNone(S3ObjectStoreClient(fake).get_object_metadata("bucket", "missing"))

    def test_head_object_denied_raises(self):
        fake = FakeS3Client(errors={"head_object": client_error("AccessDenied", 403)})

        with self.assertRaises(PermanentClientError) as ctx:
            S3ObjectStoreClient(fake).get_object_metadata("bucket", "secret")

        self.assertEqual("AccessDenied", ctx.exception.code)
        self.assertEqual(403, ctx.exception.status)

    def test_get_object_range_streams_and_closes_body(self):
        body = FakeBody([b"abc", b"def"])
        fake = FakeS3Client({"get_object": {"Body": body}})

        chunks = list(S3ObjectStoreClient(fake).get_object_range("bucket", "k", 10, 15))

        self.assertEqual([b"abc", b"def"], chunks)
        self.assertEqual("bytes=10-15", fake.calls[0][1]["Range"])
        self.assertTrue(body.closed)

    def test_get_object_range_translates_mid_stream_failure(self):
        body = FakeBody([b"abc"], error=EndpointConnectionError(endpoint_url="https://s3"))
        fake = FakeS3Client({"get_object": {"Body": body}})
        received = []

        with self.assertRaises(TransientTransportError):
            for chunk in S3ObjectStoreClient(fake).get_object_range("bucket", "k", 0, 9):
                received.append(chunk)

        self.assertEqual([b"abc"], received)
        self.assertTrue(body.closed)

    def test_list_objects_omits_empty_parameters(self):
        fake = FakeS3Client(
            {
                "list_objects_v2": {
                    "Contents": [{"Key": "x", "Size": 3, "ETag": '"e"'}],
                    "CommonPrefixes": [{"Prefix": "y/"}],
                    "IsTruncated": True,
                    "NextContinuationToken": "token-1",
                }
            }
        )

        result = S3ObjectStoreClient(fake).list_objects("bucket", "", "/", 10)

        self.assertEqual({"Bucket": "bucket", "MaxKeys": 10, "Delimiter": "/"}, fake.calls[0][1])
        self.assertEqual(["x"], [status.key for status in result.objects])
        self.assertEqual(3, result.objects[0].size_bytes)
        self.assertIsNone(result.objects[0].last_modified_millis)
        self.assertEqual(["y/"], result.common_prefixes)
        self.assertTrue(result.is_truncated)
        self.assertEqual("token-1", result.next_continuation_token)

    def test_list_objects_passes_prefix_and_token(self):
        fake = FakeS3Client({"list_objects_v2": {}})

        result = S3ObjectStoreClient(fake).list_objects("bucket", "a/", "", 5, "token-2")

        self.assertEqual(
            {"Bucket": "bucket", "MaxKeys": 5, "Prefix": "a/", "ContinuationToken": "token-2"},
            fake.calls[0][1],
        )
        self.assertEqual([], result.objects)
        self.assertFalse(result.is_truncated)

    def test_delete_objects_returns_confirmed_keys(self):
        fake = FakeS3Client(
            {
                "delete_objects": {
                    "Deleted": [{"Key": "a"}],
                    "Errors": [{"Key": "b", "Code": "AccessDenied", "Message": "denied"}],
                }
            }
        )

        with self.assertLogs("s3_ufs.client", level="WARNING"):
            deleted = S3ObjectStoreClient(fake).delete_objects("bucket", ["a", "b"])

        self.assertEqual(["a"], deleted)
        request = fake.calls[0][1]["Delete"]
        self.assertEqual([{"Key": "a"}, {"Key": "b"}], request["Objects"])
        self.assertFalse(request["Quiet"])

    def test_delete_objects_rejects_oversized_batch(self):
        fake = FakeS3Client()

        with self.assertRaises(ValueError):
            S3ObjectStoreClient(fake).delete_objects("bucket", [str(index) for index in range(MAX_DELETE_KEYS + 1)])

        self.assertEqual([], fake.calls)

    def test_copy_object_uses_copy_source(self):
        fake = FakeS3Client()

        S3ObjectStoreClient(fake).copy_object("bucket", "src", "bucket", "dst")

        self.assertEqual(
            ("copy_object", {"Bucket": "bucket", "Key": "dst", "CopySource": {"Bucket": "bucket", "Key": "src"}}),
            fake.calls[0],
        )

    def test_tags_round_trip_through_tag_set(self):
        fake = FakeS3Client({"get_object_tagging": {"TagSet": [{"Key": "env", "Value": "prod"}]}})
        client = S3ObjectStoreClient(fake)

        self.assertEqual({"env": "prod"}, client.get_object_tags("bucket", "k"))
        client.set_object_tags("bucket", "k", {"env": "dev", "team": "data"})

        self.assertEqual(
            {"TagSet": [{"Key": "env", "Value": "dev"}, {"Key": "team", "Value": "data"}]},
            fake.calls[1][1]["Tagging"],
        )

    def test_missing_tag_set_returns_none(self):
        fake = FakeS3Client(errors={"get_object_tagging": client_error("NoSuchKey", 404, "GetObjectTagging")})

        self.assertIsNone(S3ObjectStoreClient(fake).get_object_tags("bucket", "k"))

    def test_untagged_object_can_be_tagged(self):
        for code in ("NoSuchTagSet", "NoSuchTagSetError"):
            with self.subTest(code=code):
                fake = FakeS3Client(errors={"get_object_tagging": client_error(code, 404, "GetObjectTagging")})
                client = S3ObjectStoreClient(fake)

                self.assertEqual({}, client.get_object_tags("bucket", "existing"))
                self.assertEqual({"env": "prod"}, set_tag(client, "bucket", "existing", "env", "prod"))
                self.assertEqual(
                    {"TagSet": [{"Key": "env", "Value": "prod"}]},
                    fake.calls[-1][1]["Tagging"],
                )

    def test_multipart_calls(self):
        fake = FakeS3Client(
            {"create_multipart_upload": {"UploadId": "u-1"}, "upload_part": {"ETag": '"p1"'}}
        )
        client = S3ObjectStoreClient(fake)

        upload_id = client.initiate_multipart_upload("bucket", "k")
        etag = client.upload_part("bucket", "k", upload_id, 1, b"data")
        client.complete_multipart_upload("bucket", "k", upload_id, [(1, etag)])
        client.abort_multipart_upload("bucket", "k", upload_id)

        self.assertEqual("u-1", upload_id)
        self.assertEqual('"p1"', etag)
        self.assertEqual(4, fake.calls[1][1]["ContentLength"])
        self.assertEqual({"Parts": [{"PartNumber": 1, "ETag": '"p1"'}]}, fake.calls[2][1]["MultipartUpload"])
        self.assertEqual(
            ("abort_multipart_upload", {"Bucket": "bucket", "Key": "k", "UploadId": "u-1"}),
            fake.calls[3],
        )

    def test_put_object_failure_is_translated(self):
        fake = FakeS3Client(errors={"put_object": client_error("SlowDown", 503, "PutObject")})

        with self.assertRaises(TransientTransportError):
            S3ObjectStoreClient(fake).put_object("bucket", "k", b"x", 1)


class TranslateErrorTests(unittest.TestCase):
    def test_classifies_client_errors(self):
        cases = [
            (client_error("NoSuchKey", 404), ObjectNotFoundError),
            (client_error("Unknown", 404), ObjectNotFoundError),
            (client_error("SlowDown", 503), TransientTransportError),
            (client_error("Throttling", 400), TransientTransportError),
            (client_error("Whatever", 429), TransientTransportError),
            (client_error("InternalError", 500), TransientTransportError),
            (client_error("AccessDenied", 403), PermanentClientError),
            (client_error("InvalidArgument", 400), PermanentClientError),
        ]
        for exc, expected in cases:
            with self.subTest(code=exc.response["Error"]["Code"]):
                error = translate_error(exc, operation="HeadObject", key="k")
                self.assertIsInstance(error, expected)
                self.assertIs(exc, error.__cause__)
                self.assertIn("HeadObject k", str(error))

    def test_classifies_transport_errors(self):
        self.assertIsInstance(
            translate_error(EndpointConnectionError(endpoint_url="https://s3"), operation="GetObject"),
            TransientTransportError,
        )
        self.assertIsInstance(translate_error(NoCredentialsError(), operation="GetObject"), PermanentClientError)

    def test_passes_through_adapter_errors(self):
        error = ObjectNotFoundError("gone")

        self.assertIs(error, translate_error(error, operation="HeadObject"))

    def test_errors_are_os_errors(self):
        self.assertTrue(issubclass(ObjectStoreError, OSError))


class CreateS3ClientTests(unittest.TestCase):
    def test_builds_boto_client_from_profile(self):
        calls = []

        def factory(service, **kwargs):
            calls.append((service, kwargs))
            return FakeS3Client()

        profile = ConnectionProfile(
            name="p", endpoint_url="https://minio:9000", access_key="ak", secret_key="sk", region="eu-west-1"
        )
        settings = UfsSettings(connection_timeout_ms=2000, socket_timeout_ms=3000, max_connections=16)

        client = create_s3_client(profile, settings, client_factory=factory)

        self.assertIsInstance(client, S3ObjectStoreClient)
        service, kwargs = calls[0]
        self.assertEqual("s3", service)
        self.assertEqual("https://minio:9000", kwargs["endpoint_url"])
        self.assertEqual("eu-west-1", kwargs["region_name"])
        self.assertEqual("ak", kwargs["aws_access_key_id"])
        self.assertEqual("sk", kwargs["aws_secret_access_key"])
        config = kwargs["config"]
        self.assertEqual(2.0, config.connect_timeout)
        self.assertEqual(3.0, config.read_timeout)
        self.assertEqual(16, config.max_pool_connections)
        self.assertEqual(1, config.retries["total_max_attempts"])

    def test_blank_credentials_fall_back_to_default_chain(self):
        calls = []

        def factory(service, **kwargs):
            calls.append(kwargs)
            return FakeS3Client()

        profile = ConnectionProfile(name="p", endpoint_url="", access_key="", secret_key="")

        create_s3_client(profile, UfsSettings(), client_factory=factory)

        self.assertIsNone(calls[0]["endpoint_url"])
        self.assertIsNone(calls[0]["aws_access_key_id"])
        self.assertIsNone(calls[0]["aws_secret_access_key"])


if __name__ == "__main__":
    unittest.main()
