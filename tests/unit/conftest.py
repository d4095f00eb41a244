"""Shared fixtures: an in-memory S3 client and sink config builders."""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from typing import Any

import pytest
from botocore.exceptions import ClientError

from s3_sink.config.loader import build_sink_config
from s3_sink.config.models import MIN_PART_SIZE, RetryConfig, S3Config, SinkTaskConfig
from s3_sink.sink.record import SinkRecord
from s3_sink.storage.s3 import S3Storage

BUCKET = "test-bucket"


def _client_error(code: str, operation: str, status: int = 400) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeS3Client:
    """Just enough of the boto3 S3 client for one bucket, kept in memory."""

    def __init__(self, buckets: tuple[str, ...] = (BUCKET,), page_size: int = 1000):
        self.buckets = set(buckets)
        self.page_size = page_size
        self.objects: dict[str, bytes] = {}
        self.put_args: dict[str, dict[str, Any]] = {}
        self.uploads: dict[str, dict[str, Any]] = {}
        self.aborted: list[str] = []
        self.calls: Counter[str] = Counter()
        self._failures: Counter[str] = Counter()
        self._next_upload = 0

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Make the next *times* calls to *operation* raise a 500 ClientError."""
        self._failures[operation] += times

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if self._failures[operation] > 0:
            self._failures[operation] -= 1
            raise _client_error("InternalError", operation, status=500)

    def head_bucket(self, *, Bucket: str) -> dict[str, Any]:
        self._enter("head_bucket")
        if Bucket not in self.buckets:
            raise _client_error("404", "HeadBucket", status=404)
        return {}

    def head_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self._enter("head_object")
        if Key not in self.objects:
            raise _client_error("404", "HeadObject", status=404)
        return {"ContentLength": len(self.objects[Key])}

    def list_objects_v2(
        self,
        *,
        Bucket: str,
        Prefix: str = "",
        ContinuationToken: str | None = None,
    ) -> dict[str, Any]:
        self._enter("list_objects_v2")
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        start = int(ContinuationToken) if ContinuationToken else 0
        page = keys[start : start + self.page_size]
        truncated = start + self.page_size < len(keys)
        resp: dict[str, Any] = {
            "IsTruncated": truncated,
            "Contents": [
                {"Key": k, "Size": len(self.objects[k]), "ETag": f'"{k}"'}
                for k in page
            ],
        }
        if truncated:
            resp["NextContinuationToken"] = str(start + self.page_size)
        return resp

    def delete_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self._enter("delete_object")
        self.objects.pop(Key, None)
        return {}

    def put_object(self, *, Bucket: str, Key: str, Body: bytes, **extra: Any) -> dict[str, Any]:
        self._enter("put_object")
        self.objects[Key] = bytes(Body)
        self.put_args[Key] = extra
        return {"ETag": f'"{Key}"'}

    def create_multipart_upload(self, *, Bucket: str, Key: str, **extra: Any) -> dict[str, Any]:
        self._enter("create_multipart_upload")
        self._next_upload += 1
        upload_id = f"upload-{self._next_upload}"
        self.uploads[upload_id] = {"key": Key, "parts": {}, "extra": extra}
        return {"UploadId": upload_id}

    def upload_part(
        self, *, Bucket: str, Key: str, UploadId: str, PartNumber: int, Body: bytes
    ) -> dict[str, Any]:
        self._enter("upload_part")
        self.uploads[UploadId]["parts"][PartNumber] = bytes(Body)
        return {"ETag": f'"{UploadId}-{PartNumber}"'}

    def complete_multipart_upload(
        self, *, Bucket: str, Key: str, UploadId: str, MultipartUpload: dict[str, Any]
    ) -> dict[str, Any]:
        self._enter("complete_multipart_upload")
        upload = self.uploads.pop(UploadId)
        numbers = [p["PartNumber"] for p in MultipartUpload["Parts"]]
        self.objects[Key] = b"".join(upload["parts"][n] for n in numbers)
        self.put_args[Key] = upload["extra"]
        return {}

    def abort_multipart_upload(self, *, Bucket: str, Key: str, UploadId: str) -> dict[str, Any]:
        self._enter("abort_multipart_upload")
        self.uploads.pop(UploadId, None)
        self.aborted.append(UploadId)
        return {}

    def close(self) -> None:
        self.calls["close"] += 1


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def s3_config() -> S3Config:
    return S3Config(
        bucket=BUCKET,
        part_size=MIN_PART_SIZE,
        part_retry=RetryConfig(
            initial_wait_seconds=0.001, max_wait_seconds=0.01, jitter=False
        ),
    )


@pytest.fixture
def storage(s3_config: S3Config, fake_s3: FakeS3Client) -> S3Storage:
    return S3Storage(s3_config, client=fake_s3)


@pytest.fixture
def make_config() -> Callable[..., SinkTaskConfig]:
    """Build a SinkTaskConfig over the built-in defaults."""

    def _make(**overrides: Any) -> SinkTaskConfig:
        data: dict[str, Any] = {
            "topics": ["orders"],
            "s3": {
                "bucket": BUCKET,
                "part_size": MIN_PART_SIZE,
                "part_retry": {"initial_wait_seconds": 0.001, "jitter": False},
            },
        }
        data.update(overrides)
        return build_sink_config(data)

    return _make


@pytest.fixture
def make_record() -> Callable[..., SinkRecord]:
    def _make(
        offset: int,
        *,
        topic: str = "orders",
        partition: int = 0,
        value: Any = None,
        timestamp: int | None = None,
        **kwargs: Any,
    ) -> SinkRecord:
        if value is None:
            value = {"id": offset}
        return SinkRecord(
            topic=topic,
            partition=partition,
            offset=offset,
            value=value,
            timestamp=timestamp,
            **kwargs,
        )

    return _make
