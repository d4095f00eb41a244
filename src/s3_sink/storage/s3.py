"""S3 storage adapter.

A deliberately narrow storage surface: S3 objects can only be replaced whole,
so anything that implies appending, partial updates or create-if-absent
raises ``UnsupportedOperationError`` instead of being emulated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NoReturn

import structlog
from botocore.exceptions import ClientError

from s3_sink.config.models import S3Config
from s3_sink.errors import UnsupportedOperationError
from s3_sink.storage.client import (
    create_s3_client,
    is_not_found,
    translate_client_errors,
)
from s3_sink.storage.output_stream import S3OutputStream

logger = structlog.get_logger()


@dataclass(slots=True)
class ObjectSummary:
    key: str
    size: int
    etag: str | None = None
    last_modified: Any = None


@dataclass(slots=True)
class ObjectListing:
    """One page of a prefix listing.

    Check ``is_truncated`` before assuming the listing is complete.
    """

    prefix: str
    objects: list[ObjectSummary] = field(default_factory=list)
    is_truncated: bool = False
    next_continuation_token: str | None = None

    @property
    def keys(self) -> list[str]:
        return [o.key for o in self.objects]


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


class S3Storage:
    """Storage capability surface over one S3 bucket."""

    def __init__(self, config: S3Config, *, client: Any = None) -> None:
        self._config = config
        self._bucket = config.bucket
        self._client = client if client is not None else create_s3_client(config)
        self._closed = False

    @property
    def conf(self) -> S3Config:
        return self._config

    @property
    def url(self) -> str:
        return self._config.url

    @property
    def bucket(self) -> str:
        return self._bucket

    def exists(self, name: str) -> bool:
        """Return True if object *name* exists. Blank names never hit S3."""
        if _is_blank(name):
            return False
        with translate_client_errors("head_object", key=name):
            try:
                self._client.head_object(Bucket=self._bucket, Key=name)
            except ClientError as exc:
                if is_not_found(exc):
                    return False
                raise
        return True

    def bucket_exists(self) -> bool:
        """Return True if the configured bucket exists and is reachable."""
        if _is_blank(self._bucket):
            return False
        with translate_client_errors("head_bucket", bucket=self._bucket):
            try:
                self._client.head_bucket(Bucket=self._bucket)
            except ClientError as exc:
                if is_not_found(exc):
                    return False
                raise
        return True

    def list(self, path: str, continuation_token: str | None = None) -> ObjectListing:
        """Return one page of objects under *path*."""
        kwargs: dict[str, Any] = {"Bucket": self._bucket, "Prefix": path}
        if continuation_token is not None:
            kwargs["ContinuationToken"] = continuation_token
        with translate_client_errors("list_objects_v2", prefix=path):
            resp = self._client.list_objects_v2(**kwargs)
        return ObjectListing(
            prefix=path,
            objects=[
                ObjectSummary(
                    key=item["Key"],
                    size=item.get("Size", 0),
                    etag=item.get("ETag"),
                    last_modified=item.get("LastModified"),
                )
                for item in resp.get("Contents", []) or []
            ],
            is_truncated=bool(resp.get("IsTruncated", False)),
            next_continuation_token=resp.get("NextContinuationToken"),
        )

    def delete(self, name: str) -> None:
        """Delete object *name*. Deleting the bucket itself is a no-op."""
        if name == self._bucket:
            logger.info("s3_storage.delete_bucket_skipped", bucket=self._bucket)
            return
        with translate_client_errors("delete_object", key=name):
            self._client.delete_object(Bucket=self._bucket, Key=name)

    def create(self, path: str, overwrite: bool = True) -> S3OutputStream:
        """Open a streamed writer that replaces *path* on commit."""
        if not overwrite:
            msg = "Creating an object without overwriting is not supported by S3 storage"
            raise UnsupportedOperationError(msg)
        if _is_blank(path):
            msg = "Path can not be empty"
            raise ValueError(msg)
        return S3OutputStream(path, self._config, self._client)

    def open(self, path: str) -> NoReturn:
        msg = "Reading objects is not supported by S3 storage"
        raise UnsupportedOperationError(msg)

    def append(self, path: str) -> NoReturn:
        msg = "Appending to objects is not supported by S3 storage"
        raise UnsupportedOperationError(msg)

    def close(self) -> None:
        """Release the underlying client. Idempotent."""
        if self._closed:
            return
        self._closed = True
        close = getattr(self._client, "close", None)
        if close is not None:
            close()
        logger.debug("s3_storage.closed", bucket=self._bucket)
