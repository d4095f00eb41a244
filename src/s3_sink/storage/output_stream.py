"""Write-once streamed S3 object.

Bytes written to an ``S3OutputStream`` are invisible until ``commit()``.
Small objects go up with a single ``put_object``; larger ones use a multipart
upload that is only completed on commit. Both become visible atomically, and a
failure before commit leaves the key untouched.
"""

from __future__ import annotations

from types import TracebackType
from typing import Any

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from s3_sink.config.models import S3Config
from s3_sink.storage.client import CLIENT_ERRORS, translate_client_errors

logger = structlog.get_logger()


class S3OutputStream:
    """Sequential writer for one S3 object, committed exactly once."""

    def __init__(self, key: str, config: S3Config, client: Any) -> None:
        self._key = key
        self._config = config
        self._client = client
        self._bucket = config.bucket
        self._part_size = config.part_size
        self._buffer = bytearray()
        self._position = 0
        self._upload_id: str | None = None
        self._parts: list[dict[str, Any]] = []
        self._closed = False
        self._committed = False

    @property
    def key(self) -> str:
        return self._key

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def committed(self) -> bool:
        return self._committed

    def writable(self) -> bool:
        return not self._closed

    def readable(self) -> bool:
        return False

    def seekable(self) -> bool:
        return False

    def tell(self) -> int:
        return self._position

    def flush(self) -> None:
        """No-op: data is only durable after ``commit()``."""

    def write(self, data: bytes | bytearray | memoryview) -> int:
        if self._closed:
            msg = f"Stream for '{self._key}' is already closed"
            raise ValueError(msg)
        self._buffer.extend(data)
        size = len(data)
        self._position += size
        while len(self._buffer) >= self._part_size:
            chunk = bytes(self._buffer[: self._part_size])
            del self._buffer[: self._part_size]
            self._upload_part(chunk)
        return size

    def commit(self) -> None:
        """Make the object visible. Any failure aborts and raises StorageError."""
        if self._closed:
            msg = f"Stream for '{self._key}' is already closed"
            raise ValueError(msg)
        try:
            if self._upload_id is None:
                with translate_client_errors("put_object", key=self._key):
                    self._client.put_object(
                        Bucket=self._bucket,
                        Key=self._key,
                        Body=bytes(self._buffer),
                        **self._extra_args(),
                    )
            else:
                if self._buffer:
                    self._upload_part(bytes(self._buffer))
                with translate_client_errors(
                    "complete_multipart_upload", key=self._key
                ):
                    self._client.complete_multipart_upload(
                        Bucket=self._bucket,
                        Key=self._key,
                        UploadId=self._upload_id,
                        MultipartUpload={"Parts": self._parts},
                    )
        except BaseException:
            self._abort_upload()
            raise
        finally:
            self._buffer.clear()
            self._closed = True
        self._committed = True
        logger.debug(
            "s3_output_stream.committed",
            key=self._key,
            size=self._position,
            parts=len(self._parts),
        )

    def abort(self) -> None:
        """Discard everything written so far. Idempotent."""
        if self._closed:
            return
        self._buffer.clear()
        self._closed = True
        self._abort_upload()

    def close(self) -> None:
        if not self._closed:
            self.commit()

    def __enter__(self) -> S3OutputStream:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def _extra_args(self) -> dict[str, str]:
        args: dict[str, str] = {}
        if self._config.sse_algorithm is not None:
            args["ServerSideEncryption"] = self._config.sse_algorithm
        if self._config.sse_kms_key_id is not None:
            args["SSEKMSKeyId"] = self._config.sse_kms_key_id
        if self._config.acl is not None:
            args["ACL"] = self._config.acl
        return args

    def _upload_part(self, chunk: bytes) -> None:
        try:
            self._send_part(chunk)
        except BaseException:
            # A stream that lost a part must never commit.
            self._closed = True
            self._buffer.clear()
            self._abort_upload()
            raise

    def _send_part(self, chunk: bytes) -> None:
        if self._upload_id is None:
            with translate_client_errors("create_multipart_upload", key=self._key):
                resp = self._client.create_multipart_upload(
                    Bucket=self._bucket, Key=self._key, **self._extra_args()
                )
            self._upload_id = resp["UploadId"]

        part_number = len(self._parts) + 1
        retry_cfg = self._config.part_retry

        @retry(
            stop=stop_after_attempt(retry_cfg.max_attempts),
            wait=wait_exponential_jitter(
                initial=retry_cfg.initial_wait_seconds,
                max=retry_cfg.max_wait_seconds,
                exp_base=retry_cfg.multiplier,
                jitter=retry_cfg.initial_wait_seconds if retry_cfg.jitter else 0,
            ),
            retry=retry_if_exception_type(CLIENT_ERRORS),
            reraise=True,
        )
        def _send() -> dict[str, Any]:
            return self._client.upload_part(  # type: ignore[no-any-return]
                Bucket=self._bucket,
                Key=self._key,
                UploadId=self._upload_id,
                PartNumber=part_number,
                Body=chunk,
            )

        with translate_client_errors("upload_part", key=self._key, part=part_number):
            resp = _send()
        self._parts.append({"ETag": resp["ETag"], "PartNumber": part_number})

    def _abort_upload(self) -> None:
        if self._upload_id is None:
            return
        upload_id, self._upload_id = self._upload_id, None
        try:
            self._client.abort_multipart_upload(
                Bucket=self._bucket, Key=self._key, UploadId=upload_id
            )
        except CLIENT_ERRORS as exc:
            logger.warning(
                "s3_output_stream.abort_failed",
                key=self._key,
                upload_id=upload_id,
                error=str(exc),
            )
