"""boto3 client construction and botocore error translation."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from s3_sink.config.models import S3Config
from s3_sink.errors import StorageError

CLIENT_ERRORS = (ClientError, BotoCoreError)

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NoSuchBucket", "NotFound"})


def create_s3_client(config: S3Config) -> Any:
    """Build a thread-safe boto3 S3 client from the storage config."""
    session = boto3.session.Session()
    secret = (
        config.secret_access_key.get_secret_value()
        if config.secret_access_key is not None
        else None
    )
    return session.client(
        "s3",
        region_name=config.region,
        endpoint_url=config.endpoint_url,
        aws_access_key_id=config.access_key_id,
        aws_secret_access_key=secret,
        config=Config(
            max_pool_connections=config.max_pool_connections,
            connect_timeout=config.connect_timeout_seconds,
            read_timeout=config.read_timeout_seconds,
            retries={"mode": "standard"},
        ),
    )


def is_not_found(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES


@contextmanager
def translate_client_errors(operation: str, **context: Any) -> Iterator[None]:
    """Re-raise botocore failures as ``StorageError``."""
    try:
        yield
    except CLIENT_ERRORS as exc:
        detail = ", ".join(f"{k}={v}" for k, v in context.items())
        msg = f"S3 {operation} failed ({detail}): {exc}"
        raise StorageError(msg) from exc
