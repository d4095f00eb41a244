"""Pydantic configuration models for the S3 sink."""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Any, Literal, Self
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

# S3 rejects multipart parts (other than the last) below 5 MiB.
MIN_PART_SIZE = 5 * 1024 * 1024


class FormatType(StrEnum):
    """Supported output formats."""

    JSON = "json"
    BYTEARRAY = "bytearray"
    AVRO = "avro"
    PARQUET = "parquet"


class PartitionerType(StrEnum):
    """Supported partitioning strategies."""

    DEFAULT = "default"
    FIELD = "field"
    TIME_BASED = "time_based"
    HOURLY = "hourly"
    DAILY = "daily"


class TimestampExtractorType(StrEnum):
    """Where a time-based partitioner reads a record's time from."""

    RECORD = "record"
    WALLCLOCK = "wallclock"
    RECORD_FIELD = "record_field"


class RetryConfig(BaseModel):
    """Retry / backoff configuration."""

    max_attempts: int = Field(default=3, ge=1)
    initial_wait_seconds: float = Field(default=0.2, gt=0)
    max_wait_seconds: float = Field(default=10.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True


class S3Config(BaseModel, frozen=True):
    """Target bucket and S3 client settings. Resolved once at task start."""

    bucket: str
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: SecretStr | None = None
    part_size: int = Field(default=25 * 1024 * 1024, ge=MIN_PART_SIZE, le=2**31 - 1)
    sse_algorithm: Literal["AES256", "aws:kms"] | None = None
    sse_kms_key_id: str | None = None
    acl: str | None = None
    max_pool_connections: int = Field(default=10, ge=1)
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    read_timeout_seconds: float = Field(default=60.0, gt=0)
    part_retry: RetryConfig = RetryConfig()

    @model_validator(mode="after")
    def check_credentials_and_encryption(self) -> Self:
        """Credentials come in pairs; a KMS key only makes sense with aws:kms."""
        if (self.access_key_id is None) != (self.secret_access_key is None):
            msg = "access_key_id and secret_access_key must be set together"
            raise ValueError(msg)
        if self.sse_kms_key_id is not None and self.sse_algorithm != "aws:kms":
            msg = "sse_kms_key_id requires sse_algorithm 'aws:kms'"
            raise ValueError(msg)
        return self

    @property
    def url(self) -> str:
        return f"s3://{self.bucket}"


class FormatConfig(BaseModel):
    """Serialisation format of the objects written to S3."""

    format_type: FormatType = FormatType.JSON
    compression: Literal["none", "gzip"] = "none"
    avro_codec: Literal["null", "deflate"] = "null"
    parquet_codec: Literal["none", "snappy", "gzip", "zstd"] = "snappy"
    line_separator: str = "\n"
    schema_cache_size: int = Field(default=1000, ge=1)

    @model_validator(mode="after")
    def check_compression_applies(self) -> Self:
        if self.compression != "none" and self.format_type not in (
            FormatType.JSON,
            FormatType.BYTEARRAY,
        ):
            msg = (
                f"compression '{self.compression}' only applies to json and "
                f"bytearray formats, not '{self.format_type.value}'"
            )
            raise ValueError(msg)
        return self


class PartitionerConfig(BaseModel):
    """How records map to directories under ``topics_dir``.

    - default:    ``partition=<n>``
    - field:      ``<field>=<value>`` for each of ``field_names``
    - time_based: ``path_format`` (strftime) applied to the record time,
                  floored to ``partition_duration_ms``
    - hourly / daily: time_based with preset duration and format
    """

    partitioner_type: PartitionerType = PartitionerType.DEFAULT
    field_names: list[str] = Field(default_factory=list)
    path_format: str = ""
    partition_duration_ms: int = -1
    timezone: str = "UTC"
    timestamp_extractor: TimestampExtractorType = TimestampExtractorType.RECORD
    timestamp_field: str = "timestamp"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            msg = f"Unknown timezone '{v}'"
            raise ValueError(msg) from None
        return v

    @model_validator(mode="after")
    def check_type_requirements(self) -> Self:
        """Ensure the fields the selected partitioner needs are present."""
        if self.partitioner_type == PartitionerType.FIELD and not self.field_names:
            msg = "field_names is required when partitioner_type is 'field'"
            raise ValueError(msg)
        if self.partitioner_type == PartitionerType.TIME_BASED:
            if not self.path_format:
                msg = "path_format is required when partitioner_type is 'time_based'"
                raise ValueError(msg)
            if self.partition_duration_ms <= 0:
                msg = (
                    "partition_duration_ms must be positive when "
                    "partitioner_type is 'time_based'"
                )
                raise ValueError(msg)
        return self


class RotationConfig(BaseModel):
    """When a partition writer commits its buffer as an object.

    A value <= 0 disables the corresponding time-based trigger.
    """

    flush_size: int = Field(default=1000, ge=1)
    rotate_interval_ms: int = -1
    rotate_schedule_interval_ms: int = -1


class KafkaConfig(BaseModel):
    """Kafka consumer settings for the bundled host runner."""

    bootstrap_servers: str = "localhost:9092"
    group_id: str = "s3-sink"
    auto_offset_reset: str = "earliest"
    session_timeout_ms: int = Field(default=45000, ge=1000)
    max_poll_interval_ms: int = Field(default=300000, ge=1000)
    fetch_min_bytes: int = Field(default=1, ge=1)
    fetch_max_wait_ms: int = Field(default=500, ge=0)
    poll_batch_size: int = Field(default=500, ge=1)
    poll_timeout_seconds: float = Field(default=1.0, gt=0)
    key_converter: Literal["bytes", "string", "json"] = "string"
    value_converter: Literal["bytes", "string", "json"] = "json"
    # Auth / security
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str | None = None
    sasl_username: str | None = None
    sasl_password: SecretStr | None = None

    @model_validator(mode="after")
    def check_auth_requirements(self) -> Self:
        """Validate that SASL credentials accompany a SASL mechanism."""
        if self.sasl_mechanism and (not self.sasl_username or not self.sasl_password):
            msg = (
                "sasl_username and sasl_password are required "
                f"when sasl_mechanism is '{self.sasl_mechanism}'"
            )
            raise ValueError(msg)
        return self


_TOPIC_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")


class SinkTaskConfig(BaseModel, extra="forbid"):
    """Top-level configuration for one S3 sink task."""

    name: str = "s3-sink"
    topics: list[str] = Field(default_factory=list)
    topics_dir: str = "topics"
    directory_delim: str = Field(default="/", min_length=1)
    file_delim: str = Field(default="+", min_length=1)
    flush_concurrency: int = Field(default=1, ge=1)
    s3: S3Config
    format: FormatConfig = FormatConfig()
    partitioner: PartitionerConfig = PartitionerConfig()
    rotation: RotationConfig = RotationConfig()
    kafka: KafkaConfig = KafkaConfig()

    @field_validator("topics")
    @classmethod
    def validate_topic_names(cls, v: list[str]) -> list[str]:
        for topic in v:
            if not _TOPIC_PATTERN.match(topic):
                msg = f"Invalid topic name '{topic}'"
                raise ValueError(msg)
        return v

    @field_validator("topics_dir")
    @classmethod
    def strip_topics_dir(cls, v: str) -> str:
        return v.strip("/")

    def plain_values(self) -> dict[str, Any]:
        """Flatten to ``{"partitioner.path_format": ..., "topics_dir": ...}``.

        Secrets are left as ``SecretStr`` so they never leak into logs.
        """
        flat: dict[str, Any] = {}

        def _walk(prefix: str, data: dict[str, Any]) -> None:
            for key, value in data.items():
                dotted = f"{prefix}{key}"
                if isinstance(value, dict):
                    _walk(f"{dotted}.", value)
                else:
                    flat[dotted] = value

        _walk("", self.model_dump())
        return flat
