"""Format factory — maps FormatType to concrete format classes."""

from __future__ import annotations

from s3_sink.config.models import FormatConfig, FormatType
from s3_sink.errors import ConfigError
from s3_sink.formats.avro import AvroFormat
from s3_sink.formats.base import RecordWriterProvider
from s3_sink.formats.bytearray import ByteArrayFormat
from s3_sink.formats.jsonl import JsonFormat
from s3_sink.formats.parquet import ParquetFormat
from s3_sink.formats.schema import SchemaCache
from s3_sink.storage.s3 import S3Storage

_FORMAT_REGISTRY: dict[FormatType, type] = {
    FormatType.JSON: JsonFormat,
    FormatType.BYTEARRAY: ByteArrayFormat,
    FormatType.AVRO: AvroFormat,
    FormatType.PARQUET: ParquetFormat,
}


def create_writer_provider(
    config: FormatConfig,
    storage: S3Storage,
    schema_cache: SchemaCache,
) -> RecordWriterProvider:
    """Build the configured format and return its record writer provider.

    Adding a new format = one class + one dict entry in ``_FORMAT_REGISTRY``.
    """
    cls = _FORMAT_REGISTRY.get(config.format_type)
    if cls is None:
        msg = f"Unknown format type: {config.format_type}"
        raise ConfigError(msg)
    return cls(storage, schema_cache, config).record_writer_provider  # type: ignore[no-any-return]
