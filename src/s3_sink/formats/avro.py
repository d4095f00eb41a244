"""Avro object container format via fastavro."""

from __future__ import annotations

from typing import Any

from fastavro.write import Writer

from s3_sink.config.models import FormatConfig
from s3_sink.errors import DataError, SchemaChangedError
from s3_sink.formats.schema import SchemaCache
from s3_sink.sink.record import SinkRecord
from s3_sink.storage.output_stream import S3OutputStream
from s3_sink.storage.s3 import S3Storage


class AvroRecordWriter:
    """One Avro container file; the first record fixes the file schema."""

    def __init__(
        self, storage: S3Storage, key: str, schema_cache: SchemaCache, codec: str
    ) -> None:
        self._stream: S3OutputStream = storage.create(key, overwrite=True)
        self._schema_cache = schema_cache
        self._codec = codec
        self._schema_key: str | None = None
        self._writer: Writer | None = None

    def write(self, record: SinkRecord) -> None:
        schema = self._schema_cache.schema_for(record)
        schema_key = self._schema_cache.schema_key(schema)
        if self._writer is None:
            parsed: Any = self._schema_cache.parsed(schema)
            self._writer = Writer(self._stream, parsed, codec=self._codec)
            self._schema_key = schema_key
        elif schema_key != self._schema_key:
            msg = (
                f"Schema changed within one Avro file at "
                f"{record.topic}-{record.partition}@{record.offset}"
            )
            raise SchemaChangedError(msg)
        try:
            self._writer.write(record.value)
        except (TypeError, ValueError, KeyError, AttributeError) as exc:
            msg = (
                f"Record {record.topic}-{record.partition}@{record.offset} "
                f"does not match its Avro schema: {exc}"
            )
            raise DataError(msg) from exc

    def commit(self) -> None:
        if self._writer is not None:
            self._writer.flush()
        self._stream.commit()

    def abort(self) -> None:
        self._stream.abort()


class AvroFormat:
    """Writes Avro container files; schemas come from records or are inferred."""

    def __init__(
        self, storage: S3Storage, schema_cache: SchemaCache, config: FormatConfig
    ) -> None:
        self._storage = storage
        self._schema_cache = schema_cache
        self._codec = config.avro_codec

    @property
    def extension(self) -> str:
        return ".avro"

    @property
    def record_writer_provider(self) -> AvroFormat:
        return self

    def get_record_writer(self, key: str) -> AvroRecordWriter:
        return AvroRecordWriter(self._storage, key, self._schema_cache, self._codec)
