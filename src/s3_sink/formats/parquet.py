"""Parquet format via pyarrow. Rows are buffered and written as one table."""

from __future__ import annotations

from typing import Any

import pyarrow as pa
import pyarrow.parquet as pq

from s3_sink.config.models import FormatConfig
from s3_sink.errors import DataError
from s3_sink.formats.schema import SchemaCache
from s3_sink.sink.record import SinkRecord
from s3_sink.storage.output_stream import S3OutputStream
from s3_sink.storage.s3 import S3Storage


class ParquetRecordWriter:
    def __init__(self, storage: S3Storage, key: str, codec: str) -> None:
        self._stream: S3OutputStream = storage.create(key, overwrite=True)
        self._codec = codec
        self._rows: list[dict[str, Any]] = []

    def write(self, record: SinkRecord) -> None:
        if not isinstance(record.value, dict):
            msg = (
                f"parquet format expects dict values, got "
                f"{type(record.value).__name__} at "
                f"{record.topic}-{record.partition}@{record.offset}"
            )
            raise DataError(msg)
        self._rows.append(record.value)

    def commit(self) -> None:
        try:
            table = pa.Table.from_pylist(self._rows)
            sink = pa.BufferOutputStream()
            pq.write_table(table, sink, compression=self._codec)
        except (pa.ArrowInvalid, pa.ArrowTypeError) as exc:
            self._stream.abort()
            msg = f"Cannot build a Parquet table for '{self._stream.key}': {exc}"
            raise DataError(msg) from exc
        self._rows.clear()
        self._stream.write(sink.getvalue().to_pybytes())
        self._stream.commit()

    def abort(self) -> None:
        self._rows.clear()
        self._stream.abort()


class ParquetFormat:
    def __init__(
        self, storage: S3Storage, schema_cache: SchemaCache, config: FormatConfig
    ) -> None:
        self._storage = storage
        self._codec = config.parquet_codec

    @property
    def extension(self) -> str:
        return ".parquet"

    @property
    def record_writer_provider(self) -> ParquetFormat:
        return self

    def get_record_writer(self, key: str) -> ParquetRecordWriter:
        return ParquetRecordWriter(self._storage, key, self._codec)
