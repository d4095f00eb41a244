"""JSON Lines format: one JSON document per record value."""

from __future__ import annotations

import json
from typing import Any

from s3_sink.config.models import FormatConfig
from s3_sink.errors import DataError
from s3_sink.formats.base import StreamRecordWriter
from s3_sink.formats.schema import SchemaCache
from s3_sink.sink.record import SinkRecord
from s3_sink.storage.s3 import S3Storage


def _default(obj: Any) -> Any:
    if isinstance(obj, (bytes, bytearray)):
        return obj.decode("utf-8", errors="replace")
    return str(obj)


class JsonRecordWriter(StreamRecordWriter):
    def __init__(
        self, storage: S3Storage, key: str, *, line_separator: bytes, gzip: bool
    ) -> None:
        super().__init__(storage, key, gzip=gzip)
        self._line_separator = line_separator

    def _encode(self, record: SinkRecord) -> bytes:
        value = record.value
        if isinstance(value, (bytes, bytearray)):
            value = value.decode("utf-8", errors="replace")
        try:
            line = json.dumps(value, separators=(",", ":"), default=_default)
        except (TypeError, ValueError) as exc:
            msg = f"Cannot encode record {record.topic}-{record.partition}@{record.offset} as JSON: {exc}"
            raise DataError(msg) from exc
        return line.encode("utf-8") + self._line_separator


class JsonFormat:
    """Writes record values as newline-delimited JSON."""

    def __init__(
        self, storage: S3Storage, schema_cache: SchemaCache, config: FormatConfig
    ) -> None:
        self._storage = storage
        self._gzip = config.compression == "gzip"
        self._line_separator = config.line_separator.encode("utf-8")

    @property
    def extension(self) -> str:
        return ".json.gz" if self._gzip else ".json"

    @property
    def record_writer_provider(self) -> JsonFormat:
        return self

    def get_record_writer(self, key: str) -> JsonRecordWriter:
        return JsonRecordWriter(
            self._storage, key, line_separator=self._line_separator, gzip=self._gzip
        )
