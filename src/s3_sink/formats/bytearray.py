"""Raw bytes format: values written verbatim, separated by a delimiter."""

from __future__ import annotations

from s3_sink.config.models import FormatConfig
from s3_sink.errors import DataError
from s3_sink.formats.base import StreamRecordWriter
from s3_sink.formats.schema import SchemaCache
from s3_sink.sink.record import SinkRecord
from s3_sink.storage.s3 import S3Storage


class ByteArrayRecordWriter(StreamRecordWriter):
    def __init__(
        self, storage: S3Storage, key: str, *, line_separator: bytes, gzip: bool
    ) -> None:
        super().__init__(storage, key, gzip=gzip)
        self._line_separator = line_separator

    def _encode(self, record: SinkRecord) -> bytes:
        if not isinstance(record.value, (bytes, bytearray)):
            msg = (
                f"bytearray format expects bytes values, got "
                f"{type(record.value).__name__} at "
                f"{record.topic}-{record.partition}@{record.offset}"
            )
            raise DataError(msg)
        return bytes(record.value) + self._line_separator


class ByteArrayFormat:
    """Writes raw byte values, e.g. records consumed with the bytes converter."""

    def __init__(
        self, storage: S3Storage, schema_cache: SchemaCache, config: FormatConfig
    ) -> None:
        self._storage = storage
        self._gzip = config.compression == "gzip"
        self._line_separator = config.line_separator.encode("utf-8")

    @property
    def extension(self) -> str:
        return ".bin.gz" if self._gzip else ".bin"

    @property
    def record_writer_provider(self) -> ByteArrayFormat:
        return self

    def get_record_writer(self, key: str) -> ByteArrayRecordWriter:
        return ByteArrayRecordWriter(
            self._storage, key, line_separator=self._line_separator, gzip=self._gzip
        )
