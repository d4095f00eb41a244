"""Record writer protocols shared by every output format.

A format turns a run of records into the bytes of one S3 object. Each format
plugs in by implementing ``RecordWriterProvider`` and registering itself in
``s3_sink.formats.factory``.
"""

from __future__ import annotations

import zlib
from typing import Protocol, runtime_checkable

from s3_sink.sink.record import SinkRecord
from s3_sink.storage.output_stream import S3OutputStream
from s3_sink.storage.s3 import S3Storage


@runtime_checkable
class RecordWriter(Protocol):
    """Serialises records into one object; nothing is visible before commit."""

    def write(self, record: SinkRecord) -> None:
        """Append one record to the pending object."""
        ...

    def commit(self) -> None:
        """Finish the object and make it visible."""
        ...

    def abort(self) -> None:
        """Discard the pending object."""
        ...


@runtime_checkable
class RecordWriterProvider(Protocol):
    """Opens record writers keyed by output path."""

    @property
    def extension(self) -> str:
        """File extension, including the leading dot."""
        ...

    def get_record_writer(self, key: str) -> RecordWriter:
        """Return a writer that will replace the object at *key*."""
        ...


class StreamRecordWriter:
    """Base for formats that encode each record straight into the stream."""

    def __init__(self, storage: S3Storage, key: str, *, gzip: bool = False) -> None:
        self._stream: S3OutputStream = storage.create(key, overwrite=True)
        self._compressor = (
            zlib.compressobj(wbits=16 + zlib.MAX_WBITS) if gzip else None
        )

    @property
    def key(self) -> str:
        return self._stream.key

    def _encode(self, record: SinkRecord) -> bytes:
        raise NotImplementedError

    def _emit(self, data: bytes) -> None:
        if self._compressor is not None:
            data = self._compressor.compress(data)
        if data:
            self._stream.write(data)

    def write(self, record: SinkRecord) -> None:
        self._emit(self._encode(record))

    def commit(self) -> None:
        if self._compressor is not None:
            self._stream.write(self._compressor.flush())
        self._stream.commit()

    def abort(self) -> None:
        self._stream.abort()
