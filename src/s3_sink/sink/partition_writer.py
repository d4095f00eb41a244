"""Per-partition buffering and rotation.

Records are buffered in memory and only serialised when the rotation policy
fires, so every object is written in one go and committed atomically:

1. flush size: every full ``flush_size`` run of records becomes a commit;
2. record-time interval: the buffered records span ``rotate_interval_ms``;
3. scheduled interval: the wall clock crossed a ``rotate_schedule_interval_ms``
   boundary (aligned in the partitioner timezone).

Records leave the buffer only once all of their objects are committed. A
failed commit is retried on the next ``write()`` and rewrites the same keys.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from itertools import islice
from zoneinfo import ZoneInfo

import structlog

from s3_sink.config.models import SinkTaskConfig
from s3_sink.errors import SchemaChangedError
from s3_sink.formats.base import RecordWriterProvider
from s3_sink.partitioner.base import Partitioner
from s3_sink.partitioner.time_based import floor_to_duration
from s3_sink.sink.record import SinkRecord, TopicPartition

logger = structlog.get_logger()


class TopicPartitionWriter:
    """Buffers and writes the records of exactly one topic partition."""

    def __init__(
        self,
        tp: TopicPartition,
        writer_provider: RecordWriterProvider,
        partitioner: Partitioner,
        config: SinkTaskConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._tp = tp
        self._provider = writer_provider
        self._partitioner = partitioner
        self._clock = clock
        self._buffer: deque[SinkRecord] = deque()

        self._flush_size = config.rotation.flush_size
        self._rotate_interval_ms = config.rotation.rotate_interval_ms
        self._schedule_interval_ms = config.rotation.rotate_schedule_interval_ms
        self._tz = ZoneInfo(config.partitioner.timezone)
        self._next_scheduled_rotation: int | None = None

        self._topics_dir = config.topics_dir
        self._dir_delim = config.directory_delim
        self._file_delim = config.file_delim
        self._extension = writer_provider.extension

        self._committed_offset: int | None = None
        self._closed = False

    @property
    def topic_partition(self) -> TopicPartition:
        return self._tp

    @property
    def buffered(self) -> list[SinkRecord]:
        return list(self._buffer)

    @property
    def committed_offset(self) -> int | None:
        """Highest offset durably written to S3, or None."""
        return self._committed_offset

    @property
    def closed(self) -> bool:
        return self._closed

    def buffer(self, record: SinkRecord) -> None:
        if self._closed:
            msg = f"Writer for {self._tp} is closed"
            raise RuntimeError(msg)
        self._buffer.append(record)

    def write(self) -> None:
        """Evaluate the rotation policy and commit whatever it selects."""
        if self._closed:
            return
        now_ms = self._now_ms()
        while len(self._buffer) >= self._flush_size:
            self._commit(self._flush_size, reason="flush_size")
        if self._buffer:
            if self._interval_elapsed():
                self._commit(len(self._buffer), reason="rotate_interval")
            elif self._schedule_due(now_ms):
                self._commit(len(self._buffer), reason="rotate_schedule")
        self._advance_schedule(now_ms)

    def close(self) -> None:
        """Commit everything still buffered and release the writer."""
        if self._closed:
            return
        try:
            if self._buffer:
                self._commit(len(self._buffer), reason="close")
        finally:
            self._buffer.clear()
            self._closed = True

    def object_key(self, encoded_partition: str, start_offset: int) -> str:
        directory = self._partitioner.generate_partitioned_path(
            self._tp.topic, encoded_partition
        )
        name = (
            f"{self._tp.topic}{self._file_delim}{self._tp.partition}"
            f"{self._file_delim}{start_offset:010d}{self._extension}"
        )
        return self._dir_delim.join(p for p in (self._topics_dir, directory, name) if p)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _interval_elapsed(self) -> bool:
        if self._rotate_interval_ms <= 0:
            return False
        timestamps = [r.timestamp for r in self._buffer if r.timestamp is not None]
        if not timestamps:
            return False
        return max(timestamps) - min(timestamps) >= self._rotate_interval_ms

    def _schedule_due(self, now_ms: int) -> bool:
        return (
            self._schedule_interval_ms > 0
            and self._next_scheduled_rotation is not None
            and now_ms >= self._next_scheduled_rotation
        )

    def _advance_schedule(self, now_ms: int) -> None:
        if self._schedule_interval_ms <= 0:
            return
        if self._next_scheduled_rotation is None or now_ms >= self._next_scheduled_rotation:
            self._next_scheduled_rotation = (
                floor_to_duration(now_ms, self._schedule_interval_ms, self._tz)
                + self._schedule_interval_ms
            )

    def _commit(self, count: int, *, reason: str) -> None:
        chunk = list(islice(self._buffer, count))
        groups: dict[str, list[SinkRecord]] = {}
        for record in chunk:
            encoded = self._partitioner.encode_partition(record)
            groups.setdefault(encoded, []).append(record)

        t0 = time.monotonic()
        objects = 0
        for encoded, records in groups.items():
            objects += self._write_group(encoded, records)

        for _ in range(count):
            self._buffer.popleft()
        last_offset = max(r.offset for r in chunk)
        if self._committed_offset is None or last_offset > self._committed_offset:
            self._committed_offset = last_offset
        logger.info(
            "partition_writer.committed",
            topic=self._tp.topic,
            partition=self._tp.partition,
            reason=reason,
            records=count,
            objects=objects,
            committed_offset=self._committed_offset,
            latency_ms=round((time.monotonic() - t0) * 1000, 2),
        )

    def _write_group(self, encoded: str, records: list[SinkRecord]) -> int:
        """Write one encoded partition's records; returns the number of objects.

        A schema change starts a new object named from the first record that
        carries the new schema, so a rewrite after failure yields the same keys.
        """
        objects = 0
        start = records[0].offset
        writer = self._provider.get_record_writer(self.object_key(encoded, start))
        try:
            for record in records:
                try:
                    writer.write(record)
                except SchemaChangedError:
                    writer.commit()
                    self._log_object(encoded, start)
                    objects += 1
                    start = record.offset
                    writer = self._provider.get_record_writer(
                        self.object_key(encoded, start)
                    )
                    writer.write(record)
            writer.commit()
        except BaseException:
            writer.abort()
            raise
        self._log_object(encoded, start)
        return objects + 1

    def _log_object(self, encoded: str, start: int) -> None:
        logger.debug(
            "partition_writer.object_committed",
            topic=self._tp.topic,
            partition=self._tp.partition,
            key=self.object_key(encoded, start),
            start_offset=start,
        )
