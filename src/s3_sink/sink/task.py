"""S3 sink task: owns the partition assignment and one writer per partition.

The host runtime drives the lifecycle: ``start`` → ``open`` → ``put``* →
``close`` → (``open`` → ...) → ``stop``. Calls are never concurrent; within one
``flush_all`` pass the per-partition writers may run on a thread pool. All S3
I/O runs off the event loop, on the flush pool or on the loop's default
executor.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from functools import partial

import structlog

from s3_sink.config.models import SinkTaskConfig
from s3_sink.errors import AssignmentError, ConfigError, RoutingError, StorageError
from s3_sink.formats.base import RecordWriterProvider
from s3_sink.formats.factory import create_writer_provider
from s3_sink.formats.schema import SchemaCache
from s3_sink.partitioner.base import Partitioner
from s3_sink.partitioner.factory import create_partitioner
from s3_sink.sink.partition_writer import TopicPartitionWriter
from s3_sink.sink.record import SinkRecord, TopicPartition
from s3_sink.storage.s3 import S3Storage

logger = structlog.get_logger()


class S3SinkTask:
    """Routes record batches to per-partition writers that persist them to S3."""

    def __init__(
        self,
        *,
        storage: S3Storage | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._config: SinkTaskConfig | None = None
        self._writer_provider: RecordWriterProvider | None = None
        self._partitioner: Partitioner | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._assignment: set[TopicPartition] = set()
        self._writers: dict[TopicPartition, TopicPartitionWriter] = {}
        self._flushed_offsets: dict[TopicPartition, int] = {}

    @property
    def assignment(self) -> frozenset[TopicPartition]:
        return frozenset(self._assignment)

    @property
    def flushed_offsets(self) -> dict[TopicPartition, int]:
        """Max offset durably written per partition."""
        return dict(self._flushed_offsets)

    @property
    def partitioner(self) -> Partitioner | None:
        return self._partitioner

    @property
    def storage(self) -> S3Storage | None:
        return self._storage

    async def start(self, config: SinkTaskConfig) -> None:
        """Validate the bucket and build the format and partitioner."""
        self._config = config
        if self._storage is None:
            self._storage = S3Storage(config.s3)

        loop = asyncio.get_running_loop()
        try:
            exists = await loop.run_in_executor(None, self._storage.bucket_exists)
        except StorageError as exc:
            msg = f"Could not verify S3 bucket '{config.s3.bucket}': {exc}"
            raise ConfigError(msg) from exc
        if not exists:
            msg = f"Non-existent S3 bucket: '{config.s3.bucket}'"
            raise ConfigError(msg)

        schema_cache = SchemaCache(config.format.schema_cache_size)
        self._writer_provider = create_writer_provider(
            config.format, self._storage, schema_cache
        )
        self._partitioner = create_partitioner(config, clock=self._clock)

        if config.flush_concurrency > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=config.flush_concurrency,
                thread_name_prefix=f"{config.name}-flush",
            )

        logger.info(
            "s3_sink_task.started",
            name=config.name,
            bucket=config.s3.bucket,
            format=config.format.format_type.value,
            partitioner=config.partitioner.partitioner_type.value,
            flush_size=config.rotation.flush_size,
        )

    def open(self, partitions: Iterable[TopicPartition | tuple[str, int]]) -> None:
        """Take ownership of *partitions* and create a writer for each."""
        if (
            self._config is None
            or self._writer_provider is None
            or self._partitioner is None
        ):
            msg = "S3SinkTask not started; call start() first"
            raise RuntimeError(msg)

        new = [TopicPartition(*tp) for tp in partitions]
        repeated = sorted(tp for tp, n in Counter(new).items() if n > 1)
        if repeated:
            msg = f"Partitions listed more than once: {[str(tp) for tp in repeated]}"
            raise AssignmentError(msg)
        already = sorted(tp for tp in new if tp in self._assignment)
        if already:
            msg = f"Partitions already assigned: {[str(tp) for tp in already]}"
            raise AssignmentError(msg)

        for tp in new:
            self._writers[tp] = TopicPartitionWriter(
                tp,
                self._writer_provider,
                self._partitioner,
                self._config,
                clock=self._clock,
            )
            self._assignment.add(tp)
            self._flushed_offsets.pop(tp, None)
        logger.info(
            "s3_sink_task.partitions_opened",
            partitions=[str(tp) for tp in sorted(new)],
            assigned=len(self._assignment),
        )

    def route(self, records: Iterable[SinkRecord]) -> None:
        """Append each record to its partition's buffer, in arrival order."""
        for record in records:
            writer = self._writers.get(record.topic_partition)
            if writer is None:
                msg = (
                    f"Record {record.topic}-{record.partition}@{record.offset} "
                    f"for unassigned partition; assigned: "
                    f"{[str(tp) for tp in sorted(self._assignment)]}"
                )
                raise RoutingError(msg)
            writer.buffer(record)

    async def flush_all(self) -> None:
        """Let every assigned writer evaluate its rotation policy."""
        writers = [self._writers[tp] for tp in sorted(self._assignment)]
        loop = asyncio.get_running_loop()
        errors: list[BaseException] = []
        if self._executor is None:
            for writer in writers:
                try:
                    await loop.run_in_executor(None, writer.write)
                except Exception as exc:
                    errors.append(exc)
        else:
            results = await asyncio.gather(
                *[loop.run_in_executor(self._executor, w.write) for w in writers],
                return_exceptions=True,
            )
            errors = [r for r in results if isinstance(r, BaseException)]

        self._collect_offsets(writers)
        if errors:
            for exc in errors:
                logger.error("s3_sink_task.write_error", error=str(exc))
            raise errors[0]

    async def put(self, records: Iterable[SinkRecord]) -> None:
        """Route a batch, then flush it."""
        self.route(records)
        await self.flush_all()

    async def close(
        self, partitions: Iterable[TopicPartition | tuple[str, int]] = ()
    ) -> None:
        """Flush and release every assigned writer, then clear the assignment.

        Revocation always affects the whole current assignment, not only the
        named partitions. A writer that fails to close is logged and dropped.
        """
        revoked = sorted(self._assignment)
        loop = asyncio.get_running_loop()
        for tp in revoked:
            writer = self._writers.pop(tp, None)
            if writer is None:
                continue
            try:
                await loop.run_in_executor(self._executor, writer.close)
            except Exception as exc:
                logger.error(
                    "s3_sink_task.writer_close_error",
                    topic=tp.topic,
                    partition=tp.partition,
                    error=str(exc),
                )
            finally:
                self._collect_offsets([writer])

        self._writers.clear()
        self._assignment.clear()
        logger.info(
            "s3_sink_task.partitions_closed",
            requested=[str(TopicPartition(*tp)) for tp in partitions],
            closed=[str(tp) for tp in revoked],
        )

    async def stop(self) -> None:
        """Release the storage handle. Failure here is fatal."""
        loop = asyncio.get_running_loop()
        if self._executor is not None:
            await loop.run_in_executor(None, partial(self._executor.shutdown, wait=True))
            self._executor = None
        if self._storage is None:
            return
        try:
            await loop.run_in_executor(None, self._storage.close)
        except Exception as exc:
            msg = f"Failed to close S3 storage: {exc}"
            raise StorageError(msg) from exc
        logger.info("s3_sink_task.stopped")

    def _collect_offsets(self, writers: Iterable[TopicPartitionWriter]) -> None:
        for writer in writers:
            offset = writer.committed_offset
            if offset is not None:
                self._flushed_offsets[writer.topic_partition] = offset
