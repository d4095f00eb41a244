"""Kafka host runtime — drives an S3SinkTask from a confluent-kafka consumer."""

from __future__ import annotations

import asyncio
import json
import signal
from collections.abc import Iterable
from typing import Any

import structlog
from confluent_kafka import (
    TIMESTAMP_NOT_AVAILABLE,
    Consumer,
    KafkaError,
    KafkaException,
    Message,
)
from confluent_kafka import TopicPartition as KafkaTopicPartition

from s3_sink.config.models import KafkaConfig, SinkTaskConfig
from s3_sink.errors import DataError
from s3_sink.sink.record import SinkRecord, TopicPartition
from s3_sink.sink.task import S3SinkTask

logger = structlog.get_logger()


def build_consumer_config(kafka: KafkaConfig) -> dict[str, Any]:
    """Translate KafkaConfig into librdkafka settings."""
    conf: dict[str, Any] = {
        "bootstrap.servers": kafka.bootstrap_servers,
        "group.id": kafka.group_id,
        "auto.offset.reset": kafka.auto_offset_reset,
        "enable.auto.commit": False,
        "session.timeout.ms": kafka.session_timeout_ms,
        "max.poll.interval.ms": kafka.max_poll_interval_ms,
        "fetch.min.bytes": kafka.fetch_min_bytes,
        "fetch.wait.max.ms": kafka.fetch_max_wait_ms,
        "security.protocol": kafka.security_protocol,
    }
    if kafka.sasl_mechanism:
        conf["sasl.mechanism"] = kafka.sasl_mechanism
        conf["sasl.username"] = kafka.sasl_username
        assert kafka.sasl_password is not None
        conf["sasl.password"] = kafka.sasl_password.get_secret_value()
    return conf


def convert(data: bytes | None, converter: str) -> Any:
    """Apply a key/value converter (``bytes``, ``string`` or ``json``)."""
    if data is None or converter == "bytes":
        return data
    text = data.decode("utf-8")
    if converter == "string":
        return text
    return json.loads(text)


class SinkRunner:
    """Polls Kafka in batches and feeds them through the task lifecycle.

    Rebalance callbacks fire inside ``consume()`` on the poll thread; revocation
    runs ``task.close`` on the event loop and waits for it, so the next owner
    only starts after our data is in S3 and our offsets are committed.
    """

    def __init__(
        self,
        config: SinkTaskConfig,
        *,
        task: S3SinkTask | None = None,
        consumer: Any = None,
    ) -> None:
        self._config = config
        self._kafka = config.kafka
        self._task = task if task is not None else S3SinkTask()
        self._consumer = (
            consumer
            if consumer is not None
            else Consumer(build_consumer_config(config.kafka))
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._running = False
        self._closing = False
        self._last_committed: dict[TopicPartition, int] = {}

    @property
    def task(self) -> S3SinkTask:
        return self._task

    def to_record(self, msg: Message) -> SinkRecord:
        topic = msg.topic()
        partition = msg.partition()
        offset = msg.offset()
        assert topic is not None
        assert partition is not None
        assert offset is not None
        ts_type, ts = msg.timestamp()
        try:
            key = convert(msg.key(), self._kafka.key_converter)
            value = convert(msg.value(), self._kafka.value_converter)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            err = f"Cannot convert record {topic}-{partition}@{offset}: {exc}"
            raise DataError(err) from exc
        return SinkRecord(
            topic=topic,
            partition=partition,
            offset=offset,
            key=key,
            value=value,
            timestamp=None if ts_type == TIMESTAMP_NOT_AVAILABLE else ts,
            headers=list(msg.headers() or []),
        )

    def _handle_assign(self, consumer: Any, partitions: list[Any]) -> None:
        if self._closing:
            return
        tps = [TopicPartition(tp.topic, tp.partition) for tp in partitions]
        self._task.open(tps)

    def _handle_revoke(self, consumer: Any, partitions: list[Any]) -> None:
        if self._closing or self._loop is None:
            return
        owned = list(self._task.assignment)
        tps = [TopicPartition(tp.topic, tp.partition) for tp in partitions]
        asyncio.run_coroutine_threadsafe(self._task.close(tps), self._loop).result()
        self._commit(owned, asynchronous=False)
        for tp in owned:
            self._last_committed.pop(tp, None)

    def _handle_lost(self, consumer: Any, partitions: list[Any]) -> None:
        if self._closing or self._loop is None:
            return
        owned = list(self._task.assignment)
        logger.warning(
            "sink_runner.partitions_lost",
            partitions=[str(tp) for tp in sorted(owned)],
        )
        asyncio.run_coroutine_threadsafe(self._task.close(owned), self._loop).result()
        for tp in owned:
            self._last_committed.pop(tp, None)

    def _commit(self, tps: Iterable[TopicPartition], *, asynchronous: bool) -> None:
        """Commit the next-to-fetch offset for partitions whose data advanced."""
        flushed = self._task.flushed_offsets
        to_commit = {
            tp: flushed[tp]
            for tp in tps
            if tp in flushed and flushed[tp] > self._last_committed.get(tp, -1)
        }
        if not to_commit:
            return
        self._consumer.commit(
            offsets=[
                KafkaTopicPartition(tp.topic, tp.partition, offset + 1)
                for tp, offset in to_commit.items()
            ],
            asynchronous=asynchronous,
        )
        self._last_committed.update(to_commit)
        logger.debug(
            "sink_runner.offsets_committed",
            offsets={str(tp): off for tp, off in to_commit.items()},
        )

    def _valid_messages(self, messages: list[Message]) -> list[Message]:
        valid: list[Message] = []
        for msg in messages:
            err = msg.error()
            if err and err.code() == KafkaError._PARTITION_EOF:  # type: ignore[attr-defined]
                continue
            if err:
                raise KafkaException(err)
            valid.append(msg)
        return valid

    async def run(self, *, install_signal_handlers: bool = True) -> None:
        """Start the task, consume until stopped, then close everything."""
        self._loop = asyncio.get_running_loop()
        self._running = True
        await self._task.start(self._config)
        self._consumer.subscribe(
            self._config.topics,
            on_assign=self._handle_assign,
            on_revoke=self._handle_revoke,
            on_lost=self._handle_lost,
        )
        if install_signal_handlers:
            self._install_signal_handlers()

        logger.info("sink_runner.started", topics=self._config.topics)
        try:
            while self._running:
                messages = await self._loop.run_in_executor(
                    None,
                    self._consumer.consume,
                    self._kafka.poll_batch_size,
                    self._kafka.poll_timeout_seconds,
                )
                records = [self.to_record(m) for m in self._valid_messages(messages)]
                # Empty batches still go through put() so scheduled rotation fires.
                await self._task.put(records)
                self._commit(self._task.assignment, asynchronous=True)
        finally:
            await self._shutdown()

    async def _shutdown(self) -> None:
        owned = list(self._task.assignment)
        try:
            if owned:
                await self._task.close(owned)
                self._commit(owned, asynchronous=False)
        finally:
            self._closing = True
            try:
                await self._task.stop()
            finally:
                self._consumer.close()
                logger.info("sink_runner.stopped")

    def _install_signal_handlers(self) -> None:
        def _shutdown(signum: int, frame: Any) -> None:
            logger.info("sink_runner.shutdown_signal", signal=signum)
            self._running = False

        signal.signal(signal.SIGINT, _shutdown)
        signal.signal(signal.SIGTERM, _shutdown)

    def stop(self) -> None:
        """Signal the consume loop to stop after the current batch."""
        self._running = False
