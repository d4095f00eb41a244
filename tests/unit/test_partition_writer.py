"""Unit tests for per-partition buffering and rotation."""

from __future__ import annotations

import io
import json

import fastavro
import pytest

from s3_sink.errors import DataError, StorageError
from s3_sink.formats.factory import create_writer_provider
from s3_sink.formats.schema import SchemaCache
from s3_sink.partitioner.factory import create_partitioner
from s3_sink.sink.partition_writer import TopicPartitionWriter
from s3_sink.sink.record import TopicPartition

TP = TopicPartition("orders", 0)


class _Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return _Clock(1_000.0)


@pytest.fixture
def make_writer(storage, make_config, clock):
    def _make(**overrides) -> TopicPartitionWriter:
        config = make_config(**overrides)
        provider = create_writer_provider(config.format, storage, SchemaCache())
        partitioner = create_partitioner(config, clock=clock)
        return TopicPartitionWriter(TP, provider, partitioner, config, clock=clock)

    return _make


def _offsets(body: bytes) -> list[int]:
    return [json.loads(line)["id"] for line in body.decode().splitlines()]


class TestObjectKey:
    def test_layout(self, make_writer):
        writer = make_writer()
        assert (
            writer.object_key("partition=0", 42)
            == "topics/orders/partition=0/orders+0+0000000042.json"
        )

    def test_custom_delims_and_empty_topics_dir(self, make_writer):
        writer = make_writer(topics_dir="", file_delim="_", format={"compression": "gzip"})
        assert writer.object_key("partition=0", 7) == "orders/partition=0/orders_0_0000000007.json.gz"


class TestFlushSize:
    def test_commits_full_chunks_only(self, make_writer, make_record, fake_s3):
        writer = make_writer(rotation={"flush_size": 2})
        for i in range(5):
            writer.buffer(make_record(i))
        writer.write()

        assert sorted(fake_s3.objects) == [
            "topics/orders/partition=0/orders+0+0000000000.json",
            "topics/orders/partition=0/orders+0+0000000002.json",
        ]
        assert [r.offset for r in writer.buffered] == [4]
        assert writer.committed_offset == 3

    def test_nothing_buffered_is_noop(self, make_writer, fake_s3):
        writer = make_writer()
        writer.write()
        assert sum(fake_s3.calls.values()) == 0
        assert writer.committed_offset is None


class TestRotateInterval:
    def test_record_time_span_triggers_commit(self, make_writer, make_record, fake_s3):
        writer = make_writer(rotation={"rotate_interval_ms": 1000})
        writer.buffer(make_record(0, timestamp=10_000))
        writer.buffer(make_record(1, timestamp=10_500))
        writer.write()
        assert fake_s3.objects == {}

        writer.buffer(make_record(2, timestamp=11_000))
        writer.write()
        key = "topics/orders/partition=0/orders+0+0000000000.json"
        assert _offsets(fake_s3.objects[key]) == [0, 1, 2]
        assert writer.buffered == []

    def test_records_without_timestamp_never_span(self, make_writer, make_record, fake_s3):
        writer = make_writer(rotation={"rotate_interval_ms": 1})
        writer.buffer(make_record(0))
        writer.buffer(make_record(1))
        writer.write()
        assert fake_s3.objects == {}


class TestScheduledRotation:
    def test_wall_clock_boundary_triggers_commit(self, make_writer, make_record, fake_s3, clock):
        writer = make_writer(rotation={"rotate_schedule_interval_ms": 60_000})
        writer.buffer(make_record(0))
        writer.write()
        assert fake_s3.objects == {}

        clock.now = 1_019.0
        writer.buffer(make_record(1))
        writer.write()
        assert fake_s3.objects == {}

        clock.now = 1_020.0
        writer.write()
        key = "topics/orders/partition=0/orders+0+0000000000.json"
        assert _offsets(fake_s3.objects[key]) == [0, 1]

    def test_boundary_with_empty_buffer_writes_nothing(self, make_writer, fake_s3, clock):
        writer = make_writer(rotation={"rotate_schedule_interval_ms": 60_000})
        writer.write()
        clock.now = 2_000.0
        writer.write()
        assert fake_s3.objects == {}


class TestFailures:
    def test_failed_commit_keeps_buffer_and_rewrites_same_key(
        self, make_writer, make_record, fake_s3
    ):
        writer = make_writer(rotation={"flush_size": 2})
        writer.buffer(make_record(0))
        writer.buffer(make_record(1))
        fake_s3.fail_next("put_object")

        with pytest.raises(StorageError):
            writer.write()
        assert len(writer.buffered) == 2
        assert writer.committed_offset is None

        writer.write()
        assert list(fake_s3.objects) == ["topics/orders/partition=0/orders+0+0000000000.json"]
        assert writer.committed_offset == 1

    def test_unpartitionable_record_raises(self, make_writer, make_record):
        writer = make_writer(
            rotation={"flush_size": 1},
            partitioner={"partitioner_type": "field", "field_names": ["region"]},
        )
        writer.buffer(make_record(0, value={"id": 0}))
        with pytest.raises(DataError):
            writer.write()
        assert len(writer.buffered) == 1


class TestEncodedPartitions:
    def test_one_object_per_encoded_partition(self, make_writer, make_record, fake_s3):
        writer = make_writer(
            rotation={"flush_size": 4},
            partitioner={"partitioner_type": "field", "field_names": ["region"]},
        )
        for offset, region in enumerate(["eu", "us", "eu", "us"]):
            writer.buffer(make_record(offset, value={"id": offset, "region": region}))
        writer.write()

        eu = "topics/orders/region=eu/orders+0+0000000000.json"
        us = "topics/orders/region=us/orders+0+0000000001.json"
        assert sorted(fake_s3.objects) == [eu, us]
        assert _offsets(fake_s3.objects[eu]) == [0, 2]
        assert _offsets(fake_s3.objects[us]) == [1, 3]
        assert writer.committed_offset == 3


class TestAvroSchemaChanges:
    def _read(self, body: bytes) -> list[dict]:
        return list(fastavro.reader(io.BytesIO(body)))

    def test_null_field_starts_new_object(self, make_writer, make_record, fake_s3):
        writer = make_writer(rotation={"flush_size": 2}, format={"format_type": "avro"})
        writer.buffer(make_record(0, value={"id": 1, "note": "x"}))
        writer.buffer(make_record(1, value={"id": 2, "note": None}))
        writer.write()

        first = "topics/orders/partition=0/orders+0+0000000000.avro"
        second = "topics/orders/partition=0/orders+0+0000000001.avro"
        assert sorted(fake_s3.objects) == [first, second]
        assert self._read(fake_s3.objects[first]) == [{"id": 1, "note": "x"}]
        assert self._read(fake_s3.objects[second]) == [{"id": 2, "note": None}]
        assert writer.buffered == []
        assert writer.committed_offset == 1

    def test_reordered_keys_share_one_object(self, make_writer, make_record, fake_s3):
        writer = make_writer(rotation={"flush_size": 2}, format={"format_type": "avro"})
        writer.buffer(make_record(0, value={"id": 1, "note": "x"}))
        writer.buffer(make_record(1, value={"note": "y", "id": 2}))
        writer.write()

        key = "topics/orders/partition=0/orders+0+0000000000.avro"
        assert list(fake_s3.objects) == [key]
        assert self._read(fake_s3.objects[key]) == [
            {"id": 1, "note": "x"},
            {"id": 2, "note": "y"},
        ]
        assert writer.committed_offset == 1

    def test_retry_after_failure_rewrites_same_keys(
        self, make_writer, make_record, fake_s3
    ):
        writer = make_writer(rotation={"flush_size": 3}, format={"format_type": "avro"})
        writer.buffer(make_record(0, value={"id": 1}))
        writer.buffer(make_record(1, value={"id": 2, "note": "n"}))
        writer.buffer(make_record(2, value={"id": 3, "note": "m"}))
        fake_s3.fail_next("put_object")
        with pytest.raises(StorageError):
            writer.write()
        assert len(writer.buffered) == 3

        writer.write()
        assert sorted(fake_s3.objects) == [
            "topics/orders/partition=0/orders+0+0000000000.avro",
            "topics/orders/partition=0/orders+0+0000000001.avro",
        ]
        assert writer.buffered == []


class TestClose:
    def test_close_commits_remainder(self, make_writer, make_record, fake_s3):
        writer = make_writer()
        writer.buffer(make_record(5))
        writer.close()
        assert list(fake_s3.objects) == ["topics/orders/partition=0/orders+0+0000000005.json"]
        assert writer.closed
        assert writer.committed_offset == 5

    def test_close_is_idempotent(self, make_writer, fake_s3):
        writer = make_writer()
        writer.close()
        writer.close()
        assert fake_s3.calls["put_object"] == 0

    def test_buffer_after_close_raises(self, make_writer, make_record):
        writer = make_writer()
        writer.close()
        with pytest.raises(RuntimeError, match="closed"):
            writer.buffer(make_record(0))

    def test_failed_close_discards_buffer(self, make_writer, make_record, fake_s3):
        writer = make_writer()
        writer.buffer(make_record(0))
        fake_s3.fail_next("put_object")
        with pytest.raises(StorageError):
            writer.close()
        assert writer.closed
        assert writer.buffered == []
