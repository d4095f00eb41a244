"""Partition by Kafka partition number."""

from __future__ import annotations

from s3_sink.partitioner.base import BasePartitioner
from s3_sink.sink.record import SinkRecord


class DefaultPartitioner(BasePartitioner):
    def encode_partition(self, record: SinkRecord) -> str:
        return f"partition={record.partition}"
