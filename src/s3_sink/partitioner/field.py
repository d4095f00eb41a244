"""Partition by the values of one or more record fields."""

from __future__ import annotations

from typing import Any

from s3_sink.errors import ConfigError, DataError
from s3_sink.partitioner.base import BasePartitioner
from s3_sink.sink.record import SinkRecord


class FieldPartitioner(BasePartitioner):
    """Encodes ``<field>=<value>`` for each configured field, in order."""

    def __init__(self) -> None:
        super().__init__()
        self._field_names: list[str] = []

    def configure(self, config: dict[str, Any]) -> None:
        super().configure(config)
        self._field_names = list(config.get("partitioner.field_names") or [])
        if not self._field_names:
            msg = "FieldPartitioner requires partitioner.field_names"
            raise ConfigError(msg)

    def encode_partition(self, record: SinkRecord) -> str:
        value = record.value
        if not isinstance(value, dict):
            msg = (
                f"FieldPartitioner needs a dict value, got {type(value).__name__} "
                f"at {record.topic}-{record.partition}@{record.offset}"
            )
            raise DataError(msg)
        parts = []
        for name in self._field_names:
            if name not in value:
                msg = (
                    f"Field '{name}' missing from record "
                    f"{record.topic}-{record.partition}@{record.offset}"
                )
                raise DataError(msg)
            field_value = value[name]
            if isinstance(field_value, (dict, list)):
                msg = f"Field '{name}' must be a scalar to partition on"
                raise DataError(msg)
            parts.append(f"{name}={field_value}")
        return self._delim.join(parts)
