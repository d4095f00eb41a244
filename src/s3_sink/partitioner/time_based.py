"""Partition by record time, floored to a fixed duration."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from s3_sink.errors import ConfigError
from s3_sink.partitioner.base import BasePartitioner
from s3_sink.partitioner.timestamp import TimestampExtractor, create_timestamp_extractor
from s3_sink.sink.record import SinkRecord

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


def floor_to_duration(timestamp_ms: int, duration_ms: int, tz: ZoneInfo) -> int:
    """Floor *timestamp_ms* to a multiple of *duration_ms* in local time *tz*."""
    offset = datetime.fromtimestamp(timestamp_ms / 1000, tz).utcoffset()
    offset_ms = int(offset.total_seconds() * 1000) if offset is not None else 0
    adjusted = timestamp_ms + offset_ms
    return (adjusted // duration_ms) * duration_ms - offset_ms


class TimeBasedPartitioner(BasePartitioner):
    """Formats the floored record time with a strftime ``path_format``."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        super().__init__()
        self._clock = clock
        self._path_format = ""
        self._duration_ms = 0
        self._tz = ZoneInfo("UTC")
        self._extractor: TimestampExtractor | None = None

    @property
    def timezone(self) -> ZoneInfo:
        return self._tz

    def _resolve_format(self, config: dict[str, Any]) -> tuple[str, int]:
        return (
            config.get("partitioner.path_format", ""),
            int(config.get("partitioner.partition_duration_ms", -1)),
        )

    def configure(self, config: dict[str, Any]) -> None:
        super().configure(config)
        self._path_format, self._duration_ms = self._resolve_format(config)
        if not self._path_format:
            msg = "TimeBasedPartitioner requires partitioner.path_format"
            raise ConfigError(msg)
        if self._duration_ms <= 0:
            msg = "TimeBasedPartitioner requires a positive partition_duration_ms"
            raise ConfigError(msg)
        self._tz = ZoneInfo(config.get("partitioner.timezone", "UTC"))
        self._extractor = create_timestamp_extractor(
            config.get("partitioner.timestamp_extractor", "record"),
            field_name=config.get("partitioner.timestamp_field", "timestamp"),
            clock=self._clock,
        )

    def encode_partition(self, record: SinkRecord) -> str:
        if self._extractor is None:
            msg = "TimeBasedPartitioner used before configure()"
            raise RuntimeError(msg)
        timestamp_ms = self._extractor(record)
        floored = floor_to_duration(timestamp_ms, self._duration_ms, self._tz)
        return datetime.fromtimestamp(floored / 1000, self._tz).strftime(
            self._path_format
        )


class HourlyPartitioner(TimeBasedPartitioner):
    def _resolve_format(self, config: dict[str, Any]) -> tuple[str, int]:
        d = config.get("directory_delim", "/")
        return f"year=%Y{d}month=%m{d}day=%d{d}hour=%H", HOUR_MS


class DailyPartitioner(TimeBasedPartitioner):
    def _resolve_format(self, config: dict[str, Any]) -> tuple[str, int]:
        d = config.get("directory_delim", "/")
        return f"year=%Y{d}month=%m{d}day=%d", DAY_MS
