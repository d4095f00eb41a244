"""Timestamp extractors used by the time-based partitioners."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from s3_sink.config.models import TimestampExtractorType
from s3_sink.errors import ConfigError, DataError
from s3_sink.sink.record import SinkRecord

TimestampExtractor = Callable[[SinkRecord], int]


def record_timestamp(record: SinkRecord) -> int:
    if record.timestamp is None:
        msg = (
            f"Record {record.topic}-{record.partition}@{record.offset} "
            f"has no timestamp"
        )
        raise DataError(msg)
    return record.timestamp


def wallclock_timestamp(clock: Callable[[], float]) -> TimestampExtractor:
    def _extract(record: SinkRecord) -> int:
        return int(clock() * 1000)

    return _extract


def _to_millis(raw: Any, field_name: str) -> int:
    if isinstance(raw, bool):
        msg = f"Field '{field_name}' is a boolean, not a timestamp"
        raise DataError(msg)
    if isinstance(raw, (int, float)):
        return int(raw)
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as exc:
            msg = f"Field '{field_name}' is not an ISO-8601 timestamp: {raw!r}"
            raise DataError(msg) from exc
    else:
        msg = f"Field '{field_name}' of type {type(raw).__name__} is not a timestamp"
        raise DataError(msg)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp() * 1000)


def record_field_timestamp(field_name: str) -> TimestampExtractor:
    """Read a timestamp from a (dotted, for nested dicts) value field."""
    path = field_name.split(".")

    def _extract(record: SinkRecord) -> int:
        current: Any = record.value
        for part in path:
            if not isinstance(current, dict) or part not in current:
                msg = (
                    f"Timestamp field '{field_name}' missing from record "
                    f"{record.topic}-{record.partition}@{record.offset}"
                )
                raise DataError(msg)
            current = current[part]
        return _to_millis(current, field_name)

    return _extract


def create_timestamp_extractor(
    kind: TimestampExtractorType | str,
    *,
    field_name: str = "timestamp",
    clock: Callable[[], float] = time.time,
) -> TimestampExtractor:
    if kind == TimestampExtractorType.RECORD:
        return record_timestamp
    if kind == TimestampExtractorType.WALLCLOCK:
        return wallclock_timestamp(clock)
    if kind == TimestampExtractorType.RECORD_FIELD:
        return record_field_timestamp(field_name)
    msg = f"Unknown timestamp extractor: {kind}"
    raise ConfigError(msg)
