"""Partitioner factory — maps PartitionerType to concrete partitioners."""

from __future__ import annotations

import time
from collections.abc import Callable

from s3_sink.config.models import PartitionerType, SinkTaskConfig
from s3_sink.errors import ConfigError
from s3_sink.partitioner.base import Partitioner
from s3_sink.partitioner.default import DefaultPartitioner
from s3_sink.partitioner.field import FieldPartitioner
from s3_sink.partitioner.time_based import (
    DailyPartitioner,
    HourlyPartitioner,
    TimeBasedPartitioner,
)

_PARTITIONER_REGISTRY: dict[PartitionerType, Callable[..., Partitioner]] = {
    PartitionerType.DEFAULT: lambda clock: DefaultPartitioner(),
    PartitionerType.FIELD: lambda clock: FieldPartitioner(),
    PartitionerType.TIME_BASED: lambda clock: TimeBasedPartitioner(clock=clock),
    PartitionerType.HOURLY: lambda clock: HourlyPartitioner(clock=clock),
    PartitionerType.DAILY: lambda clock: DailyPartitioner(clock=clock),
}


def create_partitioner(
    config: SinkTaskConfig,
    *,
    clock: Callable[[], float] = time.time,
) -> Partitioner:
    """Build and configure the partitioner named in *config*."""
    factory = _PARTITIONER_REGISTRY.get(config.partitioner.partitioner_type)
    if factory is None:
        msg = f"Unknown partitioner type: {config.partitioner.partitioner_type}"
        raise ConfigError(msg)
    partitioner = factory(clock)
    partitioner.configure(config.plain_values())
    return partitioner
