"""Record envelope and partition identity handed to the sink task."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NamedTuple


class TopicPartition(NamedTuple):
    """(topic, partition) pair, the key for writer lookup."""

    topic: str
    partition: int

    def __str__(self) -> str:
        return f"{self.topic}-{self.partition}"


@dataclass(slots=True)
class SinkRecord:
    """One record delivered by the host runtime.

    ``value`` is whatever the key/value converter produced (dict, str, bytes,
    ...). ``value_schema`` optionally carries an Avro schema for the value.
    """

    topic: str
    partition: int
    offset: int
    key: Any = None
    value: Any = None
    timestamp: int | None = None  # epoch millis
    value_schema: dict[str, Any] | None = field(default=None, repr=False)
    headers: list[tuple[str, bytes | None]] = field(default_factory=list, repr=False)

    @property
    def topic_partition(self) -> TopicPartition:
        return TopicPartition(self.topic, self.partition)
