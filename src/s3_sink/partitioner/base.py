"""Partitioner protocol and shared path building.

A partitioner maps a record to an *encoded partition* (e.g. ``partition=3``
or ``year=2024/month=06``) and turns that into the directory the record's
object lands in under ``topics_dir``.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from s3_sink.sink.record import SinkRecord


@runtime_checkable
class Partitioner(Protocol):
    """Protocol that every partitioning strategy must satisfy."""

    def configure(self, config: dict[str, Any]) -> None:
        """Read settings from the flat ``SinkTaskConfig.plain_values()`` map."""
        ...

    def encode_partition(self, record: SinkRecord) -> str:
        """Return the encoded partition for *record*."""
        ...

    def generate_partitioned_path(self, topic: str, encoded_partition: str) -> str:
        """Return the directory (relative to ``topics_dir``) for a partition."""
        ...


class BasePartitioner:
    """Common configuration and ``topic/encoded`` path layout."""

    def __init__(self) -> None:
        self._delim = "/"

    @property
    def delim(self) -> str:
        return self._delim

    def configure(self, config: dict[str, Any]) -> None:
        self._delim = config.get("directory_delim", "/")

    def encode_partition(self, record: SinkRecord) -> str:
        raise NotImplementedError

    def generate_partitioned_path(self, topic: str, encoded_partition: str) -> str:
        return f"{topic}{self._delim}{encoded_partition}"
