"""Exception hierarchy for the S3 sink.

Everything raised on purpose by this package derives from ``SinkError`` so a
host runtime can tell sink failures apart from its own.
"""

from __future__ import annotations


class SinkError(Exception):
    """Base class for all S3 sink errors."""


class ConfigError(SinkError):
    """Invalid configuration or failed startup precondition. Never retried."""


class StorageError(SinkError):
    """A remote object-store call failed (network, service, permissions)."""


class UnsupportedOperationError(SinkError, NotImplementedError):
    """The object store cannot perform this operation."""


class RoutingError(SinkError):
    """A record arrived for a partition this task does not own."""


class AssignmentError(SinkError):
    """A partition was opened while it was still assigned."""


class DataError(SinkError):
    """A record cannot be partitioned or serialised."""


class SchemaChangedError(DataError):
    """The record's schema differs from the one fixed for the open object.

    Raised before anything is written, so the caller can commit the open object
    and start a new one at this record.
    """
