"""Avro schema cache and inference shared by the schema-aware formats."""

from __future__ import annotations

import json
import re
import threading
from collections import OrderedDict
from typing import Any

from fastavro import parse_schema
from fastavro.schema import SchemaParseException

from s3_sink.errors import DataError
from s3_sink.sink.record import SinkRecord

_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_]")


def _avro_name(raw: str) -> str:
    name = _INVALID_NAME_CHARS.sub("_", raw)
    if not name or name[0].isdigit():
        name = f"_{name}"
    return name


class SchemaCache:
    """Bounded LRU of parsed Avro schemas keyed by their canonical JSON."""

    def __init__(self, max_size: int = 1000) -> None:
        self._max_size = max_size
        self._parsed: OrderedDict[str, Any] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._parsed)

    @staticmethod
    def schema_key(schema: dict[str, Any]) -> str:
        return json.dumps(schema, sort_keys=True, separators=(",", ":"))

    def parsed(self, schema: dict[str, Any]) -> Any:
        """Parsed form of *schema*. Safe to call from the flush thread pool."""
        key = self.schema_key(schema)
        with self._lock:
            cached = self._parsed.get(key)
            if cached is not None:
                self._parsed.move_to_end(key)
                return cached
            try:
                cached = parse_schema(schema)
            except (SchemaParseException, ValueError, TypeError) as exc:
                msg = f"Invalid Avro schema: {exc}"
                raise DataError(msg) from exc
            self._parsed[key] = cached
            if len(self._parsed) > self._max_size:
                self._parsed.popitem(last=False)
            return cached

    def schema_for(self, record: SinkRecord) -> dict[str, Any]:
        """The record's declared value schema, else one inferred from its value."""
        if record.value_schema is not None:
            return record.value_schema
        if not isinstance(record.value, dict):
            msg = (
                f"Cannot infer an Avro schema for a {type(record.value).__name__} "
                f"value at {record.topic}-{record.partition}@{record.offset}"
            )
            raise DataError(msg)
        return self.infer(record.value, name=_avro_name(record.topic))

    def infer(self, value: dict[str, Any], name: str = "Record") -> dict[str, Any]:
        """Infer an Avro record schema; every field is nullable.

        Fields are sorted by name so key order in the value never changes the
        schema.
        """
        fields = []
        for field_name, field_value in sorted(value.items()):
            avro_type = self._infer_type(field_value, f"{name}_{_avro_name(field_name)}")
            if avro_type == "null":
                field_type: Any = "null"
            else:
                field_type = ["null", avro_type]
            fields.append({"name": field_name, "type": field_type, "default": None})
        return {"type": "record", "name": name, "fields": fields}

    def _infer_type(self, value: Any, name: str) -> Any:
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "boolean"
        if isinstance(value, int):
            return "long"
        if isinstance(value, float):
            return "double"
        if isinstance(value, str):
            return "string"
        if isinstance(value, (bytes, bytearray)):
            return "bytes"
        if isinstance(value, dict):
            return self.infer(value, name=name)
        if isinstance(value, list):
            items = self._infer_type(value[0], name) if value else "string"
            return {"type": "array", "items": items}
        msg = f"Cannot map {type(value).__name__} to an Avro type"
        raise DataError(msg)
