"""Sink config loading.

A sink YAML file is read, ``${VAR}`` and ``${VAR:-default}`` references are
expanded from the environment, and the result is laid over the packaged
``defaults/sink.yaml`` before validation. Every failure along the way is a
``ConfigError`` naming the file it came from.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from s3_sink.config.models import SinkTaskConfig
from s3_sink.errors import ConfigError

SINK_DEFAULTS = Path(__file__).parent / "defaults" / "sink.yaml"

_ENV_REF = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


def expand_env(value: Any) -> Any:
    """Expand environment references in every string nested in *value*."""
    if isinstance(value, str):
        return _ENV_REF.sub(_env_value, value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def _env_value(match: re.Match[str]) -> str:
    name = match["name"]
    if name in os.environ:
        return os.environ[name]
    if match["default"] is not None:
        return match["default"]
    msg = f"Environment variable '{name}' is not set and has no default"
    raise ConfigError(msg)


def read_mapping(path: Path) -> dict[str, Any]:
    """Parse *path* as YAML; an empty file is an empty mapping."""
    try:
        text = path.read_text()
    except FileNotFoundError as exc:
        msg = f"Config file not found: {path}"
        raise ConfigError(msg) from exc
    except OSError as exc:
        msg = f"Cannot read config file {path}: {exc}"
        raise ConfigError(msg) from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark else ""
        msg = f"Cannot parse {path}{where}: {exc}"
        raise ConfigError(msg) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{path} must hold a YAML mapping, not a {type(data).__name__}"
        raise ConfigError(msg)
    return data


def overlay(base: dict[str, Any], top: dict[str, Any]) -> dict[str, Any]:
    """Nested dicts merge key by key; any other value in *top* wins."""
    result = dict(base)
    for key, value in top.items():
        below = result.get(key)
        if isinstance(below, dict) and isinstance(value, dict):
            result[key] = overlay(below, value)
        else:
            result[key] = value
    return result


def build_sink_config(
    data: dict[str, Any], *, source: str = "<inline>"
) -> SinkTaskConfig:
    """Validate *data* laid over the packaged sink defaults."""
    merged = overlay(read_mapping(SINK_DEFAULTS), expand_env(data))
    try:
        return SinkTaskConfig.model_validate(merged)
    except ValidationError as exc:
        msg = f"Invalid sink config ({source}):\n{exc}"
        raise ConfigError(msg) from exc


def load_sink_config(path: str | Path) -> SinkTaskConfig:
    """Load and validate the sink config at *path*."""
    path = Path(path)
    return build_sink_config(read_mapping(path), source=str(path))
