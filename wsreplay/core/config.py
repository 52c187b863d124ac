from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .errors import ConfigError
from .playback import UpfrontPlayback, resolve_upfront

DEFAULT_LISTEN = "127.0.0.1:3333"
DEFAULT_PERCENTAGE = 0.8
DEFAULT_INTERVAL = 1.0

DELIMITERS = {
    "newline": b"\n",
    "null": b"\0",
}


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class SessionConfig(BaseModel):
    """Settings every replay session reads; built once and never mutated."""

    delimiter: bytes = b"\n"
    source_path: Path
    interval: float = DEFAULT_INTERVAL
    upfront: UpfrontPlayback

    model_config = ConfigDict(frozen=True)

    @field_validator("delimiter")
    @classmethod
    def _single_byte(cls, value: bytes) -> bytes:
        if len(value) != 1:
            raise ValueError("delimiter must be exactly one byte")
        return value

    @field_validator("interval")
    @classmethod
    def _interval_non_negative(cls, value: float) -> float:
        if not (math.isfinite(value) and value >= 0):
            raise ValueError("interval must be a non-negative number of seconds")
        return value


class ServerConfig(BaseModel):
    host: str
    port: int
    session: SessionConfig

    model_config = ConfigDict(frozen=True)

    @field_validator("port")
    @classmethod
    def _port_range(cls, value: int) -> int:
        if not 0 <= value <= 65535:
            raise ValueError("port out of range")
        return value


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def parse_listen(value: str) -> Tuple[str, int]:
    host, sep, port = str(value).rpartition(":")
    if not sep or not host:
        raise ConfigError(f"listen address must be host:port, got {value!r}")
    try:
        return host, int(port)
    except ValueError as exc:
        raise ConfigError(f"invalid port in listen address {value!r}") from exc


def parse_delimiter(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    name = str(value)
    if name in DELIMITERS:
        return DELIMITERS[name]
    raise ConfigError(f"unknown delimiter {value!r} (expected one of {', '.join(DELIMITERS)})")


def load_yaml(path: Path) -> Dict[str, Any]:
    """Read a YAML settings file; an empty file yields no settings."""

    try:
        data = yaml.safe_load(Path(path).read_text()) or {}
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config {path} must be a mapping")
    return data


def build_config(settings: Dict[str, Any]) -> ServerConfig:
    """Turn merged settings (YAML values overlaid with CLI flags) into a ServerConfig.

    Recognised keys: ``file``, ``delimiter``, ``interval``, ``count``,
    ``percentage`` and ``listen``. When neither ``count`` nor ``percentage``
    appears at all, the default percentage applies; a key that is present but
    null counts as unset.
    """

    if settings.get("file") is None:
        raise ConfigError("no capture file given")

    count: Optional[int] = settings.get("count")
    percentage: Optional[float] = settings.get("percentage")
    if "count" not in settings and "percentage" not in settings:
        percentage = DEFAULT_PERCENTAGE
    upfront = resolve_upfront(count, percentage)

    host, port = parse_listen(settings.get("listen") or DEFAULT_LISTEN)
    interval = settings.get("interval")
    try:
        session = SessionConfig(
            delimiter=parse_delimiter(settings.get("delimiter") or "newline"),
            source_path=Path(settings["file"]),
            interval=DEFAULT_INTERVAL if interval is None else interval,
            upfront=upfront,
        )
        return ServerConfig(host=host, port=port, session=session)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


__all__ = [
    "SessionConfig",
    "ServerConfig",
    "DELIMITERS",
    "DEFAULT_LISTEN",
    "DEFAULT_PERCENTAGE",
    "DEFAULT_INTERVAL",
    "parse_listen",
    "parse_delimiter",
    "load_yaml",
    "build_config",
]
