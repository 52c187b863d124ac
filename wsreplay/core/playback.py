from __future__ import annotations

import logging
import math
from typing import Annotated, Awaitable, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

from .errors import ConfigError
from .reader import RecordReader

log = logging.getLogger("wsreplay.core.playback")

SendFn = Callable[[bytes], Awaitable[None]]


# ---------------------------------------------------------------------------
# Upfront playback variants
# ---------------------------------------------------------------------------

class CountPlayback(BaseModel):
    """Send a fixed number of records as soon as a client connects."""

    kind: Literal["count"] = "count"
    count: StrictInt

    model_config = ConfigDict(frozen=True)

    @field_validator("count")
    @classmethod
    def _count_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("count must be non-negative")
        return value


class PercentagePlayback(BaseModel):
    """Send records until this fraction of the file's bytes has been read."""

    kind: Literal["percentage"] = "percentage"
    fraction: float

    model_config = ConfigDict(frozen=True)

    @field_validator("fraction")
    @classmethod
    def _fraction_in_range(cls, value: float) -> float:
        if not (math.isfinite(value) and 0.0 <= value <= 1.0):
            raise ValueError("percentage must be between 0 and 1")
        return value


UpfrontPlayback = Annotated[Union[CountPlayback, PercentagePlayback], Field(discriminator="kind")]


def resolve_upfront(count: Optional[int], percentage: Optional[float]) -> Union[CountPlayback, PercentagePlayback]:
    """Pick the playback variant; exactly one of ``count``/``percentage`` must be set."""

    if count is not None and percentage is not None:
        raise ConfigError("count and percentage are mutually exclusive")
    if count is None and percentage is None:
        raise ConfigError("neither count nor percentage set")
    try:
        if count is not None:
            return CountPlayback(count=count)
        return PercentagePlayback(fraction=percentage)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


# ---------------------------------------------------------------------------
# Burst
# ---------------------------------------------------------------------------

async def drain_upfront(upfront: Union[CountPlayback, PercentagePlayback], reader: RecordReader, send: SendFn) -> int:
    """Run the upfront burst against ``reader`` and return how many sends were made."""

    if isinstance(upfront, CountPlayback):
        return await _replay_count(upfront.count, reader, send)
    if isinstance(upfront, PercentagePlayback):
        return await _replay_fraction(upfront.fraction, reader, send)
    raise TypeError(f"unsupported playback {upfront!r}")


async def _replay_count(count: int, reader: RecordReader, send: SendFn) -> int:
    # Reads past the end of the file still go out, as empty payloads.
    for _ in range(count):
        record = reader.read_next()
        await send(record.data)
    return count


async def _replay_fraction(fraction: float, reader: RecordReader, send: SendFn) -> int:
    target = reader.file_size * fraction
    consumed = 0
    sent = 0
    # The first record always goes out, even for a zero target.
    while True:
        record = reader.read_next()
        await send(record.data)
        sent += 1
        consumed += record.bytes_read
        if consumed >= target or record.eof:
            break
    log.debug("Burst read %d of %d bytes (target %.1f)", consumed, reader.file_size, target)
    return sent


__all__ = [
    "CountPlayback",
    "PercentagePlayback",
    "UpfrontPlayback",
    "SendFn",
    "resolve_upfront",
    "drain_upfront",
]
