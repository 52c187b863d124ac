from __future__ import annotations

import enum
import logging

from wsreplay.core.config import SessionConfig
from wsreplay.core.playback import SendFn, drain_upfront
from wsreplay.core.reader import RecordReader

log = logging.getLogger("wsreplay.server.session")


class SessionState(enum.Enum):
    BURST = "burst"
    STEADY = "steady"
    IDLE = "idle"


class ReplaySession:
    """Replay state for one connected client.

    The connection host drives it: ``on_open`` once after the handshake, then
    ``on_timer`` every ``config.interval`` seconds for as long as
    ``timer_armed`` stays true, and ``close`` when the connection goes away.
    The capture is released as soon as the session goes idle.
    Each session opens its own reader, so sessions never share a cursor.
    """

    def __init__(self, config: SessionConfig, send: SendFn, name: str = "-") -> None:
        self.config = config
        self.name = name
        self._send = send
        self._reader = RecordReader(config.source_path, config.delimiter)
        self.active = True
        self.state = SessionState.BURST
        self.timer_armed = False
        self.records_sent = 0
        self.bytes_sent = 0

    @property
    def interval(self) -> float:
        return self.config.interval

    @property
    def closed(self) -> bool:
        return self._reader.closed

    async def on_open(self) -> None:
        self.state = SessionState.BURST
        sent = await drain_upfront(self.config.upfront, self._reader, self._forward)
        if self._reader.at_end():
            self.active = False
        log.info("[%s] Upfront burst sent %d record(s), %d bytes", self.name, sent, self.bytes_sent)
        # Armed even if the burst already reached the end of the file.
        self.timer_armed = True
        self.state = SessionState.STEADY

    async def on_timer(self) -> None:
        self.timer_armed = False
        record = self._reader.read_next()
        await self._forward(record.data)
        if record.eof or self._reader.at_end():
            self.active = False

        if self.active:
            self.timer_armed = True
        else:
            self.state = SessionState.IDLE
            self._reader.close()
            log.info("[%s] Capture exhausted after %d record(s), going idle", self.name, self.records_sent)

    def close(self) -> None:
        self.timer_armed = False
        self._reader.close()

    async def _forward(self, data: bytes) -> None:
        await self._send(data)
        self.records_sent += 1
        self.bytes_sent += len(data)
        log.debug("[%s] Sent record #%d (%d bytes)", self.name, self.records_sent, len(data))


__all__ = ["ReplaySession", "SessionState"]
