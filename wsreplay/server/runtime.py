from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Optional

import websockets

from wsreplay.core.config import ServerConfig
from wsreplay.core.errors import ReplayError
from wsreplay.server.session import ReplaySession

log = logging.getLogger("wsreplay.server.runtime")

CLOSE_INTERNAL_ERROR = 1011


@dataclass(slots=True)
class Connection:
    websocket: Any
    name: str
    session: Optional[ReplaySession] = None

    async def send(self, payload: bytes) -> None:
        # bytes go out as a binary message; the replay task is the only sender
        await self.websocket.send(payload)


class ServerRuntime:
    """WebSocket server that hands every connection its own ReplaySession."""

    def __init__(self, config: ServerConfig) -> None:
        self.cfg = config
        self.session_cfg = config.session
        self.listen_host = config.host
        self.listen_port = config.port

        self._ws_server: Optional[Any] = None
        self._connections: list[Connection] = []
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._ws_server = await websockets.serve(self._handle_connection, self.listen_host, self.listen_port)
        log.info(
            "Replaying %s on ws://%s:%d",
            self.session_cfg.source_path,
            self.listen_host,
            self.bound_port,
        )

    async def stop(self) -> None:
        for conn in list(self._connections):
            await conn.websocket.close()
        self._connections.clear()

        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None

    @property
    def bound_port(self) -> int:
        """Port actually bound; differs from the configured one when that is 0."""

        if self._ws_server is None:
            return self.listen_port
        for sock in self._ws_server.sockets:
            return sock.getsockname()[1]
        return self.listen_port

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def sessions(self) -> list[ReplaySession]:
        return [conn.session for conn in self._connections if conn.session is not None]

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _handle_connection(self, websocket: Any) -> None:
        conn = Connection(websocket=websocket, name=f"conn-{next(self._ids)}")
        log.info("[%s] Got connection from %s", conn.name, self._fmt_remote(websocket))
        try:
            session = ReplaySession(self.session_cfg, conn.send, name=conn.name)
            conn.session = session
        except ReplayError as exc:
            log.error("[%s] Cannot start replay: %s", conn.name, exc)
            await websocket.close(code=CLOSE_INTERNAL_ERROR, reason="capture unavailable")
            return

        self._connections.append(conn)
        replay = asyncio.create_task(self._replay(conn, session), name=f"replay-{conn.name}")
        try:
            # Inbound messages are ignored; reading them lets close frames through.
            async for raw in websocket:
                log.debug("[%s] Ignoring %d-byte inbound message", conn.name, len(raw))
        except websockets.ConnectionClosed:
            pass
        finally:
            replay.cancel()
            await asyncio.gather(replay, return_exceptions=True)
            session.close()
            try:
                self._connections.remove(conn)
            except ValueError:
                pass
            log.info(
                "[%s] Connection closed (%d record(s), %d bytes sent, state %s)",
                conn.name,
                session.records_sent,
                session.bytes_sent,
                session.state.value,
            )

    async def _replay(self, conn: Connection, session: ReplaySession) -> None:
        try:
            await session.on_open()
            while session.timer_armed:
                await asyncio.sleep(session.interval)
                await session.on_timer()
        except websockets.ConnectionClosed:
            log.debug("[%s] Client went away mid-replay", conn.name)
        except Exception:
            log.exception("[%s] Replay failed", conn.name)
            await conn.websocket.close(code=CLOSE_INTERNAL_ERROR, reason="replay failed")

    @staticmethod
    def _fmt_remote(websocket: Any) -> str:
        peer = websocket.remote_address
        if isinstance(peer, tuple):
            return f"{peer[0]}:{peer[1]}"
        return str(peer)


__all__ = ["ServerRuntime", "Connection"]
