# tests/test_session.py
from __future__ import annotations

from pathlib import Path

import pytest

from wsreplay.core.config import SessionConfig
from wsreplay.core.errors import SourceReadError
from wsreplay.core.playback import CountPlayback, PercentagePlayback
from wsreplay.server.session import ReplaySession, SessionState


class Recorder:
    def __init__(self):
        self.sent: list[bytes] = []

    async def __call__(self, payload: bytes) -> None:
        self.sent.append(payload)


def mk_config(path: Path, upfront, delimiter: bytes = b"\n") -> SessionConfig:
    return SessionConfig(delimiter=delimiter, source_path=path, interval=0.01, upfront=upfront)


async def run_to_idle(session: ReplaySession, max_ticks: int = 100) -> int:
    """Fire timers the way the host does; return how many fired."""

    ticks = 0
    while session.timer_armed:
        assert ticks < max_ticks, "session never went idle"
        await session.on_timer()
        ticks += 1
    return ticks


@pytest.mark.asyncio
async def test_count_burst_then_steady_then_idle(capture):
    out = Recorder()
    session = ReplaySession(mk_config(capture(b"a\nb\nc\n"), CountPlayback(count=2)), out)

    await session.on_open()
    assert out.sent == [b"a\n", b"b\n"]
    assert session.state is SessionState.STEADY
    assert session.timer_armed and session.active
    assert not session.closed

    await session.on_timer()
    assert out.sent == [b"a\n", b"b\n", b"c\n"]
    assert session.state is SessionState.IDLE
    assert not session.active
    assert not session.timer_armed
    assert session.closed
    session.close()


@pytest.mark.asyncio
async def test_steady_state_sends_one_record_per_tick_in_order(capture):
    records = [b"r%d\n" % i for i in range(10)]
    out = Recorder()
    session = ReplaySession(mk_config(capture(b"".join(records)), CountPlayback(count=3)), out)

    await session.on_open()
    for i in range(3, 10):
        before = len(out.sent)
        await session.on_timer()
        assert out.sent[before:] == [records[i]]

    assert out.sent == records
    assert session.state is SessionState.IDLE
    session.close()


@pytest.mark.asyncio
async def test_burst_exhausting_file_still_arms_one_timer(capture):
    out = Recorder()
    session = ReplaySession(mk_config(capture(b"a\n"), CountPlayback(count=3)), out)

    await session.on_open()
    assert out.sent == [b"a\n", b"", b""]
    assert not session.active
    assert session.timer_armed

    assert await run_to_idle(session) == 1
    assert out.sent[-1] == b""
    assert session.state is SessionState.IDLE
    assert session.closed
    session.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("upfront", [CountPlayback(count=1), PercentagePlayback(fraction=0.5)])
async def test_empty_file_never_rearms(capture, upfront):
    out = Recorder()
    session = ReplaySession(mk_config(capture(b""), upfront), out)

    await session.on_open()
    assert out.sent == [b""]
    assert await run_to_idle(session) == 1
    assert session.closed
    session.close()


@pytest.mark.asyncio
async def test_percentage_burst_then_rest_on_timer(capture):
    data = b"".join(b"%02d\n" % i for i in range(10))  # 10 records of 3 bytes
    out = Recorder()
    session = ReplaySession(mk_config(capture(data), PercentagePlayback(fraction=0.5)), out)

    await session.on_open()
    assert len(out.sent) == 5

    await run_to_idle(session)
    assert b"".join(out.sent) == data
    assert session.records_sent == 10
    assert session.bytes_sent == 30
    session.close()


@pytest.mark.asyncio
async def test_null_delimited_capture(capture):
    out = Recorder()
    config = mk_config(capture(b"x\0y\0"), CountPlayback(count=1), delimiter=b"\0")
    session = ReplaySession(config, out)

    await session.on_open()
    await run_to_idle(session)
    assert out.sent == [b"x\0", b"y\0"]
    session.close()


@pytest.mark.asyncio
async def test_sessions_on_same_file_replay_independently(capture):
    config = mk_config(capture(b"a\nb\nc\n"), CountPlayback(count=1))
    first_out, second_out = Recorder(), Recorder()
    first = ReplaySession(config, first_out, name="first")
    second = ReplaySession(config, second_out, name="second")

    await first.on_open()
    await first.on_timer()
    await second.on_open()

    assert first_out.sent == [b"a\n", b"b\n"]
    assert second_out.sent == [b"a\n"]
    first.close()
    second.close()


@pytest.mark.asyncio
async def test_send_failure_propagates(capture):
    async def broken(_payload: bytes) -> None:
        raise ConnectionResetError("peer gone")

    session = ReplaySession(mk_config(capture(b"a\n"), CountPlayback(count=1)), broken)
    with pytest.raises(ConnectionResetError):
        await session.on_open()
    session.close()


@pytest.mark.asyncio
async def test_close_releases_file_and_disarms(capture):
    session = ReplaySession(mk_config(capture(b"a\nb\n"), CountPlayback(count=1)), Recorder())
    await session.on_open()
    session.close()

    assert session.closed
    assert not session.timer_armed
    with pytest.raises(SourceReadError):
        await session.on_timer()


def test_missing_capture_fails_session_creation(tmp_path):
    with pytest.raises(SourceReadError):
        ReplaySession(mk_config(tmp_path / "gone.log", CountPlayback(count=1)), Recorder())
