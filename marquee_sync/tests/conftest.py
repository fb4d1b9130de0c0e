"""Shared pytest fixtures for the marquee sync test suite.

The transport is replaced by an in-memory MockWebSocket so tests need no
network access.
"""

from __future__ import annotations

import json
from typing import Any, List, Optional

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from marquee_sync.clock import SessionClock
from marquee_sync.config import ServerConfig
from marquee_sync.router import ConnectionState
from marquee_sync.server import MarqueeServer


class MockWebSocket:
    """Mock WebSocket connection recording everything sent to it."""

    def __init__(self, incoming: Optional[List[Any]] = None):
        self.state = State.OPEN
        self.sent: List[str] = []
        self.incoming = list(incoming or [])
        self.close_code = None
        self.close_reason = None
        self.remote_address = ("127.0.0.1", 12345)

    @property
    def closed(self) -> bool:
        return self.state is State.CLOSED

    async def send(self, message):
        if self.state is not State.OPEN:
            raise ConnectionClosed(None, None)
        self.sent.append(message)

    async def close(self, code=1000, reason=""):
        self.state = State.CLOSED
        self.close_code = code
        self.close_reason = reason

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.incoming:
            if isinstance(message, Exception):
                raise message
            yield message if isinstance(message, str) else json.dumps(message)

    def messages(self, msg_type: Optional[str] = None) -> List[dict]:
        """Decoded sent messages, optionally filtered by type."""
        decoded = [json.loads(m) for m in self.sent]
        if msg_type is None:
            return decoded
        return [m for m in decoded if m.get("type") == msg_type]

    def clear(self):
        self.sent.clear()


class FakeTime:
    """Controllable millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.value = start

    def __call__(self) -> int:
        return self.value

    def advance(self, ms: int = 1) -> int:
        self.value += ms
        return self.value


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def server(fake_time) -> MarqueeServer:
    config = ServerConfig(metrics_port=None, tick_interval_ms=20)
    return MarqueeServer(config, clock=SessionClock(time_fn=fake_time))


async def send(server: MarqueeServer, conn: ConnectionState, message: Any) -> None:
    raw = message if isinstance(message, (str, bytes)) else json.dumps(message)
    await server.router.handle_message(conn, raw)


async def connect_player(
    server: MarqueeServer,
    player_id: Optional[str] = None,
    reported_width: Optional[int] = None,
    fake_time: Optional[FakeTime] = None,
    **extra,
) -> ConnectionState:
    """Open a mock connection and register it as a player."""
    if fake_time is not None:
        fake_time.advance(10)
    conn = ConnectionState(websocket=MockWebSocket())
    hello = {"type": "hello", "role": "player", **extra}
    if player_id is not None:
        hello["playerId"] = player_id
    if reported_width is not None:
        hello["reportedWidth"] = reported_width
    await send(server, conn, hello)
    return conn


async def connect_controller(server: MarqueeServer) -> ConnectionState:
    conn = ConnectionState(websocket=MockWebSocket())
    await send(server, conn, {"type": "hello", "role": "controller"})
    return conn
