"""Tests for connection lifecycle and the real WebSocket transport."""

import asyncio
import json

import pytest
from websockets.asyncio.client import connect
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from marquee_sync.clock import SessionClock
from marquee_sync.config import ServerConfig
from marquee_sync.server import MarqueeServer
from marquee_sync.tests.conftest import MockWebSocket, connect_controller

pytestmark = pytest.mark.asyncio


async def recv_type(websocket, msg_type: str, timeout: float = 2.0) -> dict:
    """Receive frames until one of the given type arrives (ticks may interleave)."""
    while True:
        msg = json.loads(await asyncio.wait_for(websocket.recv(), timeout=timeout))
        if msg["type"] == msg_type:
            return msg


async def test_handle_connection_registers_then_cleans_up(server):
    controller = await connect_controller(server)
    ws = MockWebSocket(
        incoming=[
            {"type": "hello", "role": "player", "playerId": "wall"},
            {"type": "reportWidth", "reportedWidth": 1600},
        ]
    )

    await server.handle_connection(ws)

    updates = controller.websocket.messages("players")
    assert [u["list"][0]["reportedWidth"] for u in updates[1:-1]] == [None, 1600]
    assert updates[-1]["list"] == []
    assert server.registry.player_count == 0


async def test_handle_connection_survives_garbage(server):
    ws = MockWebSocket(
        incoming=[
            "not json at all",
            {"type": "mystery"},
            {"type": "hello", "role": "controller"},
            ConnectionClosed(None, None),
        ]
    )

    await server.handle_connection(ws)

    assert [m["type"] for m in ws.messages()] == ["init", "players"]
    assert server.registry.controller_count == 0
    assert server.router.malformed_messages == 1


async def test_health_stats(server, fake_time):
    await connect_controller(server)
    stats = server.get_health_stats()
    assert stats["status"] == "ok"
    assert stats["startAt"] == fake_time.value
    assert stats["playersOnline"] == 0
    assert stats["controllersOnline"] == 1
    assert stats["uptime"] >= 0


async def test_end_to_end_over_websocket():
    server = MarqueeServer(ServerConfig(metrics_port=None, tick_interval_ms=20), SessionClock())

    async with serve(server.handle_connection, "127.0.0.1", 0) as ws_server:
        port = ws_server.sockets[0].getsockname()[1]
        uri = f"ws://127.0.0.1:{port}"
        server.broadcaster.start()
        try:
            async with connect(uri) as controller, connect(uri) as player:
                await controller.send(json.dumps({"type": "hello", "role": "controller"}))
                await recv_type(controller, "init")
                assert (await recv_type(controller, "players"))["list"] == []

                await player.send(
                    json.dumps(
                        {"type": "hello", "role": "player", "playerId": "p1", "reportedWidth": 1920}
                    )
                )
                init = await recv_type(player, "init")
                assert init["playerId"] == "p1"

                roster = await recv_type(controller, "players")
                assert roster["list"][0]["playerId"] == "p1"

                tick = await recv_type(player, "tick")
                assert tick["startAt"] == init["startAt"]
        finally:
            await server.cleanup()

    assert server.registry.player_count == 0
    assert server.registry.controller_count == 0


async def test_reconnect_over_websocket_closes_old_socket():
    server = MarqueeServer(ServerConfig(metrics_port=None), SessionClock())
    hello = json.dumps({"type": "hello", "role": "player", "playerId": "dup"})

    async with serve(server.handle_connection, "127.0.0.1", 0) as ws_server:
        port = ws_server.sockets[0].getsockname()[1]
        uri = f"ws://127.0.0.1:{port}"
        async with connect(uri) as first, connect(uri) as second:
            await first.send(hello)
            await first.recv()
            await second.send(hello)
            await second.recv()

            with pytest.raises(ConnectionClosed):
                await asyncio.wait_for(first.recv(), timeout=2)
            assert first.close_code == 4001
            assert server.registry.player_count == 1
        await server.cleanup()


async def test_run_and_stop():
    server = MarqueeServer(
        ServerConfig(host="127.0.0.1", port=0, metrics_port=None, tick_interval_ms=10)
    )
    task = asyncio.create_task(server.run())
    await asyncio.sleep(0.05)
    assert server.broadcaster.running

    server.stop()
    await asyncio.wait_for(task, timeout=2)
    assert not server.broadcaster.running


async def test_run_closes_listener_when_metrics_port_is_busy(monkeypatch):
    async def idle(reader, writer):
        writer.close()

    busy = await asyncio.start_server(idle, "127.0.0.1", 0)
    busy_port = busy.sockets[0].getsockname()[1]

    started = {}

    async def recording_serve(*args, **kwargs):
        ws_server = await serve(*args, **kwargs)
        started["port"] = ws_server.sockets[0].getsockname()[1]
        return ws_server

    monkeypatch.setattr("marquee_sync.server.ws_serve", recording_serve)
    server = MarqueeServer(ServerConfig(host="127.0.0.1", port=0, metrics_port=busy_port))
    try:
        with pytest.raises(OSError):
            await server.run()
    finally:
        busy.close()
        await busy.wait_closed()

    assert not server.broadcaster.running
    # The WebSocket port was released, so it can be bound again
    rebound = await asyncio.start_server(idle, "127.0.0.1", started["port"])
    rebound.close()
    await rebound.wait_closed()
