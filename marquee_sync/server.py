"""
Marquee Sync Server - timing and layout hub for multi-screen marquees.

Display clients ("players") and operator consoles ("controllers") hold a
persistent WebSocket to this server. The server keeps every party on a shared
time anchor and hands each player its slice of one continuous marquee.

Architecture:
    Player 1 ──┐
    Player 2 ──┼──> MarqueeServer <── Controller(s)
    Player N ──┘         │
                    tick / reset every 5s

Usage:
    marquee-sync --port 3000
"""

import asyncio
import logging
from typing import Optional

from websockets.asyncio.server import serve as ws_serve
from websockets.exceptions import ConnectionClosed

from marquee_sync.clock import ClockBroadcaster, SessionClock
from marquee_sync.config import ServerConfig
from marquee_sync.distributor import ConfigurationDistributor
from marquee_sync.fanout import Fanout
from marquee_sync.registry import ConnectionRegistry, now_ms
from marquee_sync.router import ConnectionState, MessageRouter

logger = logging.getLogger(__name__)


class MarqueeServer:
    """
    Central sync server.

    Responsibilities:
    - Accept player and controller WebSocket connections
    - Track registered players and their layouts
    - Broadcast the session anchor on a fixed interval
    - Apply single-player and bulk layout changes
    - Expose connection counters for the health endpoint
    """

    def __init__(self, config: Optional[ServerConfig] = None, clock: Optional[SessionClock] = None):
        self.config = config or ServerConfig()

        # All registry mutations and the broadcasts they trigger run under this lock
        self._lock = asyncio.Lock()

        self.clock = clock or SessionClock()
        self.registry = ConnectionRegistry()
        self.fanout = Fanout(
            self.registry,
            send_timeout=self.config.send_timeout,
            default_speed=self.config.default_speed_px_sec,
        )
        self.distributor = ConfigurationDistributor(self.registry, self.fanout)
        self.broadcaster = ClockBroadcaster(
            self.clock,
            self.fanout,
            self._lock,
            interval_ms=self.config.tick_interval_ms,
        )
        self.router = MessageRouter(
            self.registry,
            self.fanout,
            self.distributor,
            self.broadcaster,
            self._lock,
        )

        self._stop_event: Optional[asyncio.Event] = None
        self._started_at_ms = now_ms()

    async def handle_connection(self, websocket) -> None:
        """Serve one client connection until it closes."""
        conn = ConnectionState(websocket=websocket)
        try:
            async for message in websocket:
                try:
                    await self.router.handle_message(conn, message)
                except Exception as e:
                    logger.error(f"Error handling {conn.role.value} message: {e}", exc_info=True)
        except ConnectionClosed as e:
            logger.debug(f"Connection closed ({conn.role.value}): {e}")
        except Exception as e:
            logger.error(f"Connection error: {e}", exc_info=True)
        finally:
            await self.router.handle_close(conn)

    def get_health_stats(self) -> dict:
        """Snapshot of the counters read by the health endpoint."""
        return {
            "status": "ok",
            "uptime": now_ms() - self._started_at_ms,
            "startAt": self.clock.start_at,
            "playersOnline": self.registry.player_count,
            "controllersOnline": self.registry.controller_count,
        }

    async def run(self):
        """Start listening and block until stop() is called."""
        self._stop_event = asyncio.Event()

        # max_size must fit base64-embedded marquee images
        ws_server = await ws_serve(
            self.handle_connection,
            self.config.host,
            self.config.port,
            max_size=self.config.max_message_size,
        )
        logger.info(f"Sync WebSocket server: ws://{self.config.host}:{self.config.port}")

        metrics_server = None
        try:
            if self.config.metrics_port is not None:
                from marquee_sync.metrics import start_metrics_server

                metrics_server = await start_metrics_server(
                    self, self.config.metrics_port, self.config.host
                )

            self.broadcaster.start()
            logger.info(
                f"Marquee sync server ready. startAt={self.clock.start_at}, "
                f"tick every {self.config.tick_interval_ms}ms"
            )

            await self._stop_event.wait()
        finally:
            await self.broadcaster.stop()
            ws_server.close()
            if metrics_server:
                metrics_server.close()
                await metrics_server.wait_closed()
            await ws_server.wait_closed()

    def stop(self):
        """Stop the server."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def cleanup(self):
        """Clean up resources."""
        await self.broadcaster.stop()
        await self.router.wait_closing()
        await self.fanout.wait_closing()
