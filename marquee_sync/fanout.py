"""
Fanout - delivers state to the right audience.

Sends are fire-and-forget: each one is preceded by a liveness check and any
transport failure is swallowed at the send site, so a dead or slow client can
never abort the mutation that triggered the broadcast.

Broadcasts send to every target concurrently, so one round costs at most one
send timeout however many clients stall. A client that times out is marked
stalled and closed in the background; later sends skip it.

All methods that read the registry expect the caller to hold the server lock.
"""

import asyncio
import json
import logging
from typing import Any, Iterable, Optional, Tuple

import websockets
from websockets.protocol import State

from marquee_sync.config import DEFAULT_SPEED_PX_SEC, SEND_TIMEOUT
from marquee_sync.protocol import UpdateMarquee, marquee_message, players_message
from marquee_sync.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

SLOW_CLIENT_CLOSE_CODE = 1008


def is_open(websocket: Any) -> bool:
    """True while the transport reports itself open."""
    return getattr(websocket, "state", None) is State.OPEN


class Fanout:
    """Audience-aware broadcaster on top of the connection registry."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        send_timeout: float = SEND_TIMEOUT,
        default_speed: float = DEFAULT_SPEED_PX_SEC,
    ):
        self.registry = registry
        self.send_timeout = send_timeout
        self.default_speed = default_speed
        self.messages_sent = 0
        self.send_failures = 0
        self.slow_clients_dropped = 0
        self.notifications_sent = 0
        self._stalled = set()
        self._closing_tasks = set()

    async def send(self, websocket: Any, payload: dict, message: Optional[str] = None) -> bool:
        """Send one message if the connection is open. Returns True on success."""
        if websocket in self._stalled or not is_open(websocket):
            return False
        if message is None:
            message = json.dumps(payload)
        try:
            await asyncio.wait_for(websocket.send(message), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            self.send_failures += 1
            logger.warning(f"Dropping slow client after {payload.get('type')} send timed out")
            self._drop_slow_client(websocket)
            return False
        except websockets.exceptions.ConnectionClosed as e:
            self.send_failures += 1
            logger.debug(f"Dropped {payload.get('type')} to closed client: {e!r}")
            return False
        except Exception as e:
            self.send_failures += 1
            logger.debug(f"Failed to send {payload.get('type')}: {e}")
            return False
        self.messages_sent += 1
        return True

    def _drop_slow_client(self, websocket: Any) -> None:
        """Stop sending to a stalled client and close it off the lock."""
        if websocket in self._stalled:
            return
        self._stalled.add(websocket)
        self.slow_clients_dropped += 1
        task = asyncio.create_task(self._close_quietly(websocket))
        self._closing_tasks.add(task)
        task.add_done_callback(self._closing_tasks.discard)

    async def _close_quietly(self, websocket: Any) -> None:
        try:
            await websocket.close(SLOW_CLIENT_CLOSE_CODE, "Send timeout")
        except Exception as e:
            logger.debug(f"Error closing slow client: {e}")

    def forget(self, websocket: Any) -> None:
        """Called once a connection has closed."""
        self._stalled.discard(websocket)

    async def wait_closing(self) -> None:
        """Wait for pending slow-client closes."""
        if self._closing_tasks:
            await asyncio.gather(*list(self._closing_tasks), return_exceptions=True)

    async def _send_many(self, targets: Iterable[Any], payload: dict) -> int:
        message = json.dumps(payload)
        results = await asyncio.gather(
            *(self.send(websocket, payload, message) for websocket in list(targets))
        )
        return sum(1 for delivered in results if delivered)

    async def send_each(self, deliveries: Iterable[Tuple[Any, dict]]) -> int:
        """Send a distinct payload to each socket, concurrently."""
        results = await asyncio.gather(
            *(self.send(websocket, payload) for websocket, payload in list(deliveries))
        )
        return sum(1 for delivered in results if delivered)

    async def to_players(self, payload: dict) -> int:
        return await self._send_many(self.registry.player_sockets(), payload)

    async def to_controllers(self, payload: dict) -> int:
        return await self._send_many(self.registry.controllers(), payload)

    async def to_everyone(self, payload: dict) -> int:
        """Players first, then controllers, in a single concurrent round."""
        targets = list(self.registry.player_sockets()) + list(self.registry.controllers())
        return await self._send_many(targets, payload)

    async def notify_controllers(self) -> int:
        """Push the current player list to every controller."""
        self.notifications_sent += 1
        return await self.to_controllers(players_message(self.registry.snapshot()))

    async def update_marquee(self, update: UpdateMarquee) -> int:
        """Forward new marquee content to players only."""
        payload = marquee_message(update, self.default_speed)
        image_info = [
            f"img{i}:{len(img) if isinstance(img, str) else 0}chars"
            for i, img in enumerate(update.images)
        ]
        logger.debug(
            f"[MARQUEE] text={update.text[:30]!r} styles={update.styles is not None} "
            f"images={image_info}"
        )
        return await self.to_players(payload)

    async def report_width(
        self, player_id: str, width: Optional[int], websocket: Any = None
    ) -> bool:
        """Record a player's self-measured width.

        Controllers are notified only when the stored value changes. Returns
        True if a notification was sent. When ``websocket`` is given, a
        connection that has been superseded by a reconnect is ignored.
        """
        entry = self.registry.get_player(player_id)
        if entry is None:
            return False
        if websocket is not None and entry.websocket is not websocket:
            return False
        old_width = entry.reported_width
        entry.reported_width = width
        if old_width == width:
            return False
        logger.info(
            f"[REPORT] Player {player_id} width: {width}px "
            f"(was: {old_width if old_width is not None else 'unknown'})"
        )
        await self.notify_controllers()
        return True
