"""
Per-connection message routing.

Each connection starts Unassigned. The first valid ``hello`` fixes its role for
the connection's lifetime:

    UNASSIGNED --hello(player)-----> PLAYER     --close--> CLOSED
    UNASSIGNED --hello(controller)-> CONTROLLER --close--> CLOSED

Messages sent before ``hello`` are discarded without effect. Unknown types,
role-inappropriate messages and malformed payloads are logged and dropped;
nothing is ever reported back to the sender.
"""

import asyncio
import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from marquee_sync.clock import ClockBroadcaster
from marquee_sync.distributor import ConfigurationDistributor
from marquee_sync.fanout import Fanout
from marquee_sync.protocol import (
    ROLE_CONTROLLER,
    ROLE_PLAYER,
    Hello,
    InboundMessage,
    ProtocolError,
    QuickApply,
    ReportWidth,
    ResetStartAt,
    SetConfig,
    UpdateMarquee,
    init_message,
    parse_message,
    players_message,
)
from marquee_sync.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class Role(Enum):
    UNASSIGNED = "unassigned"
    PLAYER = ROLE_PLAYER
    CONTROLLER = ROLE_CONTROLLER


@dataclass
class ConnectionState:
    """Owned by the connection's handler task, not by the registry."""

    websocket: Any
    role: Role = Role.UNASSIGNED
    player_id: Optional[str] = None
    closed: bool = False


class MessageRouter:
    """Decodes inbound frames and dispatches them by role and type."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        fanout: Fanout,
        distributor: ConfigurationDistributor,
        broadcaster: ClockBroadcaster,
        lock: asyncio.Lock,
    ):
        self.registry = registry
        self.fanout = fanout
        self.distributor = distributor
        self.broadcaster = broadcaster
        self.clock = broadcaster.clock
        self.lock = lock
        self.malformed_messages = 0
        self._closing_tasks = set()

    async def handle_message(self, conn: ConnectionState, raw: Union[str, bytes]) -> None:
        """Decode and apply one frame. Never raises for bad input."""
        if conn.closed:
            return
        try:
            msg = parse_message(raw)
        except ProtocolError as e:
            self.malformed_messages += 1
            logger.warning(f"Discarding malformed message ({conn.role.value}): {e}")
            return

        if msg is None:
            logger.debug(f"Ignoring unknown message type from {conn.role.value}")
            return

        async with self.lock:
            await self._dispatch(conn, msg)

    async def _dispatch(self, conn: ConnectionState, msg: InboundMessage) -> None:
        if conn.role is Role.UNASSIGNED:
            if isinstance(msg, Hello):
                await self._handle_hello(conn, msg)
            else:
                logger.debug(f"Ignoring {type(msg).__name__} before hello")
            return

        if isinstance(msg, Hello):
            logger.debug(f"Ignoring repeated hello from {conn.role.value}")

        elif conn.role is Role.CONTROLLER:
            if isinstance(msg, SetConfig):
                await self.distributor.set_layout(msg)
            elif isinstance(msg, QuickApply):
                await self.distributor.quick_apply()
            elif isinstance(msg, UpdateMarquee):
                await self.fanout.update_marquee(msg)
            elif isinstance(msg, ResetStartAt):
                await self.broadcaster.reset_start_at()
            else:
                logger.debug(f"Ignoring {type(msg).__name__} from controller")

        elif conn.role is Role.PLAYER:
            if isinstance(msg, ReportWidth):
                await self.fanout.report_width(
                    conn.player_id, msg.reported_width, conn.websocket
                )
            else:
                logger.debug(f"Ignoring {type(msg).__name__} from player {conn.player_id}")

    async def _handle_hello(self, conn: ConnectionState, hello: Hello) -> None:
        if hello.role == ROLE_PLAYER:
            player_id = hello.player_id or f"player-{self.clock.now_ms()}-{secrets.token_hex(2)}"
            entry, superseded = self.registry.register_player(
                player_id,
                conn.websocket,
                layout=hello.layout,
                reported_width=hello.reported_width,
                connected_at=self.clock.now_ms(),
            )
            if superseded is not None:
                self._close_superseded(superseded.websocket, player_id)
            conn.role = Role.PLAYER
            conn.player_id = player_id

            logger.info(
                f"[HELLO] Player {player_id} connected "
                f"(reportedWidth={hello.reported_width})"
            )
            await self.fanout.send(
                conn.websocket,
                init_message(
                    self.clock.start_at,
                    self.clock.now_ms(),
                    player_id=player_id,
                    layout=entry.layout,
                ),
            )
            await self.fanout.notify_controllers()

        elif hello.role == ROLE_CONTROLLER:
            self.registry.register_controller(conn.websocket)
            conn.role = Role.CONTROLLER
            logger.info(f"[HELLO] Controller connected. Total: {self.registry.controller_count}")
            await self.fanout.send(
                conn.websocket, init_message(self.clock.start_at, self.clock.now_ms())
            )
            await self.fanout.send(conn.websocket, players_message(self.registry.snapshot()))

        else:
            logger.debug("Ignoring hello without a valid role")

    def _close_superseded(self, websocket: Any, player_id: str) -> None:
        """Close a replaced connection without holding the lock across the handshake."""
        task = asyncio.create_task(self._close_quietly(websocket, player_id))
        self._closing_tasks.add(task)
        task.add_done_callback(self._closing_tasks.discard)

    async def _close_quietly(self, websocket: Any, player_id: str) -> None:
        try:
            await websocket.close(4001, "Replaced by new connection")
        except Exception as e:
            logger.debug(f"Error closing superseded connection for {player_id}: {e}")

    async def handle_close(self, conn: ConnectionState) -> None:
        """Remove the connection from the registry. Runs once per connection."""
        if conn.closed:
            return
        conn.closed = True
        self.fanout.forget(conn.websocket)

        async with self.lock:
            if conn.role is Role.PLAYER and conn.player_id:
                if self.registry.unregister_player(conn.player_id, conn.websocket):
                    logger.info(f"Player disconnected: {conn.player_id}")
                    await self.fanout.notify_controllers()
            elif conn.role is Role.CONTROLLER:
                if self.registry.unregister_controller(conn.websocket):
                    logger.info(
                        f"Controller disconnected. Total: {self.registry.controller_count}"
                    )

    async def wait_closing(self) -> None:
        """Wait for pending superseded-connection closes."""
        if self._closing_tasks:
            await asyncio.gather(*list(self._closing_tasks), return_exceptions=True)
