"""
Connection registry - authoritative set of connected players and controllers.

The registry holds plain state only. It performs no I/O and no locking; the
server serializes every call through its single asyncio lock so that a
mutation and the broadcasts it triggers appear atomic to other connections.
"""

import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

DEFAULT_SCREEN_COUNT = 2
DEFAULT_SCREEN_INDEX = 1
DEFAULT_OFFSET_PX = 0


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds since the epoch."""
    return int(time.time() * 1000)


@dataclass
class PlayerLayout:
    """A player's slice of the shared marquee."""

    screen_count: int = DEFAULT_SCREEN_COUNT
    screen_index: int = DEFAULT_SCREEN_INDEX
    offset_px: float = DEFAULT_OFFSET_PX

    def to_dict(self) -> dict:
        """Wire representation (camelCase keys)."""
        return {
            "screenCount": self.screen_count,
            "screenIndex": self.screen_index,
            "offsetPx": self.offset_px,
        }


@dataclass
class PlayerEntry:
    """One registered display client."""

    player_id: str
    websocket: Any
    layout: PlayerLayout = field(default_factory=PlayerLayout)
    reported_width: Optional[int] = None
    connected_at: int = field(default_factory=now_ms)
    seq: int = 0  # Registration order, tie-break for equal connected_at

    def to_dict(self) -> dict:
        return {
            "playerId": self.player_id,
            "layout": self.layout.to_dict(),
            "reportedWidth": self.reported_width,
            "connectedAt": self.connected_at,
        }


class ConnectionRegistry:
    """Players keyed by id plus the set of controller connections."""

    def __init__(self):
        self._players: Dict[str, PlayerEntry] = {}
        self._controllers: Set[Any] = set()
        self._seq = itertools.count(1)

        # Lifetime counters for the health endpoint
        self.player_connects = 0
        self.player_disconnects = 0
        self.controller_connects = 0
        self.controller_disconnects = 0

    # -- players -----------------------------------------------------------

    def register_player(
        self,
        player_id: str,
        websocket: Any,
        layout: Optional[PlayerLayout] = None,
        reported_width: Optional[int] = None,
        connected_at: Optional[int] = None,
    ) -> Tuple[PlayerEntry, Optional[PlayerEntry]]:
        """Install a player entry, evicting any existing entry with the same id.

        Returns ``(entry, superseded)``. The caller must close
        ``superseded.websocket`` when it is not None; the evicted entry is
        already unreachable through the registry.
        """
        superseded = self._players.pop(player_id, None)
        if superseded is not None:
            logger.info(f"[HELLO] Player {player_id} reconnected, replacing previous connection")

        entry = PlayerEntry(
            player_id=player_id,
            websocket=websocket,
            layout=layout if layout is not None else PlayerLayout(),
            reported_width=reported_width,
            connected_at=connected_at if connected_at is not None else now_ms(),
            seq=next(self._seq),
        )
        self._players[player_id] = entry
        self.player_connects += 1
        return entry, superseded

    def unregister_player(self, player_id: str, websocket: Any) -> bool:
        """Remove a player if its entry still belongs to ``websocket``.

        Returns True when an entry was removed. A connection that was already
        superseded by a reconnect leaves the newer entry untouched.
        """
        entry = self._players.get(player_id)
        if entry is None or entry.websocket is not websocket:
            return False
        del self._players[player_id]
        self.player_disconnects += 1
        return True

    def get_player(self, player_id: str) -> Optional[PlayerEntry]:
        return self._players.get(player_id)

    def players(self) -> List[PlayerEntry]:
        """Player entries in connection order."""
        return sorted(self._players.values(), key=lambda p: (p.connected_at, p.seq))

    def snapshot(self) -> List[dict]:
        """Serializable player list sorted ascending by ``connectedAt``."""
        return [p.to_dict() for p in self.players()]

    # -- controllers -------------------------------------------------------

    def register_controller(self, websocket: Any) -> Any:
        self._controllers.add(websocket)
        self.controller_connects += 1
        return websocket

    def unregister_controller(self, websocket: Any) -> bool:
        if websocket not in self._controllers:
            return False
        self._controllers.discard(websocket)
        self.controller_disconnects += 1
        return True

    def controllers(self) -> List[Any]:
        return list(self._controllers)

    # -- counters ----------------------------------------------------------

    @property
    def player_count(self) -> int:
        return len(self._players)

    @property
    def controller_count(self) -> int:
        return len(self._controllers)

    def player_sockets(self) -> List[Any]:
        return [p.websocket for p in self._players.values()]
