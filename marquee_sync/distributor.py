"""
Layout distribution - single-player edits and the quick-apply bulk layout.
"""

import logging
from typing import List, Optional, Tuple

from marquee_sync.fanout import Fanout
from marquee_sync.protocol import SetConfig, config_message
from marquee_sync.registry import ConnectionRegistry, PlayerEntry, PlayerLayout

logger = logging.getLogger(__name__)


def merge_layout(
    current: Optional[PlayerLayout],
    screen_count: Optional[int] = None,
    screen_index: Optional[int] = None,
    offset_px: Optional[float] = None,
) -> PlayerLayout:
    """Overlay the supplied fields on ``current``; None keeps the prior value."""
    current = current or PlayerLayout()
    if offset_px is None:
        offset_px = current.offset_px if current.offset_px is not None else 0
    return PlayerLayout(
        screen_count=screen_count if screen_count is not None else current.screen_count,
        screen_index=screen_index if screen_index is not None else current.screen_index,
        offset_px=offset_px,
    )


def compute_quick_apply(players: List[PlayerEntry]) -> List[Tuple[PlayerEntry, PlayerLayout]]:
    """Assign sequential screens and cumulative offsets in connection order.

    Screen ``i`` starts where the widths of screens ``0..i-1`` end. A player
    without a reported width adds nothing to the running offset.
    """
    screen_count = len(players)
    cumulative_offset = 0
    assignments = []
    for idx, player in enumerate(players):
        layout = PlayerLayout(
            screen_count=screen_count,
            screen_index=idx + 1,
            offset_px=cumulative_offset,
        )
        assignments.append((player, layout))
        if player.reported_width:
            cumulative_offset += player.reported_width
    return assignments


class ConfigurationDistributor:
    """Applies layout changes to the registry and pushes them out."""

    def __init__(self, registry: ConnectionRegistry, fanout: Fanout):
        self.registry = registry
        self.fanout = fanout
        self.quick_applies = 0

    async def set_layout(self, request: SetConfig) -> bool:
        """Merge a partial layout into one player. Caller holds the lock.

        Returns False (and does nothing) for an unknown player id.
        """
        entry = self.registry.get_player(request.player_id)
        if entry is None:
            logger.debug(f"[CONFIG] Ignoring setConfig for unknown player {request.player_id}")
            return False

        entry.layout = merge_layout(
            entry.layout,
            screen_count=request.screen_count,
            screen_index=request.screen_index,
            offset_px=request.offset_px,
        )
        await self.fanout.send(entry.websocket, config_message(entry.layout))
        logger.info(f"[CONFIG] Config updated for {entry.player_id}: {entry.layout.to_dict()}")
        await self.fanout.notify_controllers()
        return True

    async def quick_apply(self) -> List[Tuple[str, PlayerLayout]]:
        """Re-layout every registered player in one pass. Caller holds the lock."""
        assignments = compute_quick_apply(self.registry.players())
        for entry, layout in assignments:
            entry.layout = layout
            logger.info(
                f"[QUICK APPLY] Player {entry.player_id}: screen {layout.screen_index}/"
                f"{layout.screen_count}, offset={layout.offset_px}, "
                f"width={entry.reported_width if entry.reported_width else 'unknown'}"
            )
        await self.fanout.send_each(
            [(entry.websocket, config_message(layout)) for entry, layout in assignments]
        )

        self.quick_applies += 1
        logger.info(f"[QUICK APPLY] {len(assignments)} players configured with auto offset")
        await self.fanout.notify_controllers()
        return [(entry.player_id, layout) for entry, layout in assignments]
