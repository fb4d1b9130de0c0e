"""
Wire protocol for the marquee sync WebSocket.

Inbound frames are decoded once, here, into one of a closed set of message
dataclasses. Every message is a JSON object whose ``type`` key selects the
variant:

    hello          client -> server   role, playerId?, layout?, reportedWidth?
    setConfig      controller         playerId, screenCount?, screenIndex?, offsetPx?
    quickApply     controller         (no body)
    updateMarquee  controller         text, speed?, styles?, images?
    resetStartAt   controller         (no body)
    reportWidth    player             reportedWidth

Outbound builders (``init``, ``tick``, ``reset``, ``config``, ``players``,
``marquee``) live at the bottom of the module.

Older clients send ``config`` instead of ``layout`` and ``actualWidth``
instead of ``reportedWidth``; both spellings are accepted.
"""

import json
import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from marquee_sync.registry import PlayerLayout

ROLE_PLAYER = "player"
ROLE_CONTROLLER = "controller"
ROLES = (ROLE_PLAYER, ROLE_CONTROLLER)

_MISSING = object()


class ProtocolError(ValueError):
    """Raised for a frame that cannot be decoded into a known message."""


# ---------------------------------------------------------------------------
# Inbound messages
# ---------------------------------------------------------------------------


@dataclass
class Hello:
    role: Optional[str]
    player_id: Optional[str] = None
    layout: Optional[PlayerLayout] = None
    reported_width: Optional[int] = None


@dataclass
class SetConfig:
    player_id: str
    screen_count: Optional[int] = None
    screen_index: Optional[int] = None
    offset_px: Optional[float] = None


@dataclass
class QuickApply:
    pass


@dataclass
class UpdateMarquee:
    text: str = ""
    speed: Optional[float] = None
    styles: Any = None
    images: List[Any] = field(default_factory=list)


@dataclass
class ReportWidth:
    reported_width: Optional[int] = None


@dataclass
class ResetStartAt:
    pass


InboundMessage = Union[Hello, SetConfig, QuickApply, UpdateMarquee, ReportWidth, ResetStartAt]


# ---------------------------------------------------------------------------
# Field validation helpers
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def parse_width(value: Any) -> Optional[int]:
    """Normalize a self-reported width.

    ``None`` clears the width. Numeric strings and non-negative floats are
    accepted (floats truncate). Anything else raises ProtocolError.
    """
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise ProtocolError(f"width is not numeric: {value!r}")
    if not _is_number(value) or value < 0:
        raise ProtocolError(f"width must be a non-negative number: {value!r}")
    return int(value)


def _positive_int(data: dict, key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if not _is_number(value) or value != int(value) or value < 1:
        raise ProtocolError(f"{key} must be an integer >= 1: {value!r}")
    return int(value)


def _offset(data: dict, key: str = "offsetPx") -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    if not _is_number(value) or value < 0:
        raise ProtocolError(f"{key} must be a non-negative number: {value!r}")
    return value


def _aliased(data: dict, key: str, alias: str) -> Any:
    if key in data:
        return data[key]
    return data.get(alias, _MISSING)


def parse_layout(value: Any, base: Optional[PlayerLayout] = None) -> PlayerLayout:
    """Merge a layout object from the wire over ``base`` (default layout)."""
    if not isinstance(value, dict):
        raise ProtocolError(f"layout must be an object: {value!r}")
    base = base or PlayerLayout()
    screen_count = _positive_int(value, "screenCount")
    screen_index = _positive_int(value, "screenIndex")
    offset_px = _offset(value)
    return PlayerLayout(
        screen_count=screen_count if screen_count is not None else base.screen_count,
        screen_index=screen_index if screen_index is not None else base.screen_index,
        offset_px=offset_px if offset_px is not None else base.offset_px,
    )


# ---------------------------------------------------------------------------
# Decoder
# ---------------------------------------------------------------------------


def _parse_hello(data: dict) -> Hello:
    role = data.get("role")
    if role not in ROLES:
        return Hello(role=None)

    # Only strings and integers name a player; anything else gets a generated id
    player_id = data.get("playerId")
    if isinstance(player_id, int) and not isinstance(player_id, bool):
        player_id = str(player_id)
    elif not isinstance(player_id, str):
        player_id = None

    # A bad layout or width in hello does not block registration
    layout = None
    raw_layout = _aliased(data, "layout", "config")
    if raw_layout is not _MISSING and raw_layout is not None:
        try:
            layout = parse_layout(raw_layout)
        except ProtocolError:
            layout = None

    reported_width = None
    raw_width = _aliased(data, "reportedWidth", "actualWidth")
    if raw_width is not _MISSING:
        try:
            reported_width = parse_width(raw_width)
        except ProtocolError:
            reported_width = None

    return Hello(
        role=role,
        player_id=player_id or None,
        layout=layout,
        reported_width=reported_width,
    )


def _parse_set_config(data: dict) -> SetConfig:
    player_id = data.get("playerId")
    if not isinstance(player_id, str) or not player_id:
        raise ProtocolError(f"setConfig requires a playerId: {player_id!r}")
    return SetConfig(
        player_id=player_id,
        screen_count=_positive_int(data, "screenCount"),
        screen_index=_positive_int(data, "screenIndex"),
        offset_px=_offset(data),
    )


def _parse_update_marquee(data: dict) -> UpdateMarquee:
    text = data.get("text")
    if text is None:
        text = ""
    if not isinstance(text, str):
        raise ProtocolError(f"marquee text must be a string: {type(text).__name__}")

    speed = data.get("speed")
    if not _is_number(speed) or speed <= 0:
        speed = None

    images = data.get("images")
    if images is None:
        images = []
    if not isinstance(images, list):
        raise ProtocolError(f"images must be a list: {type(images).__name__}")

    return UpdateMarquee(text=text, speed=speed, styles=data.get("styles"), images=images)


def _parse_report_width(data: dict) -> ReportWidth:
    raw = _aliased(data, "reportedWidth", "actualWidth")
    return ReportWidth(reported_width=parse_width(None if raw is _MISSING else raw))


_DECODERS = {
    "hello": _parse_hello,
    "setConfig": _parse_set_config,
    "quickApply": lambda data: QuickApply(),
    "updateMarquee": _parse_update_marquee,
    "reportWidth": _parse_report_width,
    "resetStartAt": lambda data: ResetStartAt(),
}


def message_type(data: Any) -> Optional[str]:
    if isinstance(data, dict) and isinstance(data.get("type"), str):
        return data["type"]
    return None


def parse_message(raw: Union[str, bytes]) -> Optional[InboundMessage]:
    """Decode one inbound frame.

    Returns None for a well-formed message of an unknown type. Raises
    ProtocolError when the frame is not a JSON object with a string ``type``
    or when a known message carries invalid fields.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"invalid JSON: {e}")

    msg_type = message_type(data)
    if msg_type is None:
        raise ProtocolError("message is not an object with a string 'type'")

    decoder = _DECODERS.get(msg_type)
    if decoder is None:
        return None
    return decoder(data)


# ---------------------------------------------------------------------------
# Outbound messages
# ---------------------------------------------------------------------------


def init_message(
    start_at: int,
    now: int,
    player_id: Optional[str] = None,
    layout: Optional[PlayerLayout] = None,
) -> dict:
    msg = {"type": "init", "startAt": start_at, "now": now}
    if player_id is not None:
        msg["playerId"] = player_id
    if layout is not None:
        msg["layout"] = layout.to_dict()
    return msg


def tick_message(now: int, start_at: int) -> dict:
    return {"type": "tick", "now": now, "startAt": start_at}


def reset_message(start_at: int) -> dict:
    return {"type": "reset", "startAt": start_at, "now": start_at}


def config_message(layout: PlayerLayout) -> dict:
    return {"type": "config", **layout.to_dict()}


def players_message(snapshot: List[dict]) -> dict:
    return {"type": "players", "list": snapshot}


def marquee_message(update: UpdateMarquee, default_speed: float) -> dict:
    return {
        "type": "marquee",
        "text": update.text,
        "speed": update.speed if update.speed is not None else default_speed,
        "styles": update.styles,
        "images": update.images,
    }
