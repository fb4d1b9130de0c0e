"""
Marquee Sync - shared clock and layout server for multi-screen marquees.

Central server that accepts connections from display players and operator
controllers, keeps everyone on one time anchor, and assigns each player its
slice of a single continuous scrolling marquee.
"""

from .clock import ClockBroadcaster, SessionClock
from .config import ServerConfig
from .distributor import ConfigurationDistributor, compute_quick_apply, merge_layout
from .fanout import Fanout
from .protocol import ProtocolError, parse_message
from .registry import ConnectionRegistry, PlayerEntry, PlayerLayout
from .router import ConnectionState, MessageRouter, Role
from .server import MarqueeServer

__all__ = [
    "MarqueeServer",
    "ServerConfig",
    "ConnectionRegistry",
    "PlayerEntry",
    "PlayerLayout",
    "MessageRouter",
    "ConnectionState",
    "Role",
    "SessionClock",
    "ClockBroadcaster",
    "ConfigurationDistributor",
    "Fanout",
    "ProtocolError",
    "compute_quick_apply",
    "merge_layout",
    "parse_message",
]
