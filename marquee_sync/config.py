"""
Marquee Sync Configuration - Server settings.

Provides:
- Type-safe configuration dataclass
- Loading from JSON/environment
"""

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

DEFAULT_PORT = 3000
DEFAULT_METRICS_PORT = 3001
TICK_INTERVAL_MS = 5000  # Clock resync every 5 seconds
DEFAULT_SPEED_PX_SEC = 120  # Marquee speed when the controller sends none
MAX_MESSAGE_SIZE = 50 * 1024 * 1024  # 50MB - large base64 images
SEND_TIMEOUT = 0.5


def _is_number(value, kind) -> bool:
    return isinstance(value, kind) and not isinstance(value, bool)


@dataclass
class ServerConfig:
    """Sync server configuration."""

    # WebSocket listener
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT

    # Health/metrics HTTP endpoint (None = disabled)
    metrics_port: Optional[int] = DEFAULT_METRICS_PORT

    # Timing
    tick_interval_ms: int = TICK_INTERVAL_MS
    default_speed_px_sec: float = DEFAULT_SPEED_PX_SEC

    # Transport limits
    max_message_size: int = MAX_MESSAGE_SIZE
    send_timeout: float = SEND_TIMEOUT

    def validate(self) -> "ServerConfig":
        """Raise ValueError if any field is out of range."""
        for name in ("port", "metrics_port"):
            value = getattr(self, name)
            if value is None and name == "metrics_port":
                continue
            if not _is_number(value, int) or not 1 <= value <= 65535:
                raise ValueError(f"{name} must be between 1 and 65535, got: {value!r}")
        for name, kind in (
            ("tick_interval_ms", int),
            ("default_speed_px_sec", (int, float)),
            ("max_message_size", int),
            ("send_timeout", (int, float)),
        ):
            value = getattr(self, name)
            if not _is_number(value, kind):
                raise ValueError(f"{name} must be a number, got: {value!r}")
        if self.tick_interval_ms <= 0:
            raise ValueError(f"tick_interval_ms must be positive, got: {self.tick_interval_ms}")
        if self.default_speed_px_sec <= 0:
            raise ValueError(
                f"default_speed_px_sec must be positive, got: {self.default_speed_px_sec}"
            )
        if self.max_message_size <= 0:
            raise ValueError(f"max_message_size must be positive, got: {self.max_message_size}")
        if self.send_timeout <= 0:
            raise ValueError(f"send_timeout must be positive, got: {self.send_timeout}")
        return self

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ServerConfig":
        """Create from dictionary, ignoring unknown keys."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        metrics_port = os.environ.get("METRICS_PORT", str(DEFAULT_METRICS_PORT))
        return cls(
            host=os.environ.get("MARQUEE_HOST", "0.0.0.0"),
            port=int(os.environ.get("PORT", str(DEFAULT_PORT))),
            metrics_port=int(metrics_port) if metrics_port else None,
            tick_interval_ms=int(os.environ.get("TICK_INTERVAL_MS", str(TICK_INTERVAL_MS))),
            default_speed_px_sec=float(
                os.environ.get("DEFAULT_SPEED_PX_SEC", str(DEFAULT_SPEED_PX_SEC))
            ),
            max_message_size=int(os.environ.get("MAX_MESSAGE_SIZE", str(MAX_MESSAGE_SIZE))),
            send_timeout=float(os.environ.get("SEND_TIMEOUT", str(SEND_TIMEOUT))),
        )

    @classmethod
    def load(cls, path: Path) -> "ServerConfig":
        """Load configuration from a JSON file, falling back to the environment."""
        config = cls.from_env()
        if not path.exists():
            return config

        with open(path) as f:
            data = json.load(f)

        merged = config.to_dict()
        merged.update({k: v for k, v in data.items() if k in cls.__dataclass_fields__})
        return cls(**merged)
