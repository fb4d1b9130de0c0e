"""
Health and metrics HTTP endpoint for sync server monitoring.

Provides lightweight HTTP endpoints for production monitoring:
- GET /health - JSON health check
- GET /metrics - Prometheus-compatible text format metrics
"""

import asyncio
import json
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from marquee_sync.server import MarqueeServer

logger = logging.getLogger(__name__)


async def handle_http_request(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    server: "MarqueeServer",
) -> None:
    """Handle a single HTTP request."""
    try:
        request_line = await reader.readline()
        if not request_line:
            return

        parts = request_line.decode("utf-8").strip().split()
        if len(parts) < 2:
            return

        method, path = parts[0], parts[1]

        # Headers are not needed for these endpoints
        while True:
            line = await reader.readline()
            if not line or line == b"\r\n":
                break

        if method == "GET" and path == "/health":
            _write_response(writer, "200 OK", "application/json", render_health(server))
        elif method == "GET" and path == "/metrics":
            _write_response(
                writer, "200 OK", "text/plain; version=0.0.4", render_metrics(server)
            )
        else:
            _write_response(writer, "404 Not Found", "text/plain", "Not Found")

    except Exception as e:
        logger.error(f"Error handling metrics request: {e}")
    finally:
        try:
            await writer.drain()
            writer.close()
            await writer.wait_closed()
        except Exception as e:
            logger.debug(f"Error closing metrics connection: {e}")


def _write_response(writer: asyncio.StreamWriter, status: str, content_type: str, body: str):
    payload = body.encode("utf-8")
    head = (
        f"HTTP/1.1 {status}\r\n"
        f"Content-Type: {content_type}\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    writer.write(head.encode("utf-8") + payload)


def render_health(server: "MarqueeServer") -> str:
    return json.dumps(server.get_health_stats(), indent=2)


def render_metrics(server: "MarqueeServer") -> str:
    """Prometheus text format."""
    stats = server.get_health_stats()
    registry = server.registry
    fanout = server.fanout

    metrics = [
        ("marquee_uptime_ms", "gauge", "Server uptime in milliseconds", stats["uptime"]),
        ("marquee_start_at_ms", "gauge", "Current session anchor (startAt)", stats["startAt"]),
        ("marquee_players_online", "gauge", "Currently registered players", stats["playersOnline"]),
        (
            "marquee_controllers_online",
            "gauge",
            "Currently connected controllers",
            stats["controllersOnline"],
        ),
        (
            "marquee_player_connects_total",
            "counter",
            "Player registrations since start",
            registry.player_connects,
        ),
        (
            "marquee_controller_connects_total",
            "counter",
            "Controller registrations since start",
            registry.controller_connects,
        ),
        (
            "marquee_player_disconnects_total",
            "counter",
            "Player entries removed on close",
            registry.player_disconnects,
        ),
        (
            "marquee_controller_disconnects_total",
            "counter",
            "Controller connections closed",
            registry.controller_disconnects,
        ),
        ("marquee_messages_sent_total", "counter", "Messages delivered", fanout.messages_sent),
        (
            "marquee_send_failures_total",
            "counter",
            "Sends dropped on error or timeout",
            fanout.send_failures,
        ),
        (
            "marquee_slow_clients_dropped_total",
            "counter",
            "Clients closed after a send timed out",
            fanout.slow_clients_dropped,
        ),
        (
            "marquee_player_list_notifications_total",
            "counter",
            "Player list pushes to controllers",
            fanout.notifications_sent,
        ),
        ("marquee_ticks_total", "counter", "Tick broadcasts sent", server.broadcaster.ticks_sent),
        (
            "marquee_quick_applies_total",
            "counter",
            "Quick apply runs",
            server.distributor.quick_applies,
        ),
        ("marquee_resets_total", "counter", "startAt resets", server.clock.reset_count),
        (
            "marquee_malformed_messages_total",
            "counter",
            "Inbound messages discarded as malformed",
            server.router.malformed_messages,
        ),
    ]

    lines = []
    for name, kind, help_text, value in metrics:
        lines.append(f"# HELP {name} {help_text}")
        lines.append(f"# TYPE {name} {kind}")
        lines.append(f"{name} {value}")
        lines.append("")
    return "\n".join(lines)


async def start_metrics_server(
    server: "MarqueeServer",
    port: int,
    host: str = "0.0.0.0",
) -> asyncio.Server:
    """Start the metrics HTTP server.

    Args:
        server: MarqueeServer instance to expose metrics for
        port: Port to listen on
        host: Host to bind to (default: 0.0.0.0)

    Returns:
        asyncio.Server instance
    """

    async def client_handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        await handle_http_request(reader, writer, server)

    metrics_server = await asyncio.start_server(client_handler, host, port)
    logger.info(f"Metrics server: http://localhost:{port}/health, /metrics")
    return metrics_server
