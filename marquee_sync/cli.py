"""
Marquee Sync CLI - Command-line interface for the sync server.

Entry point:
    marquee-sync   - run the WebSocket sync server
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from marquee_sync.config import ServerConfig
from marquee_sync.logging_config import configure_logging


def validate_port(value: str) -> int:
    """Validate port number is in valid range."""
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port number: {value}")

    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"Port must be between 1 and 65535, got: {port}")
    return port


def validate_positive_int(value: str) -> int:
    """Validate positive integer."""
    try:
        num = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid integer: {value}")
    if num <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got: {num}")
    return num


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marquee-sync",
        description="Marquee Sync Server - shared clock and layout for multi-screen marquees",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  marquee-sync                          # Start on default ports (3000, metrics 3001)
  marquee-sync --port 8000              # Custom WebSocket port
  marquee-sync --no-metrics             # Disable /health and /metrics
        """,
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON config file (values override environment defaults)",
    )
    parser.add_argument("--host", type=str, default=None, help="Bind address ($MARQUEE_HOST)")
    parser.add_argument(
        "--port",
        "-p",
        type=validate_port,
        default=None,
        help="WebSocket port (default: 3000 or $PORT)",
    )
    parser.add_argument(
        "--metrics-port",
        type=validate_port,
        default=None,
        help="Port for /health and /metrics (default: 3001 or $METRICS_PORT)",
    )
    parser.add_argument(
        "--no-metrics",
        action="store_true",
        help="Disable metrics HTTP endpoint",
    )
    parser.add_argument(
        "--tick-interval-ms",
        type=validate_positive_int,
        default=None,
        help="Clock tick interval in milliseconds (default: 5000)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO or $MARQUEE_LOG_LEVEL)",
    )
    return parser


def load_server_config(args: argparse.Namespace) -> ServerConfig:
    """Environment, then config file, then CLI flags."""
    if args.config:
        config = ServerConfig.load(Path(args.config))
    else:
        config = ServerConfig.from_env()

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.metrics_port is not None:
        config.metrics_port = args.metrics_port
    if args.no_metrics:
        config.metrics_port = None
    if args.tick_interval_ms is not None:
        config.tick_interval_ms = args.tick_interval_ms
    return config.validate()


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    try:
        config = load_server_config(args)
    except ValueError as e:
        parser.error(str(e))

    from marquee_sync.server import MarqueeServer

    server = MarqueeServer(config)

    def signal_handler(sig, frame):
        server.stop()

    async def _run_server():
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, server.stop)
            except NotImplementedError:
                # Windows event loops
                signal.signal(sig, signal_handler)
        try:
            await server.run()
        finally:
            await server.cleanup()

    try:
        asyncio.run(_run_server())
    except KeyboardInterrupt:
        pass

    return 0


if __name__ == "__main__":
    sys.exit(main())
