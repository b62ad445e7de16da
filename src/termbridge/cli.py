"""Command-line interface for termbridge.

Provides the main entry point for running the bridge server, plus a
one-shot screenshot check for verifying the platform capture tool.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import socket
import sys
from pathlib import Path

from termbridge.config.settings import load_settings
from termbridge.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="termbridge",
        description="Terminal session bridge for chat-style web clients",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/termbridge.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the bridge server")
    serve_parser.add_argument("--host", type=str, default=None, help="Interface to bind")
    serve_parser.add_argument(
        "--port", type=int, default=None,
        help="Port to listen on (default: 9876, or $BRIDGE_PORT)",
    )

    shot_parser = subparsers.add_parser(
        "screenshot-test", help="Capture one screenshot with the platform tool and save it",
    )
    shot_parser.add_argument(
        "--output", type=Path, default=Path("screenshot_test.png"),
        help="Where to save the captured PNG",
    )

    return parser.parse_args(argv)


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind the listening socket before anything is spawned.

    Raises:
        OSError: If the address is unavailable (e.g. port in use).
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


def _serve(settings) -> None:
    """Run uvicorn on a pre-bound socket; exit 1 if the port is taken."""
    import uvicorn

    from termbridge.bridge.server import create_app

    bridge = settings.bridge
    try:
        sock = bind_socket(bridge.host, bridge.port)
    except OSError as e:
        logger.error("Port %d in use or unavailable: %s", bridge.port, e)
        sys.exit(1)

    app = create_app(settings)
    config = uvicorn.Config(app, log_config=None, ws="auto")
    server = uvicorn.Server(config)
    try:
        server.run(sockets=[sock])
    finally:
        sock.close()


async def _screenshot_test(settings, output: Path) -> None:
    """Capture a single screenshot and save it to a file."""
    from termbridge.capture import CaptureError, create_screenshot_source

    shot = settings.screenshot
    source = create_screenshot_source(
        timeout=shot.timeout, poll_interval=shot.poll_interval,
    )
    print(f"Using {type(source).__name__}; select a region (timeout {shot.timeout:.0f}s)...")
    try:
        screenshot = await source.capture()
    except CaptureError as e:
        print(f"Capture failed: {e}")
        sys.exit(1)
    output.write_bytes(screenshot.image)
    print(f"Saved {len(screenshot.image)} bytes to {output} (source: {screenshot.source})")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the termbridge CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        if args.host:
            settings.bridge.host = args.host
        if args.port:
            settings.bridge.port = args.port
        logger.info("Starting bridge server")
        _serve(settings)

    elif args.command == "screenshot-test":
        logger.info("Running screenshot test")
        asyncio.run(_screenshot_test(settings, args.output))


if __name__ == "__main__":
    main()
