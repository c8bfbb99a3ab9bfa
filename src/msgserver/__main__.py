"""
=============================================================================
COMMAND-LINE RUNNER
=============================================================================

    # Run with defaults (127.0.0.1:8080)
    python -m msgserver

    # Custom port, more workers, chatty logs
    python -m msgserver --port 7878 --workers 32 --log-level DEBUG

Ctrl+C (SIGINT) or SIGTERM stops the server gracefully: it stops accepting,
lets in-flight connections finish, then exits.
=============================================================================
"""

import argparse
import logging
import signal
import sys

from . import __version__
from .config import ServerConfig
from .core import BindError
from .server import Server, ServerHandle


logger = logging.getLogger("msgserver")


def _setup_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("msgserver").setLevel(level)


def _install_signal_handlers(handle: ServerHandle) -> dict:
    """
    Route SIGINT/SIGTERM to handle.stop().

    Returns the previous handlers so they can be restored.
    """
    def shutdown_handler(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
        handle.stop()

    return {
        sig: signal.signal(sig, shutdown_handler)
        for sig in (signal.SIGINT, signal.SIGTERM)
    }


def _build_parser() -> argparse.ArgumentParser:
    defaults = ServerConfig()
    parser = argparse.ArgumentParser(
        prog="msgserver",
        description="Echo/add request server over length-prefixed TCP frames",
    )
    parser.add_argument("--host", "-H", default=defaults.host,
                        help=f"Host to bind to (default: {defaults.host})")
    parser.add_argument("--port", "-p", type=int, default=defaults.port,
                        help=f"Port to listen on, 0 for any (default: {defaults.port})")
    parser.add_argument("--workers", "-w", type=int, default=defaults.pool_size,
                        help=f"Worker threads (default: {defaults.pool_size})")
    parser.add_argument("--poll-interval", type=float, default=defaults.poll_interval,
                        help=f"Accept poll interval in seconds (default: {defaults.poll_interval})")
    parser.add_argument("--timeout", "-t", type=float, default=defaults.io_timeout,
                        help=f"Per-connection I/O timeout in seconds (default: {defaults.io_timeout})")
    parser.add_argument("--log-level", "-l",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        default=defaults.log_level,
                        help=f"Logging level (default: {defaults.log_level})")
    parser.add_argument("--version", "-v", action="version",
                        version=f"msgserver {__version__}")
    return parser


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)

    config = ServerConfig(
        host=args.host,
        port=args.port,
        pool_size=args.workers,
        poll_interval=args.poll_interval,
        io_timeout=args.timeout,
        log_level=args.log_level,
    )
    _setup_logging(config.log_level)

    try:
        server = Server(config)
        handle = server.start()
    except (BindError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    previous = _install_signal_handlers(handle)
    try:
        # Short waits keep the main thread responsive to signals
        while not handle.wait_until_stopped(timeout=0.5):
            pass
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    return 0


if __name__ == "__main__":
    sys.exit(main())
