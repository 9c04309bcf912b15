from __future__ import annotations

import argparse
import logging
import threading
import webbrowser
from pathlib import Path
from typing import List, Optional

from .config import DEFAULT_PORT, ServerConfig
from .server import LiveReloadServer


logger = logging.getLogger(__name__)


def _port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port number '{value}'")
    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError("port must be between 1 and 65535")
    return port


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="livedir",
        description="Serve a folder over HTTP, optionally reloading pages when files change.",
    )
    parser.add_argument("root", nargs="?", default=".", help="Directory to serve (default: current)")
    parser.add_argument("-w", "--watch", action="store_true", help="Enable watch mode (live reload)")
    parser.add_argument("-p", "--port", type=_port, default=DEFAULT_PORT, help="Port number (default: 8080)")
    parser.add_argument("--bind", default="", help="Address to bind (default: all interfaces)")
    parser.add_argument("--interval", type=float, default=0.5, help="Watch interval in seconds")
    parser.add_argument("--open", action="store_true", help="Open the page in a browser once started")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every request and cache event")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    root = Path(args.root).resolve()
    if not root.is_dir():
        raise SystemExit(f"Root folder does not exist: {root}")
    if args.interval <= 0:
        raise SystemExit("--interval must be positive")

    config = ServerConfig(
        root=root,
        watch=args.watch,
        port=args.port,
        host=args.bind,
        poll_interval=args.interval,
        idle_poll_interval=max(2.0, args.interval),
    )
    try:
        httpd = LiveReloadServer(config)
    except OSError as exc:
        logger.error("Could not listen on port %d: %s", config.port, exc)
        return 1

    httpd.start_watching()

    print(f"Dev server running: {httpd.url}")
    print(f"Serving files from: {root}")
    print(f"Live reload: {'on (auto refresh on file changes)' if config.watch else 'off (use -w to enable)'}")
    print("Stop server: Ctrl+C")

    if args.open:
        threading.Timer(0.5, webbrowser.open, args=(httpd.url,)).start()

    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        httpd.server_close()
    return 0
