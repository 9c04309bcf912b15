from __future__ import annotations

import logging
import os
import urllib.parse
from http.server import SimpleHTTPRequestHandler
from typing import TYPE_CHECKING

from . import __version__
from .hub import SocketSubscriber
from .inject import inject_reload_client

if TYPE_CHECKING:
    from .server import LiveReloadServer


logger = logging.getLogger(__name__)

SSE_PATH = "/sse"

NOT_FOUND_BODY = b"<html><body><h1>Not Found</h1></body></html>"
SERVER_ERROR_BODY = b"<html><body><h1>Internal Server Error</h1></body></html>"

DEFAULT_CONTENT_TYPE = "application/octet-stream"
CONTENT_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".json": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".txt": "text/plain",
}


def content_type_for(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


class LiveReloadHandler(SimpleHTTPRequestHandler):
    """Serves files from the server root and the live-reload event stream.

    One instance handles one connection on its own thread. Anything
    shared between connections lives on the server (cache, hub).
    """

    server: "LiveReloadServer"  # type: ignore[assignment]
    protocol_version = "HTTP/1.1"
    server_version = f"livedir/{__version__}"

    def parse_request(self) -> bool:
        # Nothing usable on the request line: hang up without answering.
        words = str(self.raw_requestline, "iso-8859-1").split()
        if len(words) < 2:
            self.close_connection = True
            return False
        return super().parse_request()

    def do_GET(self) -> None:
        self._dispatch(head_only=False)

    def do_HEAD(self) -> None:
        self._dispatch(head_only=True)

    def _dispatch(self, head_only: bool) -> None:
        path = urllib.parse.urlsplit(self.path).path
        if path == SSE_PATH:
            if head_only:
                self.send_error(405, "Method Not Allowed")
                return
            self._handle_event_stream()
            return
        if path == "/":
            path = "/" + self.server.config.default_document
        self._serve_file(self.translate_path(path), head_only)

    def guess_type(self, path: str) -> str:  # type: ignore[override]
        return content_type_for(path)

    def _serve_file(self, fs_path: str, head_only: bool) -> None:
        if not os.path.isfile(fs_path):
            logger.debug("Not found: %s", fs_path)
            self._send_page(404, NOT_FOUND_BODY, head_only)
            return

        content_type = self.guess_type(fs_path)
        try:
            if self.server.config.watch and content_type == "text/html":
                data, _ = self.server.read_file(fs_path)
                data = inject_reload_client(data)
            else:
                data = self._load(fs_path, content_type)
        except OSError as exc:
            logger.warning("Failed to read %s: %s", fs_path, exc)
            self._send_page(500, SERVER_ERROR_BODY, head_only)
            return

        self._send_page(200, data, head_only, content_type)

    def _load(self, fs_path: str, content_type: str) -> bytes:
        cache = self.server.cache
        cached = cache.get(fs_path)
        if cached is not None:
            return cached
        data, mtime_ns = self.server.read_file(fs_path)
        cache.put(fs_path, data, content_type, mtime_ns=mtime_ns)
        return data

    def _send_page(self, code: int, body: bytes, head_only: bool, content_type: str = "text/html") -> None:
        self.send_response(code)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        if head_only:
            return
        try:
            self.wfile.write(body)
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Client %s went away mid-response", self.address_string())

    def _handle_event_stream(self) -> None:
        # Headers go out before registration so no broadcast can precede them.
        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream")
        self.send_header("Cache-Control", "no-cache")
        self.send_header("Connection", "keep-alive")
        self.send_header("Access-Control-Allow-Origin", "*")
        try:
            self.end_headers()
        except (BrokenPipeError, ConnectionResetError):
            self.close_connection = True
            return

        subscriber = SocketSubscriber(self.connection)
        hub = self.server.hub
        hub.subscribe(subscriber)
        try:
            subscriber.wait_closed()
        finally:
            hub.unsubscribe(subscriber)
            self.close_connection = True

    def log_message(self, format: str, *args) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)
