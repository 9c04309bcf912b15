from __future__ import annotations

import http.client
import os
import socket
import tempfile
import threading
import time
import unittest
from pathlib import Path

from livedir.config import ServerConfig
from livedir.handler import NOT_FOUND_BODY, SERVER_ERROR_BODY
from livedir.inject import RELOAD_SNIPPET
from livedir.server import LiveReloadServer


INDEX_HTML = b"<html><head><title>t</title></head><body><p>hello</p></body></html>"


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class ServerTestCase(unittest.TestCase):
    watch = True
    server_class = LiveReloadServer

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        base = Path(self._tmp.name).resolve()
        self.root = base / "site"
        self.root.mkdir()
        (base / "secret.txt").write_text("top secret", encoding="utf-8")
        (self.root / "index.html").write_bytes(INDEX_HTML)
        (self.root / "style.css").write_text("body { color: red; }", encoding="utf-8")
        (self.root / "data.bin").write_bytes(b"\x00\x01\x02")

        config = ServerConfig(
            root=self.root,
            watch=self.watch,
            port=0,
            host="127.0.0.1",
            poll_interval=0.05,
            idle_poll_interval=0.1,
            min_poll_interval=0.01,
        )
        self.server = self.server_class(config)
        self.server.start_watching()
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()

    def tearDown(self) -> None:
        self.server.shutdown()
        self.server.server_close()
        self.thread.join(5)
        self._tmp.cleanup()

    def request(self, path: str, method: str = "GET"):
        conn = http.client.HTTPConnection("127.0.0.1", self.server.port, timeout=5)
        try:
            conn.request(method, path)
            response = conn.getresponse()
            return response.status, dict(response.getheaders()), response.read()
        finally:
            conn.close()

    def open_event_stream(self) -> socket.socket:
        sock = socket.create_connection(("127.0.0.1", self.server.port), timeout=5)
        sock.sendall(b"GET /sse HTTP/1.1\r\nHost: localhost\r\nAccept: text/event-stream\r\n\r\n")
        head = b""
        while b"\r\n\r\n" not in head:
            chunk = sock.recv(1024)
            if not chunk:
                break
            head += chunk
        self.stream_head, _, self.stream_rest = head.partition(b"\r\n\r\n")
        return sock


class WatchModeServerTests(ServerTestCase):
    def test_root_serves_index_with_reload_client(self) -> None:
        status, headers, body = self.request("/")

        self.assertEqual(status, 200)
        self.assertEqual(headers["Content-Type"], "text/html")
        self.assertEqual(int(headers["Content-Length"]), len(body))
        self.assertIn(b"<p>hello</p>", body)
        self.assertIn(RELOAD_SNIPPET + b"</body>", body)
        self.assertLess(body.index(b"<script"), body.index(b"</body>"))

    def test_missing_file_is_404_with_fixed_body(self) -> None:
        status, headers, body = self.request("/missing.txt")

        self.assertEqual(status, 404)
        self.assertEqual(body, NOT_FOUND_BODY)
        self.assertEqual(len(body), 44)
        self.assertEqual(headers["Content-Length"], "44")
        self.assertEqual(headers["Content-Type"], "text/html")

    def test_directory_and_escaping_paths_are_404(self) -> None:
        (self.root / "sub").mkdir()
        self.assertEqual(self.request("/sub/")[0], 404)
        self.assertEqual(self.request("/../secret.txt")[0], 404)

    def test_static_file_is_cached_between_requests(self) -> None:
        first = self.request("/style.css")
        second = self.request("/style.css")

        self.assertEqual(first[0], 200)
        self.assertEqual(first[1]["Content-Type"], "text/css")
        self.assertEqual(first[2], second[2])
        self.assertEqual(first[2], b"body { color: red; }")
        self.assertEqual(self.server.disk_reads, 1)

    def test_html_bypasses_cache(self) -> None:
        self.request("/index.html")
        self.request("/index.html")
        self.assertEqual(self.server.disk_reads, 2)

    def test_unknown_extension_and_query_string(self) -> None:
        status, headers, body = self.request("/data.bin?v=3")
        self.assertEqual(status, 200)
        self.assertEqual(headers["Content-Type"], "application/octet-stream")
        self.assertEqual(body, b"\x00\x01\x02")

    def test_head_has_headers_only(self) -> None:
        status, headers, body = self.request("/style.css", method="HEAD")
        self.assertEqual(status, 200)
        self.assertEqual(headers["Content-Length"], "20")
        self.assertEqual(body, b"")

    def test_event_stream_handshake_and_broadcast(self) -> None:
        sock = self.open_event_stream()
        try:
            self.assertTrue(self.stream_head.startswith(b"HTTP/1.1 200"))
            self.assertIn(b"Content-Type: text/event-stream", self.stream_head)
            self.assertIn(b"Cache-Control: no-cache", self.stream_head)
            self.assertIn(b"Access-Control-Allow-Origin: *", self.stream_head)
            self.assertTrue(_wait_for(lambda: len(self.server.hub) == 1))

            self.assertEqual(self.server.hub.broadcast("reload"), 1)
            self.assertEqual(sock.recv(64), b"data: reload\n\n")
        finally:
            sock.close()

    def test_disconnected_stream_is_unsubscribed(self) -> None:
        sock = self.open_event_stream()
        self.assertTrue(_wait_for(lambda: len(self.server.hub) == 1))
        sock.close()
        self.assertTrue(_wait_for(lambda: len(self.server.hub) == 0))

    def test_file_change_triggers_reload_and_fresh_content(self) -> None:
        self.assertEqual(self.request("/style.css")[2], b"body { color: red; }")
        sock = self.open_event_stream()
        try:
            self.assertTrue(_wait_for(lambda: len(self.server.hub) == 1))
            css = self.root / "style.css"
            staged = self.root / "style.css.tmp"
            staged.write_text("body { color: blue; }", encoding="utf-8")
            stamp = os.stat(css).st_mtime_ns + 5_000_000_000
            os.utime(staged, ns=(stamp, stamp))
            os.replace(staged, css)

            sock.settimeout(5)
            self.assertEqual(sock.recv(64), b"data: reload\n\n")
        finally:
            sock.close()
        self.assertEqual(self.request("/style.css")[2], b"body { color: blue; }")

    def test_blank_request_line_gets_no_response(self) -> None:
        sock = socket.create_connection(("127.0.0.1", self.server.port), timeout=5)
        try:
            sock.sendall(b"   \r\n")
            self.assertEqual(sock.recv(1024), b"")
        finally:
            sock.close()

    def test_one_word_request_line_gets_no_response(self) -> None:
        sock = socket.create_connection(("127.0.0.1", self.server.port), timeout=5)
        try:
            sock.sendall(b"GET\r\n")
            self.assertEqual(sock.recv(1024), b"")
        finally:
            sock.close()


class UnreadableServer(LiveReloadServer):
    """Every file passes the existence check but fails to read."""

    def read_file(self, path: str):
        raise PermissionError(13, "Permission denied", path)


class ReadFailureServerTests(ServerTestCase):
    server_class = UnreadableServer

    def test_static_read_failure_is_500(self) -> None:
        status, headers, body = self.request("/style.css")

        self.assertEqual(status, 500)
        self.assertEqual(body, SERVER_ERROR_BODY)
        self.assertEqual(int(headers["Content-Length"]), len(SERVER_ERROR_BODY))
        self.assertEqual(headers["Content-Type"], "text/html")
        self.assertEqual(len(self.server.cache), 0)

    def test_injected_html_read_failure_is_500(self) -> None:
        status, _, body = self.request("/")

        self.assertEqual(status, 500)
        self.assertEqual(body, SERVER_ERROR_BODY)


class StaticModeServerTests(ServerTestCase):
    watch = False

    def test_html_served_verbatim_and_cached(self) -> None:
        first = self.request("/")
        second = self.request("/index.html")

        self.assertEqual(first[0], 200)
        self.assertEqual(first[2], INDEX_HTML)
        self.assertEqual(second[2], INDEX_HTML)
        self.assertEqual(self.server.disk_reads, 1)

    def test_no_background_threads(self) -> None:
        names = {t.name for t in threading.enumerate()}
        self.assertNotIn("livedir-watcher", names)


class BindFailureTests(unittest.TestCase):
    def test_busy_port_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            holder = socket.socket()
            try:
                holder.bind(("127.0.0.1", 0))
                holder.listen(1)
                port = holder.getsockname()[1]
                with self.assertRaises(OSError):
                    LiveReloadServer(ServerConfig(root=tmp, port=port, host="127.0.0.1"))
            finally:
                holder.close()


if __name__ == "__main__":
    unittest.main()
