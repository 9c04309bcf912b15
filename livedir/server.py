from __future__ import annotations

import logging
import os
import threading
from http.server import ThreadingHTTPServer
from typing import List, Tuple, Type

from .cache import ContentCache
from .config import ServerConfig
from .handler import LiveReloadHandler
from .hub import NotificationHub
from .watcher import ChangeDetector, ChangeSet


logger = logging.getLogger(__name__)

RELOAD_MESSAGE = "reload"


class LiveReloadServer(ThreadingHTTPServer):
    """One instance per process: owns the cache, the hub and the watcher.

    Binding happens in the constructor, so a busy port raises ``OSError``
    here. ``serve_forever()`` runs the accept loop; ``start_watching()``
    starts the scan and sweep loops when watch mode is on.
    """

    daemon_threads = True

    def __init__(
        self,
        config: ServerConfig,
        handler_class: Type[LiveReloadHandler] = LiveReloadHandler,
        bind_and_activate: bool = True,
    ) -> None:
        self.config = config
        self.path_filter = config.path_filter()
        self.cache = ContentCache(config.cache_capacity, self.path_filter)
        self.hub = NotificationHub()
        self.detector = ChangeDetector(
            config.root,
            path_filter=self.path_filter,
            cache=self.cache,
            on_change=self._on_change,
        )
        self.disk_reads = 0
        self._stats_lock = threading.Lock()
        self._stop = threading.Event()
        self._background: List[threading.Thread] = []
        super().__init__((config.host, config.port), handler_class, bind_and_activate)

    @property
    def port(self) -> int:
        return self.server_address[1]

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}/"

    def finish_request(self, request, client_address) -> None:
        self.RequestHandlerClass(request, client_address, self, directory=str(self.config.root))

    def handle_error(self, request, client_address) -> None:
        logger.exception("Error while handling request from %s", client_address)

    def read_file(self, path: str) -> Tuple[bytes, int]:
        """Read ``path`` from disk; returns the bytes and the mtime seen before reading."""
        with open(path, "rb") as f:
            mtime_ns = os.fstat(f.fileno()).st_mtime_ns
            data = f.read()
        with self._stats_lock:
            self.disk_reads += 1
        return data, mtime_ns

    def _on_change(self, changes: ChangeSet) -> None:
        if not self.config.watch:
            return
        logger.debug("Changed: %s", ", ".join(changes.paths()))
        delivered = self.hub.broadcast(RELOAD_MESSAGE)
        logger.info("%d change(s), reload sent to %d client(s)", len(changes), delivered)

    def start_watching(self) -> None:
        if not self.config.watch or self._background:
            return
        self.detector.prime()
        self._spawn(
            "livedir-watcher",
            self.detector.run,
            self._stop,
            self.config.poll_interval,
            self.config.idle_poll_interval,
            self.config.min_poll_interval,
        )
        self._spawn("livedir-sweeper", self.hub.run_sweeper, self._stop, self.config.sweep_interval)

    def _spawn(self, name: str, target, *args) -> None:
        thread = threading.Thread(target=target, args=args, name=name, daemon=True)
        thread.start()
        self._background.append(thread)

    def stop_watching(self, timeout: float = 5.0) -> None:
        self._stop.set()
        for thread in self._background:
            thread.join(timeout)
        self._background = []

    def shutdown(self) -> None:
        """Stop the accept loop; must be called from another thread."""
        super().shutdown()
        self.stop_watching()

    def server_close(self) -> None:
        self.stop_watching()
        self.hub.close_all()
        super().server_close()
