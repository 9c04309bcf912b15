"""Registry of SSE subscribers and best-effort fan-out of reload events."""

from __future__ import annotations

import logging
import socket
import threading
from typing import List, Protocol, Tuple


logger = logging.getLogger(__name__)

# An SSE comment with no payload: browsers ignore it, dead peers fail it.
PING_FRAME = b":\n\n"

# Seconds a single frame may take to drain into a slow client.
SEND_TIMEOUT = 5.0


def encode_event(message: str) -> bytes:
    return f"data: {message}\n\n".encode("utf-8")


class Subscriber(Protocol):
    def write(self, data: bytes) -> None: ...

    def close(self) -> None: ...


class SocketSubscriber:
    """A connected client socket parked on the event stream.

    Writes time out after ``send_timeout`` seconds so a peer that stops
    reading surfaces as an ``OSError`` instead of a stuck ``sendall``.
    """

    def __init__(self, sock: socket.socket, send_timeout: float = SEND_TIMEOUT) -> None:
        self.sock = sock
        self.sock.settimeout(send_timeout)
        self._write_lock = threading.Lock()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def write(self, data: bytes) -> None:
        if self._closed.is_set():
            raise BrokenPipeError("subscriber closed")
        with self._write_lock:
            self.sock.sendall(data)

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            # Wakes the handler thread blocked in wait_closed().
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def wait_closed(self) -> None:
        """Block until the peer goes away or close() is called."""
        while not self._closed.is_set():
            try:
                chunk = self.sock.recv(1024)
            except socket.timeout:
                # Only the send side is bounded; keep waiting.
                continue
            except OSError:
                break
            if not chunk:
                break
        self._closed.set()


class NotificationHub:
    """Subscriber registry; the lock guards the list, never a socket write."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(subscriber)
            count = len(self._subscribers)
        logger.info("Live reload client connected (%d active)", count)

    def unsubscribe(self, subscriber: Subscriber) -> bool:
        with self._lock:
            try:
                self._subscribers.remove(subscriber)
            except ValueError:
                return False
        logger.debug("Live reload client disconnected")
        return True

    def broadcast(self, message: str) -> int:
        """Send ``message`` to every subscriber, dropping any that fail."""
        delivered, _ = self._write_all(encode_event(message))
        logger.debug("Broadcast %r to %d client(s)", message, delivered)
        return delivered

    def sweep(self) -> int:
        """Ping every subscriber and drop the half-open ones."""
        _, removed = self._write_all(PING_FRAME)
        if removed:
            logger.debug("Sweep removed %d dead client(s)", removed)
        return removed

    def _write_all(self, frame: bytes) -> Tuple[int, int]:
        with self._lock:
            targets = list(self._subscribers)
        failed: List[Subscriber] = []
        for subscriber in targets:
            try:
                subscriber.write(frame)
            except OSError:
                failed.append(subscriber)
        if failed:
            with self._lock:
                self._subscribers = [s for s in self._subscribers if s not in failed]
            for subscriber in failed:
                self._discard(subscriber)
        return len(targets) - len(failed), len(failed)

    @staticmethod
    def _discard(subscriber: Subscriber) -> None:
        try:
            subscriber.close()
        except OSError:
            logger.debug("Error closing subscriber", exc_info=True)

    def run_sweeper(self, stop: threading.Event, interval: float = 30.0) -> None:
        while not stop.wait(interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Subscriber sweep failed")

    def close_all(self) -> None:
        with self._lock:
            subscribers, self._subscribers = self._subscribers, []
        for subscriber in subscribers:
            self._discard(subscriber)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def __contains__(self, subscriber: object) -> bool:
        with self._lock:
            return subscriber in self._subscribers
