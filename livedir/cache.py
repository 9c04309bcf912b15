"""Bounded in-memory cache of file contents, validated against mtime on read."""

from __future__ import annotations

import logging
import os
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from .filters import PathFilter


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    content: bytes
    content_type: str
    mtime_ns: int


def _mtime_ns(path: str) -> int:
    return os.stat(path).st_mtime_ns


class ContentCache:
    """Path -> CacheEntry map guarded by a single lock.

    Entries are re-validated against the file's live mtime on every
    lookup, so a lagging invalidation never serves stale bytes. Eviction
    is least-recently-used once ``capacity`` entries are resident.
    """

    def __init__(self, capacity: int = 100, path_filter: Optional[PathFilter] = None) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.path_filter = path_filter or PathFilter()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0

    def lookup(self, path: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(path)
            if entry is None:
                return None
            try:
                current = _mtime_ns(path)
            except OSError:
                current = None
            if current != entry.mtime_ns:
                logger.debug("Dropping stale cache entry %s", path)
                del self._entries[path]
                return None
            self._entries.move_to_end(path)
            self.hits += 1
            return entry

    def get(self, path: str) -> Optional[bytes]:
        entry = self.lookup(path)
        return entry.content if entry is not None else None

    def put(self, path: str, content: bytes, content_type: str, mtime_ns: Optional[int] = None) -> bool:
        """Store ``content``; returns False when it was not cached.

        ``mtime_ns`` should be the stamp observed before ``content`` was
        read. Without it the file is stat-ed now.
        """
        if not self.path_filter.is_cacheable(len(content)):
            return False
        if mtime_ns is None:
            try:
                mtime_ns = _mtime_ns(path)
            except OSError:
                return False
        entry = CacheEntry(content=bytes(content), content_type=content_type, mtime_ns=mtime_ns)
        with self._lock:
            if path in self._entries:
                del self._entries[path]
            elif len(self._entries) >= self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted %s from cache", evicted)
            self._entries[path] = entry
        return True

    def invalidate(self, path: str) -> bool:
        with self._lock:
            return self._entries.pop(path, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._entries
