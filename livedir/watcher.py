"""Polling change detection for the served directory tree."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .cache import ContentCache
from .filters import PathFilter


logger = logging.getLogger(__name__)


@dataclass
class ChangeSet:
    created: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.created or self.modified or self.deleted)

    def __len__(self) -> int:
        return len(self.created) + len(self.modified) + len(self.deleted)

    def paths(self) -> List[str]:
        return [*self.created, *self.modified, *self.deleted]


class ChangeDetector:
    """Compares the tree under ``root`` with the last seen mtimes.

    The snapshot is only touched from the thread calling ``scan``; one
    detector must not be scanned from two threads at once.
    """

    def __init__(
        self,
        root: Path,
        path_filter: Optional[PathFilter] = None,
        cache: Optional[ContentCache] = None,
        on_change: Optional[Callable[[ChangeSet], None]] = None,
    ) -> None:
        self.root = Path(root)
        self.path_filter = path_filter or PathFilter()
        self.cache = cache
        self.on_change = on_change
        self.snapshot: Dict[str, int] = {}
        self.scanning = False

    def _on_walk_error(self, err: OSError) -> None:
        logger.debug("Skipping unreadable path %s: %s", err.filename, err.strerror)

    def _iter_files(self) -> Iterator[Tuple[str, int]]:
        for dirpath, dirnames, filenames in os.walk(self.root, onerror=self._on_walk_error):
            # Prune dirs we never want to watch.
            dirnames[:] = [d for d in dirnames if not self.path_filter.is_ignored_directory(d)]
            for name in filenames:
                if self.path_filter.is_ignored_name(name):
                    continue
                path = os.path.join(dirpath, name)
                try:
                    st = os.stat(path)
                except OSError:
                    continue
                if not self.path_filter.is_monitorable(path, size=st.st_size):
                    continue
                yield path, st.st_mtime_ns

    def prime(self) -> int:
        """Record the current tree as the baseline without reporting it."""
        self.snapshot = dict(self._iter_files())
        logger.info("Watching %d file(s) under %s", len(self.snapshot), self.root)
        return len(self.snapshot)

    def scan(self) -> ChangeSet:
        if self.scanning:
            raise RuntimeError("scan already in progress")
        self.scanning = True
        try:
            changes = self._scan()
        finally:
            self.scanning = False
        if changes and self.on_change is not None:
            self.on_change(changes)
        return changes

    def _scan(self) -> ChangeSet:
        changes = ChangeSet()
        seen = set()
        for path, mtime_ns in self._iter_files():
            seen.add(path)
            previous = self.snapshot.get(path)
            if previous is None:
                logger.info("New file detected: %s", path)
                changes.created.append(path)
            elif previous != mtime_ns:
                logger.info("File modified: %s", path)
                changes.modified.append(path)
                self._invalidate(path)
            else:
                continue
            self.snapshot[path] = mtime_ns

        for path in [p for p in self.snapshot if p not in seen]:
            if os.path.exists(path):
                # Still there but unlistable or filtered this round.
                continue
            logger.info("File deleted: %s", path)
            del self.snapshot[path]
            changes.deleted.append(path)
            self._invalidate(path)
        return changes

    def _invalidate(self, path: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(path)

    def run(
        self,
        stop: threading.Event,
        interval: float = 0.5,
        idle_interval: float = 2.0,
        min_interval: float = 0.25,
    ) -> None:
        """Scan until ``stop`` is set.

        The wait drops to ``interval`` right after a change and backs off
        toward ``idle_interval`` while the tree is quiet, never going
        below ``min_interval``.
        """
        interval = max(interval, min_interval)
        idle_interval = max(idle_interval, interval)
        wait = interval
        while not stop.is_set():
            try:
                changed = bool(self.scan())
            except Exception:
                logger.exception("Error checking for changes")
                changed = False
            wait = interval if changed else min(wait * 1.5, idle_interval)
            if stop.wait(wait):
                break
