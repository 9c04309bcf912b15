"""Predicates deciding which paths the watcher and the cache care about."""

from __future__ import annotations

import os
from typing import Iterable


class PathFilter:
    def __init__(
        self,
        ignored_extensions: Iterable[str] = (),
        ignored_directories: Iterable[str] = (),
        max_watch_size: int = 10 * 1024 * 1024,
        max_cache_size: int = 1024 * 1024,
    ) -> None:
        self.ignored_extensions = frozenset(ext.lower() for ext in ignored_extensions)
        self.ignored_directories = frozenset(ignored_directories)
        self.max_watch_size = max_watch_size
        self.max_cache_size = max_cache_size

    def is_ignored_name(self, name: str) -> bool:
        """Hidden files, editor backups and ignored extensions never matter."""
        if not name or name.startswith(".") or name.endswith("~"):
            return True
        return os.path.splitext(name)[1].lower() in self.ignored_extensions

    def is_monitorable(self, path: str, size: int | None = None) -> bool:
        if self.is_ignored_name(os.path.basename(path)):
            return False
        if size is None:
            try:
                size = os.stat(path).st_size
            except OSError:
                # Unreadable counts as ignored.
                return False
        return size <= self.max_watch_size

    def is_cacheable(self, size: int) -> bool:
        return size <= self.max_cache_size

    def is_ignored_directory(self, name: str) -> bool:
        return name in self.ignored_directories
