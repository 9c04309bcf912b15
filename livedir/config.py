from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet

from .filters import PathFilter


MIB = 1024 * 1024

DEFAULT_PORT = 8080
DEFAULT_DOCUMENT = "index.html"

IGNORED_EXTENSIONS: FrozenSet[str] = frozenset({".tmp", ".swp", ".swo", ".swx", ".log", ".lock"})
IGNORED_DIRECTORIES: FrozenSet[str] = frozenset(
    {".git", ".hg", ".svn", ".vs", ".idea", "node_modules", "build", "__pycache__"}
)


@dataclass(frozen=True)
class ServerConfig:
    """Settings fixed for the lifetime of one server process."""

    root: Path
    watch: bool = False
    port: int = DEFAULT_PORT
    host: str = ""
    default_document: str = DEFAULT_DOCUMENT

    # Watcher cadence (seconds).
    poll_interval: float = 0.5
    idle_poll_interval: float = 2.0
    min_poll_interval: float = 0.25
    sweep_interval: float = 30.0

    cache_capacity: int = 100
    max_cache_file_size: int = 1 * MIB
    max_watch_file_size: int = 10 * MIB
    ignored_extensions: FrozenSet[str] = field(default=IGNORED_EXTENSIONS)
    ignored_directories: FrozenSet[str] = field(default=IGNORED_DIRECTORIES)

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root).resolve())
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port out of range: {self.port}")
        for name in ("poll_interval", "idle_poll_interval", "min_poll_interval", "sweep_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.cache_capacity < 1:
            raise ValueError("cache_capacity must be at least 1")

    def path_filter(self) -> PathFilter:
        return PathFilter(
            ignored_extensions=self.ignored_extensions,
            ignored_directories=self.ignored_directories,
            max_watch_size=self.max_watch_file_size,
            max_cache_size=self.max_cache_file_size,
        )
