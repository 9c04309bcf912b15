"""Local dev server that serves a folder and live-reloads pages on change."""

__version__ = "0.1.0"
