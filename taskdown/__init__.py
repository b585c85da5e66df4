"""Offline-first tasks and notes with PocketBase sync."""

__version__ = "0.1.0"
