"""Taskdown HTTP status API."""

from __future__ import annotations

from .server import APIServer, APIServerState, create_app

__all__ = ["APIServer", "APIServerState", "create_app"]
