"""Taskdown status API server using Starlette and uvicorn."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

import uvicorn
from starlette.applications import Starlette
from starlette.routing import Route

from .routes import health_handler, sync_status_handler, sync_trigger_handler

if TYPE_CHECKING:
    from ..app import Runtime

logger = logging.getLogger("taskdown.api.server")


class APIServerState(str, Enum):
    """API server lifecycle states."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


def create_app(runtime: "Runtime") -> Starlette:
    """Build the Starlette application bound to ``runtime``."""

    routes = [
        Route("/health", health_handler, methods=["GET"]),
        Route("/api/v1/sync/status", sync_status_handler, methods=["GET"]),
        Route("/api/v1/sync", sync_trigger_handler, methods=["POST"]),
    ]
    app = Starlette(routes=routes)
    app.state.runtime = runtime
    return app


class APIServer:
    """Runs uvicorn as a task on the runtime's event loop."""

    def __init__(self, runtime: "Runtime", host: str = "127.0.0.1", port: int = 8765):
        self.runtime = runtime
        self.host = host
        self.port = port
        self._state = APIServerState.STOPPED
        self._server: Optional[uvicorn.Server] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> APIServerState:
        return self._state

    async def start(self) -> bool:
        if self._state == APIServerState.RUNNING:
            logger.warning("API server is already running")
            return False

        self._state = APIServerState.STARTING
        config = uvicorn.Config(
            create_app(self.runtime),
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.get_running_loop().create_task(self._serve(), name="taskdown-api")

        for _ in range(50):  # Wait up to 5 seconds
            if self._server.started or self._task.done():
                break
            await asyncio.sleep(0.1)

        if self._server.started:
            self._state = APIServerState.RUNNING
            logger.info("API server listening on http://%s:%s", self.host, self.port)
        return self._state == APIServerState.RUNNING

    async def _serve(self) -> None:
        try:
            await self._server.serve()
        except Exception:
            logger.exception("API server error")
            self._state = APIServerState.ERROR
        except SystemExit:
            # uvicorn exits when it cannot bind.
            logger.error("API server could not bind %s:%s", self.host, self.port)
            self._state = APIServerState.ERROR

    async def stop(self) -> bool:
        if self._task is None:
            return False

        self._state = APIServerState.STOPPING
        if self._server is not None:
            self._server.should_exit = True
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            self._task.cancel()
        self._state = APIServerState.STOPPED
        self._server = None
        self._task = None
        logger.info("API server stopped")
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "host": self.host,
            "port": self.port,
            "url": f"http://{self.host}:{self.port}" if self._state == APIServerState.RUNNING else None,
        }


__all__ = ["APIServer", "APIServerState", "create_app"]
