"""API route handlers for the Taskdown status server."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .. import __version__
from ..models import format_timestamp, utcnow
from ..sync import SyncGatingError

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import JSONResponse

logger = logging.getLogger("taskdown.api.routes")


async def health_handler(request: "Request") -> "JSONResponse":
    """Liveness probe."""
    from starlette.responses import JSONResponse

    runtime = request.app.state.runtime
    return JSONResponse({
        "status": "ok",
        "timestamp": format_timestamp(utcnow()),
        "uptime": round(runtime.uptime, 3),
        "version": __version__,
    })


async def sync_status_handler(request: "Request") -> "JSONResponse":
    """Current sync status snapshot."""
    from starlette.responses import JSONResponse

    runtime = request.app.state.runtime
    return JSONResponse(runtime.sync.get_status().to_dict())


async def sync_trigger_handler(request: "Request") -> "JSONResponse":
    """Run a sync pass; 409 when sync cannot start."""
    from starlette.responses import JSONResponse

    service = request.app.state.runtime.sync
    try:
        await service.sync()
    except SyncGatingError as exc:
        return JSONResponse(
            {"error": str(exc), "status": service.get_status().to_dict()},
            status_code=409,
        )
    except Exception as exc:
        logger.exception("Sync triggered over HTTP failed")
        return JSONResponse({"error": str(exc)}, status_code=500)

    return JSONResponse({
        "status": service.get_status().to_dict(),
        "collections": {
            name: outcome.to_dict() for name, outcome in service.last_outcomes.items()
        },
        "errors": dict(service.last_collection_errors),
    })


__all__ = ["health_handler", "sync_status_handler", "sync_trigger_handler"]
