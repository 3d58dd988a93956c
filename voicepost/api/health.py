"""
Health endpoints.

Lightweight liveness and readiness probes that expose no secrets.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from voicepost.core.database import check_connection, get_engine, metadata

logger = logging.getLogger("voicepost")

root_router = APIRouter(tags=["health"])


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    if not check_connection():
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    try:
        inspector = inspect(get_engine())
        missing = [t for t in sorted(metadata.tables) if not inspector.has_table(t)]
    except Exception as e:
        logger.error("[readyz] table inspection failed: %s", e)
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning("[readyz] %s", detail)
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

    return {"status": "ok"}
