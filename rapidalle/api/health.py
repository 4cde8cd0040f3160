"""
Health and readiness probes.

Lightweight endpoints for operational monitoring; nothing here exposes
secrets or connection details.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from rapidalle.core.database import check_connection, get_engine

logger = logging.getLogger("rapidalle")

router = APIRouter(tags=["health"])

REQUIRED_TABLES = [
    "users",
    "prompts",
    "images",
    "usage_events",
    "billing_events",
]


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    if not check_connection():
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    try:
        inspector = inspect(get_engine())
        missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
        if missing:
            detail = f"missing tables: {', '.join(missing)}"
            logger.warning(f"[readyz] {detail}")
            return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

        return {"status": "ok"}
    except Exception as e:
        logger.error(f"[readyz] schema inspection failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "schema inspection failed"})
