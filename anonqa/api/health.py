"""Liveness and readiness endpoints."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from anonqa.core.database import check_connection, get_engine
from anonqa.features.usage.service import SqlUsageStore

logger = logging.getLogger("anonqa")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz(request: Request):
    """Lightweight liveness check (no deps)."""
    rooms = getattr(request.app.state, "rooms", None)
    return {
        "status": "ok",
        "rooms": rooms.rooms_count if rooms is not None else 0,
        "connections": rooms.connections_count if rooms is not None else 0,
    }


@router.get("/readyz")
def readyz(request: Request):
    """Readiness check: usage ledger database reachable and table present."""
    ledger = getattr(request.app.state, "usage_ledger", None)
    if ledger is None or not isinstance(ledger.store, SqlUsageStore):
        return {"status": "ok", "usageStore": "memory"}

    if not check_connection():
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
    try:
        if not inspect(get_engine()).has_table("ai_usage_logs"):
            logger.warning("[readyz] missing tables: ai_usage_logs")
            return JSONResponse(status_code=503, content={"status": "error", "detail": "missing tables: ai_usage_logs"})
    except Exception as e:
        logger.error(f"[readyz] readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
    return {"status": "ok", "usageStore": "sql"}
