"""Health check endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from aegis_guardrails.db import get_pg_pool
from aegis_guardrails.runtime import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    """Basic health check."""
    return {"status": "ok", "service": "aegis-guardrails"}


@router.get("/health/detailed")
async def health_detailed() -> dict[str, Any]:
    """Detailed health check with dependency and audit queue status."""
    deps: dict[str, str] = {}

    pg = get_pg_pool()
    if pg is not None:
        try:
            async with pg.acquire() as conn:
                await conn.fetchval("SELECT 1")
            deps["postgres"] = "ok"
        except Exception:
            deps["postgres"] = "error"
    else:
        deps["postgres"] = "not_configured"

    engine = get_engine()
    audit: dict[str, Any] = {}
    if engine is not None:
        deps["engine"] = "ok" if engine.emitter.running else "degraded"
        audit = {
            "backend": engine.backend,
            "pending": engine.emitter.pending,
            "written": engine.emitter.written,
            "dropped": engine.emitter.dropped,
        }
    else:
        deps["engine"] = "not_configured"

    healthy = deps["engine"] == "ok" and deps["postgres"] in ("ok", "not_configured")
    return {
        "status": "ok" if healthy else "degraded",
        "service": "aegis-guardrails",
        "dependencies": deps,
        "audit": audit,
    }
