"""Guardrail evaluation and audit trail endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from aegis_guardrails.engine.orchestrator import InvalidInputError
from aegis_guardrails.middleware.auth import TokenClaims, get_current_user
from aegis_guardrails.models.core import (  # noqa: TC001
    Decision,
    EvaluateResponse,
    EvaluationRequest,
)
from aegis_guardrails.runtime import GuardrailsEngine, require_engine

router = APIRouter(prefix="/v1/guardrails", tags=["guardrails"])


# ── Evaluate ──────────────────────────────────────────────────


@router.post("/evaluate")
async def evaluate_guardrails(
    body: EvaluationRequest,
    user: TokenClaims = Depends(get_current_user),
    engine: GuardrailsEngine = Depends(require_engine),
) -> EvaluateResponse:
    """Evaluate agent input against the caller's enabled policies."""
    try:
        verdict = await engine.orchestrator.evaluate(body, customer_id=user.customer_id)
    except InvalidInputError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc

    return EvaluateResponse(
        decision=verdict.decision,
        reason=verdict.reason,
        checks_run=verdict.checks_run,
        latency_ms=verdict.latency_ms,
    )


# ── Audit trail ───────────────────────────────────────────────


@router.get("/audit-logs")
async def list_audit_logs(
    agent_id: str | None = None,
    decision: Decision | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user: TokenClaims = Depends(get_current_user),
    engine: GuardrailsEngine = Depends(require_engine),
) -> dict[str, Any]:
    """List audit entries for the current customer, newest first."""
    entries, total = await engine.audit_store.list(
        customer_id=user.customer_id,
        agent_id=agent_id,
        decision=decision,
        limit=limit,
        offset=offset,
    )
    return {
        "audit_logs": [e.model_dump(mode="json") for e in entries],
        "total": total,
        "limit": limit,
        "offset": offset,
    }
