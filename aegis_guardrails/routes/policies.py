"""Policy management endpoints.

Every write of an enabled policy is validated by compiling the rule
configuration. Disabled policies may be saved as drafts with invalid rules.
Each write invalidates the policy cache, so the next evaluation sees the change.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from aegis_guardrails.engine.compiler import validate_policy
from aegis_guardrails.engine.templates import DEFAULT_TEMPLATES
from aegis_guardrails.middleware.auth import TokenClaims, get_current_user
from aegis_guardrails.models.core import Policy, PolicyCreate, PolicyUpdate  # noqa: TC001
from aegis_guardrails.runtime import GuardrailsEngine, require_engine

router = APIRouter(prefix="/v1/policies", tags=["policies"])


def _policy_view(policy: Policy) -> dict[str, Any]:
    data = policy.model_dump(mode="json")
    data["errors"] = validate_policy(policy)
    return data


def _reject_invalid(policy: Policy) -> None:
    problems = validate_policy(policy)
    if problems:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "message": f"Invalid rule configuration for {policy.policy_type} policy",
                "problems": problems,
            },
        )


async def _owned_policy(
    engine: GuardrailsEngine, policy_id: UUID, user: TokenClaims
) -> Policy:
    policy = await engine.policy_store.get(policy_id)
    if policy is None or policy.customer_id != user.customer_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Policy {policy_id} not found",
        )
    return policy


# ── List ──────────────────────────────────────────────────────


@router.get("")
async def list_policies(
    user: TokenClaims = Depends(get_current_user),
    engine: GuardrailsEngine = Depends(require_engine),
) -> dict[str, Any]:
    """List the customer's policies; invalid ones carry their errors."""
    policies = await engine.policy_store.list(user.customer_id)
    return {
        "policies": [_policy_view(p) for p in policies],
        "total": len(policies),
    }


# ── Templates ─────────────────────────────────────────────────
# NOTE: Static paths must be defined before the {policy_id} path param.


@router.get("/templates")
async def list_templates(
    user: TokenClaims = Depends(get_current_user),
) -> dict[str, Any]:
    """Built-in policy templates."""
    return {
        "templates": [t.model_dump(mode="json") for t in DEFAULT_TEMPLATES.values()],
        "total": len(DEFAULT_TEMPLATES),
    }


# ── Create ────────────────────────────────────────────────────


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_policy(
    body: PolicyCreate,
    user: TokenClaims = Depends(get_current_user),
    engine: GuardrailsEngine = Depends(require_engine),
) -> dict[str, Any]:
    """Create a policy for the current customer."""
    policy = Policy(customer_id=user.customer_id, **body.model_dump())
    if policy.enabled:
        _reject_invalid(policy)

    created = await engine.policy_store.create(policy)
    await engine.cache.invalidate(created.id)
    return {"policy": _policy_view(created)}


# ── Detail / update ───────────────────────────────────────────


@router.get("/{policy_id}")
async def get_policy(
    policy_id: UUID,
    user: TokenClaims = Depends(get_current_user),
    engine: GuardrailsEngine = Depends(require_engine),
) -> dict[str, Any]:
    """Get a single policy."""
    policy = await _owned_policy(engine, policy_id, user)
    return {"policy": _policy_view(policy)}


@router.put("/{policy_id}")
async def update_policy(
    policy_id: UUID,
    body: PolicyUpdate,
    user: TokenClaims = Depends(get_current_user),
    engine: GuardrailsEngine = Depends(require_engine),
) -> dict[str, Any]:
    """Update name, scope, rules or enabled flag of a policy."""
    current = await _owned_policy(engine, policy_id, user)
    changes = body.model_dump(exclude_unset=True)
    # agent_id and rule_json may be cleared; other fields ignore null.
    changes = {
        k: v for k, v in changes.items() if v is not None or k in ("agent_id", "rule_json")
    }
    updated = Policy.model_validate({**current.model_dump(), **changes})
    if updated.enabled:
        _reject_invalid(updated)

    saved = await engine.policy_store.update(updated)
    await engine.cache.invalidate(saved.id)
    return {"policy": _policy_view(saved)}
