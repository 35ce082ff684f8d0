"""Tests for the policy management API routes (in-memory engine)."""

from collections.abc import Iterator
from uuid import UUID, uuid4

import httpx
import pytest

from aegis_guardrails.engine.store import InMemoryAuditStore, InMemoryPolicyStore
from aegis_guardrails.engine.templates import DEFAULT_TEMPLATES
from aegis_guardrails.main import app
from aegis_guardrails.middleware.auth import create_token
from aegis_guardrails.models.core import Policy, PolicyType
from aegis_guardrails.runtime import GuardrailsEngine, build_engine, require_engine

CUSTOMER = uuid4()


@pytest.fixture
def client() -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)  # type: ignore[arg-type]
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest.fixture
def engine() -> Iterator[GuardrailsEngine]:
    engine = build_engine(InMemoryPolicyStore(), InMemoryAuditStore())
    app.dependency_overrides[require_engine] = lambda: engine
    yield engine
    app.dependency_overrides.clear()


def _headers(customer_id: UUID = CUSTOMER) -> dict[str, str]:
    token = create_token(sub="test-user", tenant_id=customer_id)
    return {"Authorization": f"Bearer {token}"}


def _template_body(key: str, **overrides: object) -> dict[str, object]:
    template = DEFAULT_TEMPLATES[key]
    body: dict[str, object] = {
        "name": template.name,
        "description": template.description,
        "policy_type": str(template.policy_type),
        "rule_json": template.rule_json,
    }
    body.update(overrides)
    return body


async def _evaluate(client: httpx.AsyncClient, text: str, agent_id: str = "bot") -> dict:
    response = await client.post(
        "/v1/guardrails/evaluate",
        json={"agent_id": agent_id, "input_text": text},
        headers=_headers(),
    )
    return response.json()


# ── Auth ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_policies_requires_auth(client: httpx.AsyncClient) -> None:
    response = await client.get("/v1/policies")
    assert response.status_code == 401


# ── Templates ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_templates(client: httpx.AsyncClient) -> None:
    response = await client.get("/v1/policies/templates", headers=_headers())
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 4
    assert {t["key"] for t in data["templates"]} == set(DEFAULT_TEMPLATES)


# ── Create ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_policy_takes_effect(
    client: httpx.AsyncClient, engine: GuardrailsEngine
) -> None:
    # Load the (empty) snapshot first so the create has to invalidate it.
    assert (await _evaluate(client, "My SSN is 123-45-6789"))["decision"] == "ALLOWED"

    response = await client.post(
        "/v1/policies", json=_template_body("pii_detection"), headers=_headers()
    )
    assert response.status_code == 201
    policy = response.json()["policy"]
    assert policy["customer_id"] == str(CUSTOMER)
    assert policy["errors"] == []

    result = await _evaluate(client, "My SSN is 123-45-6789")
    assert result["decision"] == "DENIED"
    assert result["checks_run"] == ["PII_Detection"]


@pytest.mark.asyncio
async def test_create_rejects_invalid_rules(
    client: httpx.AsyncClient, engine: GuardrailsEngine
) -> None:
    body = _template_body(
        "pii_detection", rule_json={"patterns": [{"type": "x", "pattern": "("}]}
    )
    response = await client.post("/v1/policies", json=body, headers=_headers())
    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["problems"][0].startswith("patterns.0")
    assert await engine.policy_store.list(CUSTOMER) == []


@pytest.mark.asyncio
async def test_create_disabled_draft_with_invalid_rules(
    client: httpx.AsyncClient, engine: GuardrailsEngine
) -> None:
    body = _template_body(
        "pii_detection",
        enabled=False,
        rule_json={"patterns": [{"type": "x", "pattern": "("}]},
    )
    response = await client.post("/v1/policies", json=body, headers=_headers())
    assert response.status_code == 201
    policy = response.json()["policy"]
    assert policy["enabled"] is False
    assert policy["errors"][0].startswith("patterns.0")

    result = await _evaluate(client, "anything")
    assert result["decision"] == "ALLOWED"
    assert result["checks_run"] == []

    response = await client.put(
        f"/v1/policies/{policy['id']}", json={"enabled": True}, headers=_headers()
    )
    assert response.status_code == 422
    stored = await engine.policy_store.get(UUID(policy["id"]))
    assert stored is not None
    assert stored.enabled is False


@pytest.mark.asyncio
async def test_create_rejects_unknown_type(
    client: httpx.AsyncClient, engine: GuardrailsEngine
) -> None:
    body = _template_body("pii_detection", policy_type="sentiment")
    response = await client.post("/v1/policies", json=body, headers=_headers())
    assert response.status_code == 422


# ── List / get ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_shows_invalid_stored_policy_errors(
    client: httpx.AsyncClient, engine: GuardrailsEngine
) -> None:
    await engine.policy_store.create(
        Policy(
            customer_id=CUSTOMER,
            name="Legacy",
            policy_type=PolicyType.CONTENT_SAFETY,
            rule_json={"categories": []},
        )
    )
    await engine.policy_store.create(
        Policy(customer_id=uuid4(), name="Other", policy_type=PolicyType.PII)
    )

    response = await client.get("/v1/policies", headers=_headers())
    data = response.json()
    assert data["total"] == 1
    assert data["policies"][0]["name"] == "Legacy"
    assert data["policies"][0]["errors"]


@pytest.mark.asyncio
async def test_get_policy_of_other_customer_is_404(
    client: httpx.AsyncClient, engine: GuardrailsEngine
) -> None:
    other = await engine.policy_store.create(
        Policy(customer_id=uuid4(), name="Other", policy_type=PolicyType.PII)
    )
    response = await client.get(f"/v1/policies/{other.id}", headers=_headers())
    assert response.status_code == 404

    response = await client.get(f"/v1/policies/{uuid4()}", headers=_headers())
    assert response.status_code == 404


# ── Update ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_disable_policy_takes_effect(
    client: httpx.AsyncClient, engine: GuardrailsEngine
) -> None:
    created = await client.post(
        "/v1/policies", json=_template_body("pii_detection"), headers=_headers()
    )
    policy_id = created.json()["policy"]["id"]
    assert (await _evaluate(client, "123-45-6789"))["decision"] == "DENIED"

    response = await client.put(
        f"/v1/policies/{policy_id}", json={"enabled": False}, headers=_headers()
    )
    assert response.status_code == 200
    assert response.json()["policy"]["enabled"] is False
    assert response.json()["policy"]["name"] == "PII Detection Policy"

    result = await _evaluate(client, "123-45-6789")
    assert result["decision"] == "ALLOWED"
    assert result["checks_run"] == []


@pytest.mark.asyncio
async def test_update_rules_and_scope(
    client: httpx.AsyncClient, engine: GuardrailsEngine
) -> None:
    created = await client.post(
        "/v1/policies", json=_template_body("custom_rules"), headers=_headers()
    )
    policy_id = created.json()["policy"]["id"]

    response = await client.put(
        f"/v1/policies/{policy_id}",
        json={"agent_id": "billing", "rule_json": {"deny_keywords": ["refund"]}},
        headers=_headers(),
    )
    assert response.status_code == 200
    assert response.json()["policy"]["agent_id"] == "billing"

    assert (await _evaluate(client, "refund me", "billing"))["decision"] == "DENIED"
    assert (await _evaluate(client, "refund me", "support"))["decision"] == "ALLOWED"

    response = await client.put(
        f"/v1/policies/{policy_id}", json={"agent_id": None}, headers=_headers()
    )
    assert response.json()["policy"]["agent_id"] is None
    assert (await _evaluate(client, "refund me", "support"))["decision"] == "DENIED"


@pytest.mark.asyncio
async def test_update_rejects_invalid_rules(
    client: httpx.AsyncClient, engine: GuardrailsEngine
) -> None:
    created = await client.post(
        "/v1/policies", json=_template_body("prompt_injection"), headers=_headers()
    )
    policy_id = created.json()["policy"]["id"]

    response = await client.put(
        f"/v1/policies/{policy_id}",
        json={"rule_json": {"action": "WARN"}},
        headers=_headers(),
    )
    assert response.status_code == 422

    stored = await engine.policy_store.get(UUID(policy_id))
    assert stored is not None
    assert stored.rule_json == DEFAULT_TEMPLATES["prompt_injection"].rule_json


@pytest.mark.asyncio
async def test_update_other_customer_is_404(
    client: httpx.AsyncClient, engine: GuardrailsEngine
) -> None:
    other = await engine.policy_store.create(
        Policy(customer_id=uuid4(), name="Other", policy_type=PolicyType.PII)
    )
    response = await client.put(
        f"/v1/policies/{other.id}", json={"enabled": False}, headers=_headers()
    )
    assert response.status_code == 404
