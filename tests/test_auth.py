"""Tests for JWT authentication middleware."""

from uuid import UUID, uuid4

import httpx
import jwt
import pytest

from aegis_guardrails.config import settings
from aegis_guardrails.main import app
from aegis_guardrails.middleware.auth import TokenClaims, create_token


@pytest.fixture
def client() -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)  # type: ignore[arg-type]
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest.fixture
def tenant_id() -> str:
    return str(uuid4())


@pytest.mark.asyncio
async def test_create_token_roundtrip(tenant_id: str) -> None:
    token = create_token(sub="alice", tenant_id=tenant_id, role="admin")
    payload = jwt.decode(
        token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
    )
    assert payload["sub"] == "alice"
    assert payload["tenant_id"] == tenant_id
    assert payload["role"] == "admin"


@pytest.mark.asyncio
async def test_missing_auth_header(client: httpx.AsyncClient) -> None:
    response = await client.post(
        "/v1/guardrails/evaluate", json={"agent_id": "a", "input_text": "hi"}
    )
    assert response.status_code == 401
    assert "Missing authorization header" in response.json()["detail"]


@pytest.mark.asyncio
async def test_invalid_token(client: httpx.AsyncClient) -> None:
    response = await client.get(
        "/v1/policies", headers={"Authorization": "Bearer bad-token"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_token_without_customer(client: httpx.AsyncClient) -> None:
    token = jwt.encode(
        {"sub": "x"}, settings.jwt_secret, algorithm=settings.jwt_algorithm
    )
    response = await client.get(
        "/v1/policies", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_expired_token(client: httpx.AsyncClient) -> None:
    import time

    payload = {
        "sub": "test",
        "tenant_id": str(uuid4()),
        "role": "operator",
        "exp": int(time.time()) - 60,
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    response = await client.get(
        "/v1/guardrails/audit-logs", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 401
    assert "expired" in response.json()["detail"].lower()


def test_token_claims_customer(tenant_id: str) -> None:
    claims = TokenClaims(sub="bob", tenant_id=UUID(tenant_id))
    assert claims.customer_id == UUID(tenant_id)
    assert claims.role == "operator"
